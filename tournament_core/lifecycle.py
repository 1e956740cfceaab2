import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from shared.errors import (
    AlreadyGeneratedError, IncompleteMatchesError, InsufficientParticipantsError,
    NotFoundError, TransitionError, UnauthorizedError, ValidationError,
)
from shared.events import (
    Event, EventType, bracket_generated_event, match_result_event, participant_event,
    round_completed_event, round_paired_event, state_changed_event,
    tournament_completed_event,
)
from shared.pubsub import EventPublisher
from shared.state_machine import TournamentState, TournamentStateMachine

from .bracket_generator import BracketGenerator
from .entities import (
    Bracket, LeaderboardEntry, Match, Participation, ParticipationStatus,
    ParticipantStatistics, Tournament, TournamentFormat, TournamentSettings,
    TournamentStatistics, utcnow,
)
from .identity import IdentityResolver
from .match_progression import MatchProgressionEngine, ProgressionOutcome
from .participant_registry import ParticipantRegistry
from .repository import TournamentRepository
from .standings import StandingsCalculator

logger = logging.getLogger(__name__)


class TournamentLifecycle:
    """
    Public contract of the tournament engine.

    Every operation takes the acting identity. Mutations of one tournament run
    inside ``repository.atomic`` and events are published after the unit of
    work has finished.
    """

    EDITABLE_FIELDS = (
        "name", "description", "game_ids", "format", "min_participants",
        "max_participants", "registration_deadline", "start_date", "end_date",
        "entry_fee", "prize_pool", "is_public", "allow_spectators", "settings",
    )

    def __init__(
        self,
        repository: TournamentRepository,
        publisher: EventPublisher = None,
        identity: IdentityResolver = None,
        clock: Callable[[], datetime] = utcnow,
        swiss_default_rounds: int = 0
    ):
        self.repository = repository
        self.publisher = publisher or EventPublisher()
        self.clock = clock
        self.registry = ParticipantRegistry(repository, clock)
        self.generator = BracketGenerator(swiss_default_rounds)
        self.engine = MatchProgressionEngine(self.generator)
        self.standings = StandingsCalculator(identity)

    # Helpers

    def _load(self, tournament_id: str) -> Tournament:
        tournament = self.repository.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    def _load_bracket(self, tournament_id: str) -> Bracket:
        bracket = self.repository.get_bracket(tournament_id)
        if bracket is None:
            raise NotFoundError(f"No bracket generated for {tournament_id}")
        return bracket

    def _load_visible(self, tournament_id: str, actor_id: str) -> Tournament:
        tournament = self._load(tournament_id)
        if tournament.is_public or tournament.is_organizer(actor_id):
            return tournament
        if self.repository.get_participation(tournament_id, actor_id) is None:
            raise UnauthorizedError(f"Tournament {tournament_id} is private")
        return tournament

    def _transition(self, tournament: Tournament, action: str) -> Event:
        sm = TournamentStateMachine(tournament.status)
        old_state = sm.state
        tournament.status = sm.transition(action)
        tournament.updated_at = self.clock()
        logger.info(
            f"Tournament {tournament.tournament_id}: {old_state.value} -> "
            f"{tournament.status.value} ({action})"
        )
        return state_changed_event(
            tournament.tournament_id, old_state.value, tournament.status.value, action
        )

    def _publish(self, *events: Event):
        for event in events:
            self.publisher.publish(event)

    @staticmethod
    def _coerce(field_name: str, value: Any) -> Any:
        if field_name == "format" and not isinstance(value, TournamentFormat):
            try:
                return TournamentFormat(value)
            except ValueError:
                raise ValidationError(f"Unknown tournament format: {value}")
        if field_name == "settings" and not isinstance(value, TournamentSettings):
            return TournamentSettings.from_dict(value)
        if field_name == "game_ids":
            return list(value or [])
        return value

    # Tournament management

    def create_tournament(
        self,
        actor_id: str,
        name: str,
        game_ids: List[str],
        format: str = TournamentFormat.SINGLE_ELIMINATION,
        min_participants: int = 2,
        max_participants: int = 16,
        **fields
    ) -> Tournament:
        """Create a tournament in draft state, owned by the actor."""
        unknown = set(fields) - set(self.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown tournament fields: {', '.join(sorted(unknown))}")

        now = self.clock()
        tournament = Tournament(
            tournament_id=f"t_{uuid.uuid4().hex[:12]}",
            organizer_id=actor_id,
            name=name,
            game_ids=self._coerce("game_ids", game_ids),
            format=self._coerce("format", format),
            min_participants=min_participants,
            max_participants=max_participants,
            created_at=now,
            updated_at=now,
        )
        for field_name, value in fields.items():
            setattr(tournament, field_name, self._coerce(field_name, value))
        tournament.validate()

        self.repository.add_tournament(tournament)
        logger.info(f"Created tournament {tournament.tournament_id} ({tournament.format.value})")
        self._publish(Event(
            type=EventType.TOURNAMENT_CREATED,
            tournament_id=tournament.tournament_id,
            data={"name": tournament.name, "format": tournament.format.value}
        ))
        return tournament

    def update_tournament(self, tournament_id: str, actor_id: str, **changes) -> Tournament:
        unknown = set(changes) - set(self.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown tournament fields: {', '.join(sorted(unknown))}")

        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            TournamentStateMachine(tournament.status).require("edit")
            tournament.updated_at = self.clock()

            for field_name, value in changes.items():
                value = self._coerce(field_name, value)
                if (field_name == "format" and value != tournament.format
                        and self.repository.get_bracket(tournament_id) is not None):
                    raise TransitionError(
                        tournament.status.value, None,
                        "Format cannot change after the bracket is generated"
                    )
                setattr(tournament, field_name, value)
            tournament.validate()

            approved = self.repository.count_approved(tournament_id)
            if tournament.max_participants < approved:
                raise ValidationError(
                    f"max_participants cannot be below the {approved} approved participants"
                )
            self.repository.save_tournament(tournament)

        self._publish(Event(
            type=EventType.TOURNAMENT_UPDATED,
            tournament_id=tournament_id,
            data={"fields": sorted(changes)}
        ))
        return tournament

    def delete_tournament(self, tournament_id: str, actor_id: str):
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            TournamentStateMachine(tournament.status).require("delete")
            self.repository.delete_tournament(tournament_id)

        logger.info(f"Deleted tournament {tournament_id}")
        self._publish(Event(type=EventType.TOURNAMENT_DELETED, tournament_id=tournament_id))

    def open_registration(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            event = self._transition(tournament, "open")
            self.repository.save_tournament(tournament)

        self._publish(event)
        return tournament

    # Participants

    def join_tournament(self, tournament_id: str, actor_id: str, team_name: str = None,
                        team_members: List[str] = None) -> Participation:
        participation = self.registry.join(tournament_id, actor_id, team_name, team_members)
        self._publish(participant_event(
            EventType.PARTICIPANT_JOINED, tournament_id, actor_id, participation.status.value
        ))
        return participation

    def leave_tournament(self, tournament_id: str, actor_id: str) -> Participation:
        participation = self.registry.leave(tournament_id, actor_id)
        self._publish(participant_event(EventType.PARTICIPANT_LEFT, tournament_id, actor_id))
        return participation

    def approve_participant(self, tournament_id: str, actor_id: str,
                            participant_id: str) -> Participation:
        participation = self.registry.approve(tournament_id, actor_id, participant_id)
        self._publish(participant_event(
            EventType.PARTICIPANT_APPROVED, tournament_id, participant_id, actor_id=actor_id
        ))
        return participation

    def decline_participant(self, tournament_id: str, actor_id: str,
                            participant_id: str) -> Participation:
        participation = self.registry.decline(tournament_id, actor_id, participant_id)
        self._publish(participant_event(
            EventType.PARTICIPANT_DECLINED, tournament_id, participant_id, actor_id=actor_id
        ))
        return participation

    def kick_participant(self, tournament_id: str, actor_id: str,
                         participant_id: str) -> Participation:
        participation = self.registry.kick(tournament_id, actor_id, participant_id)
        self._publish(participant_event(
            EventType.PARTICIPANT_KICKED, tournament_id, participant_id, actor_id=actor_id
        ))
        return participation

    # Bracket and state

    def generate_bracket(self, tournament_id: str, actor_id: str) -> Bracket:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            TournamentStateMachine(tournament.status).require("generate_bracket")
            if self.repository.get_bracket(tournament_id) is not None:
                raise AlreadyGeneratedError(f"Bracket already generated for {tournament_id}")

            approved = self.repository.list_participations(
                tournament_id, ParticipationStatus.APPROVED
            )
            bracket = self.generator.generate(tournament, approved, self.clock())
            self.repository.insert_bracket(bracket)

        self._publish(bracket_generated_event(
            tournament_id, bracket.format.value, len(bracket.rounds),
            sum(1 for _ in bracket.iter_matches())
        ))
        return bracket

    def start_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            sm = TournamentStateMachine(tournament.status)
            if not sm.can_transition("start"):
                raise TransitionError(tournament.status.value, TournamentState.IN_PROGRESS.value)

            approved = self.repository.count_approved(tournament_id)
            if approved < tournament.min_participants:
                raise InsufficientParticipantsError(tournament.min_participants, approved)
            if self.repository.get_bracket(tournament_id) is None:
                raise TransitionError(
                    tournament.status.value, TournamentState.IN_PROGRESS.value,
                    "Bracket must be generated before the tournament starts"
                )

            event = self._transition(tournament, "start")
            tournament.started_at = self.clock()
            self.repository.save_tournament(tournament)

        self._publish(event, Event(type=EventType.TOURNAMENT_STARTED, tournament_id=tournament_id))
        return tournament

    def pause_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            event = self._transition(tournament, "pause")
            tournament.paused_at = self.clock()
            self.repository.save_tournament(tournament)

        self._publish(event)
        return tournament

    def resume_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            event = self._transition(tournament, "resume")
            tournament.paused_at = None
            self.repository.save_tournament(tournament)

        self._publish(event)
        return tournament

    def cancel_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            event = self._transition(tournament, "cancel")
            self.repository.save_tournament(tournament)

        self._publish(event)
        return tournament

    def finalize_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            sm = TournamentStateMachine(tournament.status)
            if not sm.can_transition("finalize"):
                raise TransitionError(tournament.status.value, TournamentState.COMPLETED.value)

            bracket = self.repository.get_bracket(tournament_id)
            if bracket is None or not bracket.is_complete:
                raise IncompleteMatchesError(bracket.pending_match_ids() if bracket else [])

            winner_id = self.engine.champion(bracket)
            if winner_id is None:
                participations = self.repository.list_participations(tournament_id)
                leaderboard = self.standings.leaderboard(participations, bracket)
                winner_id = leaderboard[0].participant_id if leaderboard else None

            event = self._transition(tournament, "finalize")
            tournament.completed_at = self.clock()
            tournament.winner_id = winner_id
            self.repository.save_tournament(tournament)

        self._publish(event, tournament_completed_event(
            tournament_id, winner_id, tournament.format.value
        ))
        return tournament

    # Matches

    def start_match(self, tournament_id: str, actor_id: str, match_id: str) -> Match:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            TournamentStateMachine(tournament.status).require("start_match")
            bracket = self._load_bracket(tournament_id)
            match = self.engine.start_match(bracket, match_id, self.clock())
            self.repository.save_bracket(bracket)

        self._publish(Event(
            type=EventType.MATCH_STARTED,
            tournament_id=tournament_id,
            data={"match_id": match_id, "round": match.round_number}
        ))
        return match

    def record_match_result(self, tournament_id: str, actor_id: str, match_id: str,
                            winner_id: str, result: Dict[str, Any] = None) -> ProgressionOutcome:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            TournamentStateMachine(tournament.status).require("record_result")
            bracket = self._load_bracket(tournament_id)
            outcome = self.engine.record_result(bracket, match_id, winner_id, result, self.clock())
            self.repository.save_bracket(bracket)

        events = [match_result_event(tournament_id, match_id, winner_id, outcome.match.round_number)]
        events.extend(
            round_completed_event(tournament_id, rnd.number, rnd.label)
            for rnd in outcome.completed_rounds
        )
        if outcome.paired_round is not None:
            events.append(round_paired_event(
                tournament_id, outcome.paired_round.number, len(outcome.paired_round.matches)
            ))
        self._publish(*events)

        if outcome.bracket_complete:
            logger.info(f"All matches of {tournament_id} are completed, ready to finalize")
        return outcome

    # Queries

    def get_tournament(self, tournament_id: str, actor_id: str) -> Tournament:
        return self._load_visible(tournament_id, actor_id)

    def list_tournaments(self, actor_id: str, status: TournamentState = None,
                         organizer_id: str = None) -> List[Tournament]:
        if status is not None:
            status = TournamentState(status)
        tournaments = self.repository.list_tournaments(status=status, organizer_id=organizer_id)
        return [
            t for t in tournaments
            if t.is_public or t.is_organizer(actor_id)
            or self.repository.get_participation(t.tournament_id, actor_id) is not None
        ]

    def get_participants(self, tournament_id: str, actor_id: str,
                         status: ParticipationStatus = None) -> List[Participation]:
        self._load_visible(tournament_id, actor_id)
        if status is not None:
            status = ParticipationStatus(status)
        return self.registry.list_participants(tournament_id, status)

    def get_participation(self, tournament_id: str, actor_id: str,
                          participant_id: str) -> Participation:
        self._load_visible(tournament_id, actor_id)
        return self.registry.get_participation(tournament_id, participant_id)

    def get_bracket(self, tournament_id: str, actor_id: str) -> Bracket:
        self._load_visible(tournament_id, actor_id)
        return self._load_bracket(tournament_id)

    def get_matches(self, tournament_id: str, actor_id: str,
                    round_number: Optional[int] = None) -> List[Match]:
        bracket = self.get_bracket(tournament_id, actor_id)
        return [m for m in bracket.iter_matches()
                if round_number is None or m.round_number == round_number]

    def get_match(self, tournament_id: str, actor_id: str, match_id: str) -> Match:
        bracket = self.get_bracket(tournament_id, actor_id)
        return self.engine.get_match(bracket, match_id)

    def get_leaderboard(self, tournament_id: str, actor_id: str) -> List[LeaderboardEntry]:
        self._load_visible(tournament_id, actor_id)
        participations = self.repository.list_participations(tournament_id)
        return self.standings.leaderboard(participations, self.repository.get_bracket(tournament_id))

    def get_participant_statistics(self, tournament_id: str, actor_id: str,
                                   participant_id: str) -> ParticipantStatistics:
        self._load_visible(tournament_id, actor_id)
        participations = self.repository.list_participations(tournament_id)
        return self.standings.participant_statistics(
            participant_id, participations, self.repository.get_bracket(tournament_id)
        )

    def get_tournament_statistics(self, tournament_id: str, actor_id: str) -> TournamentStatistics:
        self._load_visible(tournament_id, actor_id)
        participations = self.repository.list_participations(tournament_id)
        return self.standings.tournament_statistics(
            tournament_id, participations, self.repository.get_bracket(tournament_id)
        )
