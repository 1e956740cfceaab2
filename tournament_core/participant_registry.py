import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from shared.errors import (
    AlreadyRegisteredError, CapacityExceededError, DeadlinePassedError,
    NotFoundError, TransitionError, ValidationError,
)
from shared.state_machine import TournamentStateMachine

from .entities import Participation, ParticipationStatus, Tournament, utcnow
from .repository import TournamentRepository

logger = logging.getLogger(__name__)


class ParticipantRegistry:
    """
    Admission control for a tournament's participants.

    Each operation runs as one atomic unit, so the capacity check and the insert
    that depends on it cannot interleave with another join.
    """

    def __init__(self, repository: TournamentRepository, clock: Callable[[], datetime] = utcnow):
        self.repository = repository
        self.clock = clock

    def _load(self, tournament_id: str) -> Tournament:
        tournament = self.repository.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    @staticmethod
    def _require(tournament: Tournament, action: str):
        TournamentStateMachine(tournament.status).require(action)

    def _check_capacity(self, tournament: Tournament):
        approved = self.repository.count_approved(tournament.tournament_id)
        if approved >= tournament.max_participants:
            raise CapacityExceededError(
                f"Tournament {tournament.tournament_id} is full ({tournament.max_participants})"
            )

    def join(self, tournament_id: str, participant_id: str, team_name: str = None,
             team_members: List[str] = None) -> Participation:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            self._require(tournament, "join")

            now = self.clock()
            if tournament.registration_deadline and now > tournament.registration_deadline:
                raise DeadlinePassedError(f"Registration for {tournament_id} has closed")

            if self.repository.get_participation(tournament_id, participant_id) is not None:
                raise AlreadyRegisteredError(f"{participant_id} is already registered")

            self._check_capacity(tournament)

            members = list(team_members or [])
            max_team_size = tournament.settings.max_team_size
            if max_team_size and len(members) > max_team_size:
                raise ValidationError(f"Team exceeds the maximum size of {max_team_size}")

            approved = not tournament.settings.require_approval
            participation = Participation(
                participation_id=f"p_{uuid.uuid4().hex[:12]}",
                tournament_id=tournament_id,
                participant_id=participant_id,
                status=ParticipationStatus.APPROVED if approved else ParticipationStatus.REGISTERED,
                registered_at=now,
                team_name=team_name,
                team_members=members,
                approved_at=now if approved else None,
            )
            self.repository.add_participation(participation)

        logger.info(f"{participant_id} joined {tournament_id} as {participation.status.value}")
        return participation

    def leave(self, tournament_id: str, participant_id: str) -> Participation:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            self._require(tournament, "leave")
            participation = self.get_participation(tournament_id, participant_id)
            self.repository.remove_participation(tournament_id, participant_id)

        participation.status = ParticipationStatus.WITHDRAWN
        logger.info(f"{participant_id} left {tournament_id}")
        return participation

    def kick(self, tournament_id: str, actor_id: str, participant_id: str) -> Participation:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            participation = self.get_participation(tournament_id, participant_id)
            self.repository.remove_participation(tournament_id, participant_id)

        participation.status = ParticipationStatus.WITHDRAWN
        logger.info(f"{participant_id} removed from {tournament_id} by {actor_id}")
        return participation

    def approve(self, tournament_id: str, actor_id: str, participant_id: str) -> Participation:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            self._require(tournament, "approve")

            participation = self.get_participation(tournament_id, participant_id)
            if participation.status != ParticipationStatus.REGISTERED:
                raise TransitionError(participation.status.value, ParticipationStatus.APPROVED.value)
            self._check_capacity(tournament)

            participation.status = ParticipationStatus.APPROVED
            participation.approved_at = self.clock()
            self.repository.save_participation(participation)

        logger.info(f"{participant_id} approved for {tournament_id}")
        return participation

    def decline(self, tournament_id: str, actor_id: str, participant_id: str) -> Participation:
        with self.repository.atomic(tournament_id):
            tournament = self._load(tournament_id)
            tournament.ensure_organizer(actor_id)
            self._require(tournament, "decline")

            participation = self.get_participation(tournament_id, participant_id)
            if participation.status != ParticipationStatus.REGISTERED:
                raise TransitionError(participation.status.value, ParticipationStatus.DECLINED.value)

            participation.status = ParticipationStatus.DECLINED
            self.repository.save_participation(participation)

        logger.info(f"{participant_id} declined for {tournament_id}")
        return participation

    def get_participation(self, tournament_id: str, participant_id: str) -> Participation:
        participation = self.repository.get_participation(tournament_id, participant_id)
        if participation is None:
            raise NotFoundError(f"{participant_id} is not registered for {tournament_id}")
        return participation

    def list_participants(self, tournament_id: str,
                          status: Optional[ParticipationStatus] = None) -> List[Participation]:
        self._load(tournament_id)
        return self.repository.list_participations(tournament_id, status)
