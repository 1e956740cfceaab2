import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.errors import InvalidWinnerError, NotFoundError, TransitionError
from shared.state_machine import MatchStateMachine, MatchStatus

from .bracket_generator import BracketGenerator
from .entities import Bracket, Match, Round, TournamentFormat, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ProgressionOutcome:
    match: Match
    completed_rounds: List[Round] = field(default_factory=list)
    paired_round: Optional[Round] = None
    bracket_complete: bool = False
    champion_id: Optional[str] = None


class MatchProgressionEngine:
    """
    Applies match starts and results to a bracket.

    The engine works on an in-memory Bracket and never persists anything; the
    caller loads and saves the bracket inside one atomic unit. All checks run
    before the bracket is touched, so a rejected call leaves it unchanged.
    """

    def __init__(self, generator: BracketGenerator = None):
        self.generator = generator or BracketGenerator()

    @staticmethod
    def get_match(bracket: Bracket, match_id: str) -> Match:
        match = bracket.find_match(match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def start_match(self, bracket: Bracket, match_id: str, now: datetime = None) -> Match:
        match = self.get_match(bracket, match_id)
        sm = MatchStateMachine(match.status)
        if not sm.can_transition("start"):
            raise TransitionError(match.status.value, MatchStatus.IN_PROGRESS.value,
                                  f"Match {match_id} cannot start while {match.status.value}")
        if not match.is_ready:
            raise TransitionError(match.status.value, MatchStatus.IN_PROGRESS.value,
                                  f"Match {match_id} is still waiting for participants")

        match.status = sm.transition("start")
        match.started_at = now or utcnow()
        bracket.refresh_round_statuses()
        return match

    def record_result(self, bracket: Bracket, match_id: str, winner_id: str,
                      result: Dict[str, Any] = None, now: datetime = None) -> ProgressionOutcome:
        match = self.get_match(bracket, match_id)
        sm = MatchStateMachine(match.status)
        if not sm.can_transition("complete"):
            raise TransitionError(match.status.value, MatchStatus.COMPLETED.value,
                                  f"Match {match_id} is already {match.status.value}")
        if not match.is_ready:
            raise TransitionError(match.status.value, MatchStatus.COMPLETED.value,
                                  f"Match {match_id} is still waiting for participants")
        if winner_id not in match.participant_ids:
            raise InvalidWinnerError(f"{winner_id} is not a participant of match {match_id}")

        now = now or utcnow()
        match.status = sm.transition("complete")
        match.winner_id = winner_id
        match.result = dict(result or {})
        match.completed_at = now

        self._propagate(bracket, match, now)

        outcome = ProgressionOutcome(match=match)
        outcome.completed_rounds = bracket.refresh_round_statuses()
        if bracket.format == TournamentFormat.SWISS:
            outcome.paired_round = self.generator.pair_next_swiss_round(bracket, now)
            if outcome.paired_round is not None:
                bracket.refresh_round_statuses()

        outcome.bracket_complete = bracket.is_complete
        if outcome.bracket_complete:
            outcome.champion_id = self.champion(bracket)

        logger.info(f"Match {match_id} completed, winner {winner_id}")
        return outcome

    def _propagate(self, bracket: Bracket, match: Match, now: datetime):
        grand_final_id = bracket.configuration.get("grand_final_match_id")
        if grand_final_id and match.match_id == grand_final_id:
            reset = bracket.find_match(bracket.configuration["reset_match_id"])
            if match.winner_id == match.slots[0]:
                # Winners bracket champion is still unbeaten
                reset.status = MatchStatus.CANCELLED
                reset.result = {"reason": "not_required"}
                reset.completed_at = now
            else:
                reset.slots = list(match.slots)
            return

        if match.next_match_id:
            target = self.get_match(bracket, match.next_match_id)
            target.slots[match.next_slot] = match.winner_id
        if match.loser_match_id:
            target = self.get_match(bracket, match.loser_match_id)
            target.slots[match.loser_slot] = match.loser_id

    @staticmethod
    def champion(bracket: Bracket) -> Optional[str]:
        """Winner of the deciding match for elimination formats, else None."""
        if not bracket.format.is_elimination or not bracket.is_complete:
            return None

        reset_id = bracket.configuration.get("reset_match_id")
        if reset_id:
            reset = bracket.find_match(reset_id)
            if reset.status == MatchStatus.COMPLETED:
                return reset.winner_id
            return bracket.find_match(bracket.configuration["grand_final_match_id"]).winner_id

        final = bracket.rounds[-1].matches[-1]
        return final.winner_id
