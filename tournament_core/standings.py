from typing import Dict, List, Optional, Sequence

from shared.errors import NotFoundError
from shared.state_machine import MatchStatus

from .entities import (
    Bracket, LeaderboardEntry, Participation, ParticipantStatistics,
    ParticipationStatus, TournamentStatistics,
)
from .identity import IdentityResolver, UNKNOWN_NAME

POINTS_PER_WIN = 3
POINTS_PER_LOSS = 1


class StandingsCalculator:
    """Derives statistics and leaderboards from a bracket. Pure and repeatable."""

    def __init__(self, identity: IdentityResolver = None):
        self.identity = identity

    def display_name(self, participation: Participation) -> str:
        if participation.team_name:
            return participation.team_name
        if self.identity is not None:
            return self.identity.display_name(participation.participant_id)
        return UNKNOWN_NAME

    @staticmethod
    def _played_matches(bracket: Optional[Bracket]):
        # byes are won matches, the same as in Swiss pairing scores
        if bracket is None:
            return []
        return [m for m in bracket.iter_matches() if m.status == MatchStatus.COMPLETED]

    def _tally(self, bracket: Optional[Bracket]) -> Dict[str, List[int]]:
        tally: Dict[str, List[int]] = {}
        for match in self._played_matches(bracket):
            for pid in match.participant_ids:
                played_won = tally.setdefault(pid, [0, 0])
                played_won[0] += 1
                if match.winner_id == pid:
                    played_won[1] += 1
        return tally

    def leaderboard(self, participations: Sequence[Participation],
                    bracket: Optional[Bracket]) -> List[LeaderboardEntry]:
        tally = self._tally(bracket)
        rows = []
        for p in participations:
            if p.status != ParticipationStatus.APPROVED:
                continue
            played, won = tally.get(p.participant_id, (0, 0))
            lost = played - won
            win_rate = won / played if played else 0.0
            points = POINTS_PER_WIN * won + POINTS_PER_LOSS * lost
            rows.append((p, played, won, lost, win_rate, points))

        rows.sort(key=lambda r: (-r[5], -r[4], r[0].registered_at, r[0].participant_id))

        return [
            LeaderboardEntry(
                position=position,
                participant_id=p.participant_id,
                display_name=self.display_name(p),
                points=points,
                matches_played=played,
                matches_won=won,
                matches_lost=lost,
                win_rate=win_rate,
            )
            for position, (p, played, won, lost, win_rate, points) in enumerate(rows, start=1)
        ]

    def participant_statistics(self, participant_id: str, participations: Sequence[Participation],
                               bracket: Optional[Bracket]) -> ParticipantStatistics:
        participation = next((p for p in participations if p.participant_id == participant_id), None)
        if participation is None:
            raise NotFoundError(f"Participant {participant_id} is not registered")

        played, won = self._tally(bracket).get(participant_id, (0, 0))
        position = None
        for entry in self.leaderboard(participations, bracket):
            if entry.participant_id == participant_id:
                position = entry.position
                break

        return ParticipantStatistics(
            participant_id=participant_id,
            tournament_id=participation.tournament_id,
            display_name=self.display_name(participation),
            matches_played=played,
            matches_won=won,
            matches_lost=played - won,
            current_position=position,
        )

    def tournament_statistics(self, tournament_id: str, participations: Sequence[Participation],
                              bracket: Optional[Bracket]) -> TournamentStatistics:
        matches = [
            m for m in bracket.iter_matches()
            if not m.is_bye and m.status != MatchStatus.CANCELLED
        ] if bracket else []
        completed = [m for m in matches if m.status == MatchStatus.COMPLETED]
        durations = [m.duration_seconds for m in completed if m.duration_seconds is not None]

        return TournamentStatistics(
            tournament_id=tournament_id,
            total_participants=sum(
                1 for p in participations if p.status == ParticipationStatus.APPROVED
            ),
            total_matches=len(matches),
            completed_matches=len(completed),
            average_match_duration=sum(durations) / len(durations) if durations else None,
        )
