from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from shared.errors import UnauthorizedError, ValidationError
from shared.state_machine import MatchStatus, TournamentState, SETTLED_MATCH_STATUSES


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every entity stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TournamentFormat(str, Enum):
    SINGLE_ELIMINATION = "single_elimination"
    DOUBLE_ELIMINATION = "double_elimination"
    ROUND_ROBIN = "round_robin"
    SWISS = "swiss"

    @property
    def is_elimination(self) -> bool:
        return self in (TournamentFormat.SINGLE_ELIMINATION, TournamentFormat.DOUBLE_ELIMINATION)


class ParticipationStatus(str, Enum):
    REGISTERED = "registered"
    APPROVED = "approved"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"


class RoundStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class BracketSection(str, Enum):
    MAIN = "main"
    WINNERS = "winners"
    LOSERS = "losers"
    GRAND_FINAL = "grand_final"


@dataclass
class TournamentSettings:
    require_approval: bool = False
    max_team_size: Optional[int] = None
    swiss_rounds: Optional[int] = None
    custom: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "require_approval": self.require_approval,
            "max_team_size": self.max_team_size,
            "swiss_rounds": self.swiss_rounds,
            "custom": dict(self.custom),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TournamentSettings":
        data = data or {}
        return cls(
            require_approval=bool(data.get("require_approval", False)),
            max_team_size=data.get("max_team_size"),
            swiss_rounds=data.get("swiss_rounds"),
            custom=dict(data.get("custom") or {}),
        )


@dataclass
class Tournament:
    tournament_id: str
    organizer_id: str
    name: str
    game_ids: List[str]
    format: TournamentFormat
    min_participants: int = 2
    max_participants: int = 16
    description: str = ""
    registration_deadline: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    entry_fee: Any = None
    prize_pool: Any = None
    is_public: bool = True
    allow_spectators: bool = True
    status: TournamentState = TournamentState.DRAFT
    settings: TournamentSettings = field(default_factory=TournamentSettings)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    winner_id: Optional[str] = None

    def validate(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Tournament name is required")
        if not self.game_ids:
            raise ValidationError("At least one game is required")
        if self.min_participants < 2:
            raise ValidationError("min_participants must be at least 2")
        if self.min_participants > self.max_participants:
            raise ValidationError("min_participants cannot exceed max_participants")
        if (self.registration_deadline and self.start_date
                and self.registration_deadline > self.start_date):
            raise ValidationError("registration_deadline must not be after start_date")
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must not be after end_date")
        if self.settings.max_team_size is not None and self.settings.max_team_size < 1:
            raise ValidationError("max_team_size must be at least 1")
        if self.settings.swiss_rounds is not None and self.settings.swiss_rounds < 1:
            raise ValidationError("swiss_rounds must be at least 1")

    def is_organizer(self, actor_id: str) -> bool:
        return actor_id == self.organizer_id

    def ensure_organizer(self, actor_id: str):
        if not self.is_organizer(actor_id):
            raise UnauthorizedError(f"Only the organizer can manage tournament {self.tournament_id}")

    def to_dict(self) -> dict:
        return {
            "tournament_id": self.tournament_id,
            "organizer_id": self.organizer_id,
            "name": self.name,
            "description": self.description,
            "game_ids": list(self.game_ids),
            "format": self.format.value,
            "min_participants": self.min_participants,
            "max_participants": self.max_participants,
            "registration_deadline": _iso(self.registration_deadline),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "entry_fee": self.entry_fee,
            "prize_pool": self.prize_pool,
            "is_public": self.is_public,
            "allow_spectators": self.allow_spectators,
            "status": self.status.value,
            "settings": self.settings.to_dict(),
            "winner_id": self.winner_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }


@dataclass
class Participation:
    participation_id: str
    tournament_id: str
    participant_id: str
    status: ParticipationStatus
    registered_at: datetime
    team_name: Optional[str] = None
    team_members: List[str] = field(default_factory=list)
    approved_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status != ParticipationStatus.WITHDRAWN

    def to_dict(self) -> dict:
        return {
            "participation_id": self.participation_id,
            "tournament_id": self.tournament_id,
            "participant_id": self.participant_id,
            "status": self.status.value,
            "team_name": self.team_name,
            "team_members": list(self.team_members),
            "registered_at": _iso(self.registered_at),
            "approved_at": _iso(self.approved_at),
        }


@dataclass
class Match:
    match_id: str
    tournament_id: str
    bracket_id: str
    round_number: int
    position: int
    section: BracketSection = BracketSection.MAIN
    slots: List[Optional[str]] = field(default_factory=lambda: [None, None])
    status: MatchStatus = MatchStatus.SCHEDULED
    winner_id: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)
    is_bye: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_match_id: Optional[str] = None
    next_slot: Optional[int] = None
    loser_match_id: Optional[str] = None
    loser_slot: Optional[int] = None

    @property
    def participant_ids(self) -> List[str]:
        return [p for p in self.slots if p is not None]

    @property
    def is_ready(self) -> bool:
        """Both participants are known and the match can still be played."""
        return (self.status in (MatchStatus.SCHEDULED, MatchStatus.IN_PROGRESS)
                and len(self.participant_ids) == 2)

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_MATCH_STATUSES

    @property
    def loser_id(self) -> Optional[str]:
        if self.status != MatchStatus.COMPLETED or self.is_bye:
            return None
        for p in self.participant_ids:
            if p != self.winner_id:
                return p
        return None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict:
        return {
            "match_id": self.match_id,
            "tournament_id": self.tournament_id,
            "bracket_id": self.bracket_id,
            "round": self.round_number,
            "position": self.position,
            "section": self.section.value,
            "participant_ids": self.participant_ids,
            "slots": list(self.slots),
            "status": self.status.value,
            "winner_id": self.winner_id,
            "result": dict(self.result),
            "is_bye": self.is_bye,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "next_match_id": self.next_match_id,
            "loser_match_id": self.loser_match_id,
        }


@dataclass
class Round:
    number: int
    label: str
    section: BracketSection = BracketSection.MAIN
    status: RoundStatus = RoundStatus.PENDING
    matches: List[Match] = field(default_factory=list)

    @property
    def is_settled(self) -> bool:
        return bool(self.matches) and all(m.is_settled for m in self.matches)

    def to_dict(self) -> dict:
        return {
            "number": self.number,
            "label": self.label,
            "section": self.section.value,
            "status": self.status.value,
            "matches": [m.to_dict() for m in self.matches],
        }


@dataclass
class Bracket:
    bracket_id: str
    tournament_id: str
    format: TournamentFormat
    generated_at: datetime
    rounds: List[Round] = field(default_factory=list)
    seeds: List[str] = field(default_factory=list)
    configuration: Dict[str, Any] = field(default_factory=dict)

    def iter_matches(self) -> Iterator[Match]:
        for rnd in self.rounds:
            yield from rnd.matches

    def find_match(self, match_id: str) -> Optional[Match]:
        for match in self.iter_matches():
            if match.match_id == match_id:
                return match
        return None

    def get_round(self, number: int) -> Optional[Round]:
        for rnd in self.rounds:
            if rnd.number == number:
                return rnd
        return None

    def pending_match_ids(self) -> List[str]:
        return [m.match_id for m in self.iter_matches() if not m.is_settled]

    @property
    def is_complete(self) -> bool:
        return bool(self.rounds) and all(r.is_settled for r in self.rounds)

    def refresh_round_statuses(self) -> List[Round]:
        """Recompute every round's status, returning rounds that just completed."""
        newly_completed = []
        for rnd in self.rounds:
            if rnd.is_settled:
                status = RoundStatus.COMPLETED
            elif any(m.is_ready or m.is_settled for m in rnd.matches):
                status = RoundStatus.ACTIVE
            else:
                status = RoundStatus.PENDING
            if status == RoundStatus.COMPLETED and rnd.status != RoundStatus.COMPLETED:
                newly_completed.append(rnd)
            rnd.status = status
        return newly_completed

    def to_dict(self) -> dict:
        return {
            "bracket_id": self.bracket_id,
            "tournament_id": self.tournament_id,
            "format": self.format.value,
            "generated_at": _iso(self.generated_at),
            "seeds": list(self.seeds),
            "configuration": dict(self.configuration),
            "is_complete": self.is_complete,
            "rounds": [r.to_dict() for r in self.rounds],
        }


@dataclass
class ParticipantStatistics:
    participant_id: str
    tournament_id: str
    display_name: str
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    current_position: Optional[int] = None

    @property
    def win_rate(self) -> float:
        if self.matches_played == 0:
            return 0.0
        return self.matches_won / self.matches_played

    def to_dict(self) -> dict:
        return {
            "participant_id": self.participant_id,
            "tournament_id": self.tournament_id,
            "display_name": self.display_name,
            "matches_played": self.matches_played,
            "matches_won": self.matches_won,
            "matches_lost": self.matches_lost,
            "win_rate": self.win_rate,
            "current_position": self.current_position,
        }


@dataclass
class LeaderboardEntry:
    position: int
    participant_id: str
    display_name: str
    points: int
    matches_played: int
    matches_won: int
    matches_lost: int
    win_rate: float

    def to_dict(self) -> dict:
        return {
            "position": self.position,
            "participant_id": self.participant_id,
            "display_name": self.display_name,
            "points": self.points,
            "matches_played": self.matches_played,
            "matches_won": self.matches_won,
            "matches_lost": self.matches_lost,
            "win_rate": self.win_rate,
        }


@dataclass
class TournamentStatistics:
    tournament_id: str
    total_participants: int
    total_matches: int
    completed_matches: int
    average_match_duration: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "tournament_id": self.tournament_id,
            "total_participants": self.total_participants,
            "total_matches": self.total_matches,
            "completed_matches": self.completed_matches,
            "average_match_duration": self.average_match_duration,
        }
