from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
import json


class EventType(str, Enum):
    # Tournament lifecycle
    TOURNAMENT_CREATED = "tournament.created"
    TOURNAMENT_UPDATED = "tournament.updated"
    TOURNAMENT_DELETED = "tournament.deleted"
    TOURNAMENT_STARTED = "tournament.started"
    TOURNAMENT_COMPLETED = "tournament.completed"

    # State changes
    STATE_CHANGED = "state.changed"

    # Participant events
    PARTICIPANT_JOINED = "participant.joined"
    PARTICIPANT_APPROVED = "participant.approved"
    PARTICIPANT_DECLINED = "participant.declined"
    PARTICIPANT_LEFT = "participant.left"
    PARTICIPANT_KICKED = "participant.kicked"

    # Bracket and match events
    BRACKET_GENERATED = "bracket.generated"
    MATCH_STARTED = "match.started"
    MATCH_RESULT = "match.result"

    # Round events
    ROUND_COMPLETED = "round.completed"
    ROUND_PAIRED = "round.paired"


@dataclass
class Event:
    type: EventType
    tournament_id: str
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"
        if self.data is None:
            self.data = {}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        known = {e.value for e in EventType}
        return cls(
            type=EventType(data["type"]) if data["type"] in known else data["type"],
            tournament_id=data["tournament_id"],
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def state_changed_event(tournament_id: str, from_state: str, to_state: str, action: str) -> Event:
    return Event(
        type=EventType.STATE_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_state": from_state,
            "to_state": to_state,
            "action": action
        }
    )


def participant_event(event_type: EventType, tournament_id: str, participant_id: str,
                      status: str = None, actor_id: str = None) -> Event:
    data = {"participant_id": participant_id}
    if status is not None:
        data["status"] = status
    if actor_id is not None:
        data["actor_id"] = actor_id
    return Event(type=event_type, tournament_id=tournament_id, data=data)


def bracket_generated_event(tournament_id: str, bracket_format: str,
                            rounds_count: int, matches_count: int) -> Event:
    return Event(
        type=EventType.BRACKET_GENERATED,
        tournament_id=tournament_id,
        data={
            "format": bracket_format,
            "rounds": rounds_count,
            "matches": matches_count
        }
    )


def match_result_event(tournament_id: str, match_id: str, winner: str, round_num: int) -> Event:
    return Event(
        type=EventType.MATCH_RESULT,
        tournament_id=tournament_id,
        data={
            "match_id": match_id,
            "winner": winner,
            "round": round_num
        }
    )


def round_completed_event(tournament_id: str, round_num: int, label: str) -> Event:
    return Event(
        type=EventType.ROUND_COMPLETED,
        tournament_id=tournament_id,
        data={
            "round": round_num,
            "label": label
        }
    )


def round_paired_event(tournament_id: str, round_num: int, matches_count: int) -> Event:
    return Event(
        type=EventType.ROUND_PAIRED,
        tournament_id=tournament_id,
        data={
            "round": round_num,
            "matches_count": matches_count
        }
    )


def tournament_completed_event(tournament_id: str, winner: str, tournament_format: str) -> Event:
    return Event(
        type=EventType.TOURNAMENT_COMPLETED,
        tournament_id=tournament_id,
        data={
            "winner": winner,
            "format": tournament_format
        }
    )
