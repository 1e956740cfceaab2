from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    DEADLINE_PASSED = "deadline_passed"
    ALREADY_REGISTERED = "already_registered"
    ALREADY_GENERATED = "already_generated"
    INSUFFICIENT_PARTICIPANTS = "insufficient_participants"
    INVALID_WINNER = "invalid_winner"
    INCOMPLETE_MATCHES = "incomplete_matches"
    VALIDATION = "validation"


class TournamentError(Exception):
    """Base class for every rejected tournament operation."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str = None):
        self.message = message or self.kind.value.replace("_", " ")
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.kind.value,
            "message": self.message
        }


class NotFoundError(TournamentError):
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(TournamentError):
    kind = ErrorKind.UNAUTHORIZED


class TransitionError(TournamentError):
    kind = ErrorKind.INVALID_STATE_TRANSITION

    def __init__(self, from_state: str, to_state: Optional[str] = None, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(reason or f"Cannot transition from {from_state} to {to_state}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["from_state"] = self.from_state
        data["to_state"] = self.to_state
        return data


class CapacityExceededError(TournamentError):
    kind = ErrorKind.CAPACITY_EXCEEDED


class DeadlinePassedError(TournamentError):
    kind = ErrorKind.DEADLINE_PASSED


class AlreadyRegisteredError(TournamentError):
    kind = ErrorKind.ALREADY_REGISTERED


class AlreadyGeneratedError(TournamentError):
    kind = ErrorKind.ALREADY_GENERATED


class InsufficientParticipantsError(TournamentError):
    kind = ErrorKind.INSUFFICIENT_PARTICIPANTS

    def __init__(self, required: int, actual: int):
        self.required = required
        self.actual = actual
        super().__init__(f"At least {required} approved participants required, have {actual}")


class InvalidWinnerError(TournamentError):
    kind = ErrorKind.INVALID_WINNER


class IncompleteMatchesError(TournamentError):
    kind = ErrorKind.INCOMPLETE_MATCHES

    def __init__(self, pending_match_ids: list):
        self.pending_match_ids = list(pending_match_ids)
        super().__init__(f"{len(self.pending_match_ids)} matches are not completed")


class ValidationError(TournamentError):
    kind = ErrorKind.VALIDATION
