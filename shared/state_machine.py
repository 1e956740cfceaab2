from enum import Enum
from typing import Optional, List, Dict
from dataclasses import dataclass

from .errors import TransitionError


class TournamentState(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchStatus(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class Transition:
    from_state: Enum
    to_state: Enum
    action: str


class StateMachine:
    """Table driven state machine. Subclasses supply the tables."""

    STATES = None
    TRANSITIONS: List[Transition] = []
    ALLOWED_ACTIONS: Dict[Enum, List[str]] = {}

    def __init__(self, initial_state):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self):
        return self._state

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def _find(self, action: str) -> Optional[Transition]:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return t
        return None

    def can_transition(self, action: str) -> bool:
        return self._find(action) is not None

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions or self.can_transition(action)

    def require(self, action: str):
        """Raise TransitionError unless action is permitted in the current state."""
        if not self.can_perform(action):
            raise TransitionError(
                self._state.value,
                None,
                f"Action '{action}' is not allowed while {self._state.value}"
            )

    def transition(self, action: str):
        t = self._find(action)
        if t is None:
            raise TransitionError(
                self._state.value,
                None,
                f"No valid transition for action '{action}' from state '{self._state.value}'"
            )

        old_state = self._state
        self._state = t.to_state
        self._history.append((old_state, action, self._state))
        return self._state

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str):
        try:
            state = cls.STATES(state_str)
        except ValueError:
            raise TransitionError(state_str, None, f"Unknown state '{state_str}'")
        return cls(initial_state=state)


class TournamentStateMachine(StateMachine):
    STATES = TournamentState

    TRANSITIONS = [
        Transition(TournamentState.DRAFT, TournamentState.OPEN, "open"),
        Transition(TournamentState.DRAFT, TournamentState.DRAFT, "edit"),
        Transition(TournamentState.OPEN, TournamentState.OPEN, "edit"),
        Transition(TournamentState.OPEN, TournamentState.IN_PROGRESS, "start"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.PAUSED, "pause"),
        Transition(TournamentState.PAUSED, TournamentState.IN_PROGRESS, "resume"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.COMPLETED, "finalize"),
        Transition(TournamentState.DRAFT, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.OPEN, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.IN_PROGRESS, TournamentState.CANCELLED, "cancel"),
        Transition(TournamentState.PAUSED, TournamentState.CANCELLED, "cancel"),
    ]

    ALLOWED_ACTIONS = {
        TournamentState.DRAFT: ["delete", "leave", "kick", "approve", "decline"],
        TournamentState.OPEN: [
            "delete", "join", "leave", "kick", "approve", "decline", "generate_bracket"
        ],
        TournamentState.IN_PROGRESS: ["kick", "start_match", "record_result"],
        TournamentState.PAUSED: ["kick"],
        TournamentState.COMPLETED: ["delete", "leave", "kick"],
        TournamentState.CANCELLED: ["delete", "leave", "kick"],
    }

    def __init__(self, initial_state: TournamentState = TournamentState.DRAFT):
        super().__init__(initial_state)

    @property
    def is_terminal(self) -> bool:
        return self._state in (TournamentState.COMPLETED, TournamentState.CANCELLED)


class MatchStateMachine(StateMachine):
    STATES = MatchStatus

    TRANSITIONS = [
        Transition(MatchStatus.SCHEDULED, MatchStatus.IN_PROGRESS, "start"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.IN_PROGRESS, MatchStatus.COMPLETED, "complete"),
        Transition(MatchStatus.SCHEDULED, MatchStatus.CANCELLED, "cancel"),
        Transition(MatchStatus.IN_PROGRESS, MatchStatus.CANCELLED, "cancel"),
    ]

    def __init__(self, initial_state: MatchStatus = MatchStatus.SCHEDULED):
        super().__init__(initial_state)


SETTLED_MATCH_STATUSES = (MatchStatus.COMPLETED, MatchStatus.CANCELLED)
