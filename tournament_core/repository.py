import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Optional

from shared.errors import AlreadyGeneratedError
from shared.state_machine import TournamentState

from .entities import Bracket, Participation, ParticipationStatus, Tournament


class TournamentRepository(ABC):
    """
    Persistence collaborator.

    Every mutation of a tournament's registrations, bracket or state is
    performed inside ``atomic(tournament_id)``, which serializes writers of
    the same tournament and commits or discards their changes as a unit.
    """

    @abstractmethod
    def atomic(self, tournament_id: str):
        """Context manager delimiting one atomic unit of work."""

    # Tournaments
    @abstractmethod
    def add_tournament(self, tournament: Tournament): ...

    @abstractmethod
    def get_tournament(self, tournament_id: str) -> Optional[Tournament]: ...

    @abstractmethod
    def list_tournaments(self, status: TournamentState = None,
                         organizer_id: str = None) -> List[Tournament]: ...

    @abstractmethod
    def save_tournament(self, tournament: Tournament): ...

    @abstractmethod
    def delete_tournament(self, tournament_id: str): ...

    # Participations
    @abstractmethod
    def add_participation(self, participation: Participation): ...

    @abstractmethod
    def get_participation(self, tournament_id: str, participant_id: str) -> Optional[Participation]:
        """The non-withdrawn participation of a participant, if any."""

    @abstractmethod
    def list_participations(self, tournament_id: str,
                            status: ParticipationStatus = None) -> List[Participation]:
        """Participations in registration order."""

    @abstractmethod
    def save_participation(self, participation: Participation): ...

    @abstractmethod
    def remove_participation(self, tournament_id: str, participant_id: str) -> bool: ...

    def count_approved(self, tournament_id: str) -> int:
        return len(self.list_participations(tournament_id, ParticipationStatus.APPROVED))

    # Brackets
    @abstractmethod
    def insert_bracket(self, bracket: Bracket):
        """Store a bracket, raising AlreadyGeneratedError if one exists."""

    @abstractmethod
    def get_bracket(self, tournament_id: str) -> Optional[Bracket]: ...

    @abstractmethod
    def save_bracket(self, bracket: Bracket): ...


class InMemoryRepository(TournamentRepository):
    """Process-local repository. Entities are copied in and out."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tournament_locks: Dict[str, threading.RLock] = {}
        self._tournaments: Dict[str, Tournament] = {}
        self._participations: Dict[str, List[Participation]] = {}
        self._brackets: Dict[str, Bracket] = {}

    def _lock_for(self, tournament_id: str) -> threading.RLock:
        with self._lock:
            lock = self._tournament_locks.get(tournament_id)
            if lock is None:
                lock = self._tournament_locks[tournament_id] = threading.RLock()
            return lock

    @contextmanager
    def atomic(self, tournament_id: str):
        lock = self._lock_for(tournament_id)
        with lock:
            yield self

    def add_tournament(self, tournament: Tournament):
        with self._lock:
            self._tournaments[tournament.tournament_id] = copy.deepcopy(tournament)
            self._participations.setdefault(tournament.tournament_id, [])

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        with self._lock:
            tournament = self._tournaments.get(tournament_id)
            return copy.deepcopy(tournament) if tournament else None

    def list_tournaments(self, status: TournamentState = None,
                         organizer_id: str = None) -> List[Tournament]:
        with self._lock:
            found = [
                t for t in self._tournaments.values()
                if (status is None or t.status == status)
                and (organizer_id is None or t.organizer_id == organizer_id)
            ]
            found.sort(key=lambda t: t.created_at, reverse=True)
            return copy.deepcopy(found)

    def save_tournament(self, tournament: Tournament):
        with self._lock:
            self._tournaments[tournament.tournament_id] = copy.deepcopy(tournament)

    def delete_tournament(self, tournament_id: str):
        with self._lock:
            self._tournaments.pop(tournament_id, None)
            self._participations.pop(tournament_id, None)
            self._brackets.pop(tournament_id, None)
            self._tournament_locks.pop(tournament_id, None)

    def add_participation(self, participation: Participation):
        with self._lock:
            self._participations.setdefault(participation.tournament_id, []).append(
                copy.deepcopy(participation)
            )

    def get_participation(self, tournament_id: str, participant_id: str) -> Optional[Participation]:
        with self._lock:
            for p in self._participations.get(tournament_id, []):
                if p.participant_id == participant_id and p.is_active:
                    return copy.deepcopy(p)
            return None

    def list_participations(self, tournament_id: str,
                            status: ParticipationStatus = None) -> List[Participation]:
        with self._lock:
            found = [
                p for p in self._participations.get(tournament_id, [])
                if status is None or p.status == status
            ]
            # sorted() is stable, so equal timestamps keep insertion order
            return copy.deepcopy(sorted(found, key=lambda p: p.registered_at))

    def save_participation(self, participation: Participation):
        with self._lock:
            items = self._participations.setdefault(participation.tournament_id, [])
            for i, p in enumerate(items):
                if p.participation_id == participation.participation_id:
                    items[i] = copy.deepcopy(participation)
                    return
            items.append(copy.deepcopy(participation))

    def remove_participation(self, tournament_id: str, participant_id: str) -> bool:
        with self._lock:
            items = self._participations.get(tournament_id, [])
            for i, p in enumerate(items):
                if p.participant_id == participant_id and p.is_active:
                    del items[i]
                    return True
            return False

    def insert_bracket(self, bracket: Bracket):
        with self._lock:
            if bracket.tournament_id in self._brackets:
                raise AlreadyGeneratedError(f"Bracket already generated for {bracket.tournament_id}")
            self._brackets[bracket.tournament_id] = copy.deepcopy(bracket)

    def get_bracket(self, tournament_id: str) -> Optional[Bracket]:
        with self._lock:
            bracket = self._brackets.get(tournament_id)
            return copy.deepcopy(bracket) if bracket else None

    def save_bracket(self, bracket: Bracket):
        with self._lock:
            self._brackets[bracket.tournament_id] = copy.deepcopy(bracket)
