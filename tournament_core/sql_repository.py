import logging
import threading
from contextlib import contextmanager
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from shared.errors import AlreadyGeneratedError, AlreadyRegisteredError, NotFoundError
from shared.state_machine import TournamentState

from .entities import Bracket, Participation, ParticipationStatus, Tournament
from .models import db, BracketRecord, ParticipationRecord, TournamentRecord
from .repository import TournamentRepository

logger = logging.getLogger(__name__)


class SqlRepository(TournamentRepository):
    """
    Repository backed by Flask-SQLAlchemy. Needs an application context.

    ``atomic`` locks the tournament row (SELECT ... FOR UPDATE) and commits on
    exit. Writes inside a unit only flush; writes outside one commit directly.
    """

    def __init__(self, session=None):
        self._session = session
        self._local = threading.local()

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    @property
    def _in_unit(self) -> bool:
        return getattr(self._local, 'depth', 0) > 0

    def _write(self):
        if self._in_unit:
            self.session.flush()
        else:
            self.session.commit()

    def _flush_or_raise(self, error: Exception):
        """Write pending rows, turning a unique constraint violation into error."""
        try:
            self.session.flush()
        except IntegrityError as e:
            if not self._in_unit:
                self.session.rollback()
            logger.info(f"Constraint violation: {e.orig}")
            raise error from e
        self._write()

    @contextmanager
    def atomic(self, tournament_id: str):
        if self._in_unit:
            self._local.depth += 1
            try:
                yield self
            finally:
                self._local.depth -= 1
            return

        self._local.depth = 1
        session = self.session
        try:
            session.query(TournamentRecord).filter_by(
                tournament_id=tournament_id
            ).with_for_update().first()
            yield self
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            self._local.depth = 0

    def _tournament_record(self, tournament_id: str) -> Optional[TournamentRecord]:
        return self.session.query(TournamentRecord).filter_by(tournament_id=tournament_id).first()

    def _participation_record(self, tournament_id: str, participant_id: str) -> Optional[ParticipationRecord]:
        return self.session.query(ParticipationRecord).filter(
            ParticipationRecord.tournament_id == tournament_id,
            ParticipationRecord.participant_id == participant_id,
            ParticipationRecord.status != ParticipationStatus.WITHDRAWN.value,
        ).first()

    def _bracket_record(self, tournament_id: str) -> Optional[BracketRecord]:
        return self.session.query(BracketRecord).filter_by(tournament_id=tournament_id).first()

    # Tournaments

    def add_tournament(self, tournament: Tournament):
        record = TournamentRecord()
        record.update_from(tournament)
        self.session.add(record)
        self._write()

    def get_tournament(self, tournament_id: str) -> Optional[Tournament]:
        record = self._tournament_record(tournament_id)
        return record.to_entity() if record else None

    def list_tournaments(self, status: TournamentState = None,
                         organizer_id: str = None) -> List[Tournament]:
        query = self.session.query(TournamentRecord)
        if status:
            query = query.filter_by(status=TournamentState(status).value)
        if organizer_id:
            query = query.filter_by(organizer_id=organizer_id)
        query = query.order_by(TournamentRecord.created_at.desc(), TournamentRecord.id.desc())
        return [r.to_entity() for r in query.all()]

    def save_tournament(self, tournament: Tournament):
        record = self._tournament_record(tournament.tournament_id)
        if record is None:
            raise NotFoundError(f"Tournament {tournament.tournament_id} not found")
        record.update_from(tournament)
        self._write()

    def delete_tournament(self, tournament_id: str):
        record = self._tournament_record(tournament_id)
        if record is not None:
            self.session.delete(record)
            self._write()

    # Participations

    def add_participation(self, participation: Participation):
        record = ParticipationRecord()
        record.update_from(participation)
        self.session.add(record)
        self._flush_or_raise(AlreadyRegisteredError(f"{participation.participant_id} is already registered"))

    def get_participation(self, tournament_id: str, participant_id: str) -> Optional[Participation]:
        record = self._participation_record(tournament_id, participant_id)
        return record.to_entity() if record else None

    def list_participations(self, tournament_id: str,
                            status: ParticipationStatus = None) -> List[Participation]:
        query = self.session.query(ParticipationRecord).filter_by(tournament_id=tournament_id)
        if status:
            query = query.filter_by(status=ParticipationStatus(status).value)
        query = query.order_by(ParticipationRecord.registered_at, ParticipationRecord.id)
        return [r.to_entity() for r in query.all()]

    def count_approved(self, tournament_id: str) -> int:
        return self.session.query(ParticipationRecord).filter_by(
            tournament_id=tournament_id,
            status=ParticipationStatus.APPROVED.value
        ).count()

    def save_participation(self, participation: Participation):
        record = self.session.query(ParticipationRecord).filter_by(
            participation_id=participation.participation_id
        ).first()
        if record is None:
            raise NotFoundError(f"Participation {participation.participation_id} not found")
        record.update_from(participation)
        self._write()

    def remove_participation(self, tournament_id: str, participant_id: str) -> bool:
        record = self._participation_record(tournament_id, participant_id)
        if record is None:
            return False
        self.session.delete(record)
        self._write()
        return True

    # Brackets

    def insert_bracket(self, bracket: Bracket):
        if self._bracket_record(bracket.tournament_id) is not None:
            raise AlreadyGeneratedError(f"Bracket already generated for {bracket.tournament_id}")
        self.session.add(BracketRecord.from_entity(bracket))
        self._flush_or_raise(AlreadyGeneratedError(f"Bracket already generated for {bracket.tournament_id}"))

    def get_bracket(self, tournament_id: str) -> Optional[Bracket]:
        record = self._bracket_record(tournament_id)
        return record.to_entity() if record else None

    def save_bracket(self, bracket: Bracket):
        record = self._bracket_record(bracket.tournament_id)
        if record is None:
            raise NotFoundError(f"No bracket generated for {bracket.tournament_id}")
        record.update_from(bracket)
        self._write()
