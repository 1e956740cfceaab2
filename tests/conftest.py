"""
Pytest configuration and fixtures for tournament engine tests.
"""
import os
import sys
from datetime import datetime, timedelta

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'
os.environ['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'

from shared.pubsub import EventPublisher
from tournament_core.app import create_app
from tournament_core.entities import Participation, ParticipationStatus, Tournament, TournamentFormat
from tournament_core.identity import DictIdentityResolver
from tournament_core.lifecycle import TournamentLifecycle
from tournament_core.models import db
from tournament_core.repository import InMemoryRepository
from tournament_core.sql_repository import SqlRepository

ORGANIZER = 'organizer-1'


class FakeClock:
    """Deterministic clock; every reading advances one second."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        value = self.now
        self.now += timedelta(seconds=1)
        return value

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def publisher():
    """Local-mode publisher that records events in memory."""
    return EventPublisher()


@pytest.fixture
def identity():
    return DictIdentityResolver({f'player-{i}': f'Player {i}' for i in range(1, 17)})


@pytest.fixture
def lifecycle(repository, publisher, identity, clock):
    return TournamentLifecycle(repository, publisher=publisher, identity=identity, clock=clock)


@pytest.fixture
def make_tournament(lifecycle):
    """Factory creating a tournament, opened for registration unless told otherwise."""
    def factory(format='single_elimination', min_participants=2, max_participants=8,
                open_registration=True, **fields):
        tournament = lifecycle.create_tournament(
            ORGANIZER, 'Spring Cup', ['game-1'],
            format=format,
            min_participants=min_participants,
            max_participants=max_participants,
            **fields
        )
        if open_registration:
            tournament = lifecycle.open_registration(tournament.tournament_id, ORGANIZER)
        return tournament
    return factory


@pytest.fixture
def make_participations(clock):
    """Factory for approved participations player-1..player-n in registration order."""
    def factory(count, tournament_id='t_test'):
        return [
            Participation(
                participation_id=f'p{i}',
                tournament_id=tournament_id,
                participant_id=f'player-{i}',
                status=ParticipationStatus.APPROVED,
                registered_at=clock(),
            )
            for i in range(1, count + 1)
        ]
    return factory


@pytest.fixture
def bare_tournament():
    """Factory for an unsaved tournament entity."""
    def factory(format=TournamentFormat.SINGLE_ELIMINATION, **fields):
        return Tournament(
            tournament_id=fields.pop('tournament_id', 't_test'),
            organizer_id=ORGANIZER,
            name='Test Tournament',
            game_ids=['game-1'],
            format=TournamentFormat(format),
            **fields
        )
    return factory


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create database session for testing."""
    with app.app_context():
        # Clear all tables before each test
        db.session.remove()

        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def sql_lifecycle(app, db_session, clock):
    return TournamentLifecycle(SqlRepository(), publisher=EventPublisher(), clock=clock)
