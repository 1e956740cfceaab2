"""
Unit tests for ParticipantRegistry.
"""
import threading
from datetime import timedelta

import pytest

from shared.errors import (
    AlreadyRegisteredError,
    CapacityExceededError,
    DeadlinePassedError,
    NotFoundError,
    TransitionError,
    UnauthorizedError,
    ValidationError,
)
from tournament_core.entities import ParticipationStatus, TournamentSettings
from tournament_core.participant_registry import ParticipantRegistry

ORGANIZER = "organizer-1"


@pytest.fixture
def registry(repository, clock):
    return ParticipantRegistry(repository, clock)


class TestJoin:
    """Tests for joining a tournament."""

    def test_join_approved_immediately(self, registry, make_tournament):
        """Without approval required, joins are approved at once."""
        tournament = make_tournament()
        participation = registry.join(tournament.tournament_id, "player-1")
        assert participation.status == ParticipationStatus.APPROVED
        assert participation.approved_at is not None

    def test_join_pending_when_approval_required(self, registry, make_tournament):
        """With approval required, joins wait as registered."""
        tournament = make_tournament(settings=TournamentSettings(require_approval=True))
        participation = registry.join(tournament.tournament_id, "player-1")
        assert participation.status == ParticipationStatus.REGISTERED
        assert participation.approved_at is None

    def test_join_requires_open(self, registry, make_tournament):
        """Draft tournaments reject joins."""
        tournament = make_tournament(open_registration=False)
        with pytest.raises(TransitionError):
            registry.join(tournament.tournament_id, "player-1")

    def test_join_unknown_tournament(self, registry):
        """Unknown tournaments are NotFound."""
        with pytest.raises(NotFoundError):
            registry.join("t_missing", "player-1")

    def test_join_after_deadline(self, registry, make_tournament, clock):
        """Joining after the registration deadline fails."""
        tournament = make_tournament(registration_deadline=clock.now + timedelta(minutes=5))
        clock.advance(minutes=10)
        with pytest.raises(DeadlinePassedError):
            registry.join(tournament.tournament_id, "player-1")

    def test_join_twice(self, registry, make_tournament):
        """A participant cannot hold two registrations."""
        tournament = make_tournament()
        registry.join(tournament.tournament_id, "player-1")
        with pytest.raises(AlreadyRegisteredError):
            registry.join(tournament.tournament_id, "player-1")

    def test_join_when_full(self, registry, make_tournament):
        """Joins beyond max_participants fail."""
        tournament = make_tournament(max_participants=2)
        registry.join(tournament.tournament_id, "player-1")
        registry.join(tournament.tournament_id, "player-2")
        with pytest.raises(CapacityExceededError):
            registry.join(tournament.tournament_id, "player-3")

    def test_team_size_limit(self, registry, make_tournament):
        """Teams larger than max_team_size are rejected."""
        tournament = make_tournament(settings=TournamentSettings(max_team_size=2))
        with pytest.raises(ValidationError):
            registry.join(tournament.tournament_id, "player-1", "Team A", ["a", "b", "c"])
        participation = registry.join(tournament.tournament_id, "player-1", "Team A", ["a", "b"])
        assert participation.team_members == ["a", "b"]

    def test_concurrent_joins_respect_capacity(self, registry, make_tournament):
        """Parallel joins never push approved count past the maximum."""
        tournament = make_tournament(max_participants=4)
        barrier = threading.Barrier(10)
        results = []
        lock = threading.Lock()

        def join(i):
            barrier.wait()
            try:
                registry.join(tournament.tournament_id, f"player-{i}")
                outcome = "ok"
            except CapacityExceededError:
                outcome = "full"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=join, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 4
        assert results.count("full") == 6
        approved = registry.list_participants(tournament.tournament_id, ParticipationStatus.APPROVED)
        assert len(approved) == 4


class TestLeaveAndKick:
    """Tests for leaving and kicking."""

    def test_leave_removes_participation(self, registry, make_tournament):
        """Leaving frees the slot and allows joining again."""
        tournament = make_tournament()
        registry.join(tournament.tournament_id, "player-1")
        left = registry.leave(tournament.tournament_id, "player-1")

        assert left.status == ParticipationStatus.WITHDRAWN
        assert registry.list_participants(tournament.tournament_id) == []
        registry.join(tournament.tournament_id, "player-1")

    def test_leave_unknown(self, registry, make_tournament):
        """Leaving without a registration is NotFound."""
        tournament = make_tournament()
        with pytest.raises(NotFoundError):
            registry.leave(tournament.tournament_id, "player-1")

    def test_kick_requires_organizer(self, registry, make_tournament):
        """Only the organizer can kick."""
        tournament = make_tournament()
        registry.join(tournament.tournament_id, "player-1")
        with pytest.raises(UnauthorizedError):
            registry.kick(tournament.tournament_id, "player-2", "player-1")

    def test_kick_removes(self, registry, make_tournament):
        """Kicking removes the participation."""
        tournament = make_tournament()
        registry.join(tournament.tournament_id, "player-1")
        registry.kick(tournament.tournament_id, ORGANIZER, "player-1")
        with pytest.raises(NotFoundError):
            registry.get_participation(tournament.tournament_id, "player-1")


class TestApproval:
    """Tests for approving and declining registrations."""

    def test_approve(self, registry, make_tournament):
        """Approval moves registered to approved."""
        tournament = make_tournament(settings=TournamentSettings(require_approval=True))
        registry.join(tournament.tournament_id, "player-1")
        participation = registry.approve(tournament.tournament_id, ORGANIZER, "player-1")
        assert participation.status == ParticipationStatus.APPROVED
        assert participation.approved_at is not None

    def test_approve_rechecks_capacity(self, registry, make_tournament):
        """Approval fails once the approved count reaches the maximum."""
        tournament = make_tournament(
            max_participants=2, settings=TournamentSettings(require_approval=True)
        )
        for i in range(1, 4):
            registry.join(tournament.tournament_id, f"player-{i}")
        registry.approve(tournament.tournament_id, ORGANIZER, "player-1")
        registry.approve(tournament.tournament_id, ORGANIZER, "player-2")
        with pytest.raises(CapacityExceededError):
            registry.approve(tournament.tournament_id, ORGANIZER, "player-3")

    def test_approve_requires_organizer(self, registry, make_tournament):
        """Only the organizer can approve."""
        tournament = make_tournament(settings=TournamentSettings(require_approval=True))
        registry.join(tournament.tournament_id, "player-1")
        with pytest.raises(UnauthorizedError):
            registry.approve(tournament.tournament_id, "player-1", "player-1")

    def test_approve_twice(self, registry, make_tournament):
        """An approved participation cannot be approved again."""
        tournament = make_tournament()
        registry.join(tournament.tournament_id, "player-1")
        with pytest.raises(TransitionError):
            registry.approve(tournament.tournament_id, ORGANIZER, "player-1")

    def test_decline(self, registry, make_tournament):
        """Declined registrations stay on record but never count as approved."""
        tournament = make_tournament(settings=TournamentSettings(require_approval=True))
        registry.join(tournament.tournament_id, "player-1")
        participation = registry.decline(tournament.tournament_id, ORGANIZER, "player-1")

        assert participation.status == ParticipationStatus.DECLINED
        assert registry.list_participants(
            tournament.tournament_id, ParticipationStatus.APPROVED
        ) == []
        with pytest.raises(AlreadyRegisteredError):
            registry.join(tournament.tournament_id, "player-1")

    def test_list_in_registration_order(self, registry, make_tournament):
        """Participants are listed by registration time."""
        tournament = make_tournament()
        for pid in ("c", "a", "b"):
            registry.join(tournament.tournament_id, pid)
        listed = registry.list_participants(tournament.tournament_id)
        assert [p.participant_id for p in listed] == ["c", "a", "b"]
