"""
Unit tests for TournamentLifecycle, the public engine contract.
"""
import threading

import pytest

from shared.errors import (
    AlreadyGeneratedError,
    CapacityExceededError,
    IncompleteMatchesError,
    InsufficientParticipantsError,
    InvalidWinnerError,
    NotFoundError,
    TransitionError,
    UnauthorizedError,
    ValidationError,
)
from shared.events import EventType
from shared.state_machine import MatchStatus, TournamentState
from tournament_core.entities import ParticipationStatus, TournamentFormat, TournamentSettings

ORGANIZER = "organizer-1"


def join_players(lifecycle, tournament_id, count):
    for i in range(1, count + 1):
        lifecycle.join_tournament(tournament_id, f"player-{i}")


def started(lifecycle, make_tournament, count=4, **fields):
    tournament = make_tournament(**fields)
    tid = tournament.tournament_id
    join_players(lifecycle, tid, count)
    lifecycle.generate_bracket(tid, ORGANIZER)
    lifecycle.start_tournament(tid, ORGANIZER)
    return tid


class TestCreateAndUpdate:
    """Tests for tournament creation and editing."""

    def test_create_starts_in_draft(self, lifecycle):
        """New tournaments are drafts owned by the creator."""
        tournament = lifecycle.create_tournament(ORGANIZER, "Cup", ["game-1"])
        assert tournament.status == TournamentState.DRAFT
        assert tournament.organizer_id == ORGANIZER
        assert tournament.tournament_id.startswith("t_")

    def test_create_validates(self, lifecycle):
        """Invalid participant bounds are rejected."""
        with pytest.raises(ValidationError):
            lifecycle.create_tournament(ORGANIZER, "Cup", ["game-1"],
                                        min_participants=8, max_participants=4)
        with pytest.raises(ValidationError):
            lifecycle.create_tournament(ORGANIZER, "Cup", [])
        with pytest.raises(ValidationError):
            lifecycle.create_tournament(ORGANIZER, "Cup", ["game-1"], format="king_of_the_hill")

    def test_update_requires_organizer(self, lifecycle, make_tournament):
        """Only the organizer can edit."""
        tournament = make_tournament(open_registration=False)
        with pytest.raises(UnauthorizedError):
            lifecycle.update_tournament(tournament.tournament_id, "player-1", name="Mine")

    def test_update_fields(self, lifecycle, make_tournament):
        """Editable fields change while in draft or open."""
        tournament = make_tournament()
        updated = lifecycle.update_tournament(
            tournament.tournament_id, ORGANIZER, name="Summer Cup", format="round_robin"
        )
        assert updated.name == "Summer Cup"
        assert updated.format == TournamentFormat.ROUND_ROBIN

    def test_update_max_below_approved(self, lifecycle, make_tournament):
        """max_participants cannot drop below the approved count."""
        tournament = make_tournament()
        join_players(lifecycle, tournament.tournament_id, 3)
        with pytest.raises(ValidationError):
            lifecycle.update_tournament(tournament.tournament_id, ORGANIZER, max_participants=2)

    def test_format_locked_after_generation(self, lifecycle, make_tournament):
        """The format cannot change once a bracket exists."""
        tournament = make_tournament()
        join_players(lifecycle, tournament.tournament_id, 2)
        lifecycle.generate_bracket(tournament.tournament_id, ORGANIZER)
        with pytest.raises(TransitionError):
            lifecycle.update_tournament(tournament.tournament_id, ORGANIZER, format="swiss")

    def test_update_unknown_field(self, lifecycle, make_tournament):
        """Unknown fields are a validation error."""
        tournament = make_tournament()
        with pytest.raises(ValidationError):
            lifecycle.update_tournament(tournament.tournament_id, ORGANIZER, status="completed")


class TestStateTransitions:
    """Tests for lifecycle state changes."""

    def test_cannot_start_from_draft(self, lifecycle, make_tournament):
        """Draft tournaments cannot start."""
        tournament = make_tournament(open_registration=False)
        with pytest.raises(TransitionError):
            lifecycle.start_tournament(tournament.tournament_id, ORGANIZER)

    def test_start_needs_min_participants(self, lifecycle, make_tournament):
        """Start is refused below min_participants."""
        tournament = make_tournament(min_participants=3)
        join_players(lifecycle, tournament.tournament_id, 2)
        with pytest.raises(InsufficientParticipantsError):
            lifecycle.start_tournament(tournament.tournament_id, ORGANIZER)

    def test_start_needs_bracket(self, lifecycle, make_tournament):
        """Start is refused until the bracket exists."""
        tournament = make_tournament()
        join_players(lifecycle, tournament.tournament_id, 2)
        with pytest.raises(TransitionError):
            lifecycle.start_tournament(tournament.tournament_id, ORGANIZER)

    def test_pause_and_resume(self, lifecycle, make_tournament):
        """Pausing records a timestamp and resuming clears it."""
        tid = started(lifecycle, make_tournament)
        paused = lifecycle.pause_tournament(tid, ORGANIZER)
        assert paused.status == TournamentState.PAUSED
        assert paused.paused_at is not None

        resumed = lifecycle.resume_tournament(tid, ORGANIZER)
        assert resumed.status == TournamentState.IN_PROGRESS
        assert resumed.paused_at is None

    def test_paused_blocks_results(self, lifecycle, make_tournament):
        """No results are accepted while paused."""
        tid = started(lifecycle, make_tournament)
        lifecycle.pause_tournament(tid, ORGANIZER)
        with pytest.raises(TransitionError):
            lifecycle.record_match_result(tid, ORGANIZER, f"{tid}_r1_m1", "player-1")

    def test_cancel_from_in_progress(self, lifecycle, make_tournament):
        """An in-progress tournament can be cancelled."""
        tid = started(lifecycle, make_tournament)
        assert lifecycle.cancel_tournament(tid, ORGANIZER).status == TournamentState.CANCELLED

    def test_cancel_requires_organizer(self, lifecycle, make_tournament):
        """Only the organizer can cancel."""
        tournament = make_tournament()
        with pytest.raises(UnauthorizedError):
            lifecycle.cancel_tournament(tournament.tournament_id, "player-1")

    def test_delete_blocked_in_progress(self, lifecycle, make_tournament):
        """Running tournaments cannot be deleted."""
        tid = started(lifecycle, make_tournament)
        with pytest.raises(TransitionError):
            lifecycle.delete_tournament(tid, ORGANIZER)

    def test_delete_draft(self, lifecycle, make_tournament):
        """Draft tournaments can be deleted."""
        tournament = make_tournament(open_registration=False)
        lifecycle.delete_tournament(tournament.tournament_id, ORGANIZER)
        with pytest.raises(NotFoundError):
            lifecycle.get_tournament(tournament.tournament_id, ORGANIZER)

    def test_leave_blocked_in_progress(self, lifecycle, make_tournament):
        """Participants cannot leave a running tournament."""
        tid = started(lifecycle, make_tournament)
        with pytest.raises(TransitionError):
            lifecycle.leave_tournament(tid, "player-1")


class TestEndToEnd:
    """A full single elimination run with four players."""

    def test_full_run(self, lifecycle, make_tournament, publisher):
        """Create, fill, generate, play, finalize."""
        tournament = make_tournament(min_participants=2, max_participants=4)
        tid = tournament.tournament_id
        join_players(lifecycle, tid, 4)
        with pytest.raises(CapacityExceededError):
            lifecycle.join_tournament(tid, "player-5")

        bracket = lifecycle.generate_bracket(tid, ORGANIZER)
        assert len(bracket.rounds) == 2
        with pytest.raises(AlreadyGeneratedError):
            lifecycle.generate_bracket(tid, ORGANIZER)
        assert lifecycle.get_bracket(tid, ORGANIZER) == bracket

        lifecycle.start_tournament(tid, ORGANIZER)
        semi_1, semi_2 = lifecycle.get_matches(tid, ORGANIZER, round_number=1)
        assert semi_1.participant_ids == ["player-1", "player-4"]

        lifecycle.start_match(tid, ORGANIZER, semi_1.match_id)
        lifecycle.record_match_result(tid, ORGANIZER, semi_1.match_id, "player-1", {"score": "2-0"})
        lifecycle.record_match_result(tid, ORGANIZER, semi_2.match_id, "player-3")

        final = lifecycle.get_match(tid, ORGANIZER, f"{tid}_r2_m1")
        assert final.slots == ["player-1", "player-3"]

        with pytest.raises(IncompleteMatchesError) as exc_info:
            lifecycle.finalize_tournament(tid, ORGANIZER)
        assert exc_info.value.pending_match_ids == [final.match_id]

        outcome = lifecycle.record_match_result(tid, ORGANIZER, final.match_id, "player-3")
        assert outcome.bracket_complete

        completed = lifecycle.finalize_tournament(tid, ORGANIZER)
        assert completed.status == TournamentState.COMPLETED
        assert completed.winner_id == "player-3"
        assert completed.completed_at is not None

        with pytest.raises(TransitionError):
            lifecycle.cancel_tournament(tid, ORGANIZER)

        leaderboard = lifecycle.get_leaderboard(tid, "player-2")
        assert leaderboard[0].participant_id == "player-3"
        assert leaderboard[0].display_name == "Player 3"

        stats = lifecycle.get_tournament_statistics(tid, ORGANIZER)
        assert stats.completed_matches == stats.total_matches == 3

        types = [e.type for e in reversed(publisher.get_recent_events(tid))]
        assert types[0] == EventType.TOURNAMENT_CREATED
        assert types.count(EventType.PARTICIPANT_JOINED) == 4
        assert EventType.BRACKET_GENERATED in types
        assert types.count(EventType.MATCH_RESULT) == 3
        assert types.count(EventType.ROUND_COMPLETED) == 2
        assert types[-1] == EventType.TOURNAMENT_COMPLETED

    def test_round_robin_winner_from_leaderboard(self, lifecycle, make_tournament):
        """Non-elimination formats take the leaderboard leader as winner."""
        tid = started(lifecycle, make_tournament, count=3, format="round_robin")
        for match in lifecycle.get_matches(tid, ORGANIZER):
            winner = "player-2" if "player-2" in match.participant_ids else match.participant_ids[0]
            lifecycle.record_match_result(tid, ORGANIZER, match.match_id, winner)
        assert lifecycle.finalize_tournament(tid, ORGANIZER).winner_id == "player-2"

    def test_swiss_pairs_rounds_as_they_finish(self, lifecycle, make_tournament, publisher):
        """Completing a Swiss round publishes the next pairing."""
        tid = started(lifecycle, make_tournament, count=4, format="swiss")
        for match in lifecycle.get_matches(tid, ORGANIZER, round_number=1):
            lifecycle.record_match_result(tid, ORGANIZER, match.match_id, match.participant_ids[0])

        assert len(lifecycle.get_matches(tid, ORGANIZER, round_number=2)) == 2
        types = [e.type for e in publisher.get_recent_events(tid)]
        assert EventType.ROUND_PAIRED in types


class TestBracketGeneration:
    """Tests for generating the bracket once."""

    def test_concurrent_generation_single_bracket(self, lifecycle, make_tournament):
        """Parallel generation stores exactly one bracket."""
        tournament = make_tournament()
        tid = tournament.tournament_id
        join_players(lifecycle, tid, 6)
        barrier = threading.Barrier(8)
        generated = []
        rejected = []
        lock = threading.Lock()

        def generate():
            barrier.wait()
            try:
                bracket = lifecycle.generate_bracket(tid, ORGANIZER)
                with lock:
                    generated.append(bracket)
            except AlreadyGeneratedError:
                with lock:
                    rejected.append(True)

        threads = [threading.Thread(target=generate) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(generated) == 1
        assert len(rejected) == 7
        assert lifecycle.get_bracket(tid, ORGANIZER) == generated[0]

    def test_rejected_generation_leaves_bracket(self, lifecycle, make_tournament):
        """A second call after results leaves the stored bracket as it was."""
        tid = started(lifecycle, make_tournament)
        lifecycle.record_match_result(tid, ORGANIZER, f"{tid}_r1_m1", "player-1")
        before = lifecycle.get_bracket(tid, ORGANIZER)

        lifecycle.pause_tournament(tid, ORGANIZER)
        with pytest.raises(TransitionError):
            lifecycle.generate_bracket(tid, ORGANIZER)
        assert lifecycle.get_bracket(tid, ORGANIZER) == before

    def test_delete_releases_tournament_lock(self, lifecycle, make_tournament, repository):
        """Deleting a tournament drops its lock entry."""
        tournament = make_tournament()
        tid = tournament.tournament_id
        lifecycle.join_tournament(tid, "player-1")
        assert tid in repository._tournament_locks

        lifecycle.delete_tournament(tid, ORGANIZER)
        assert tid not in repository._tournament_locks


class TestMatchPermissions:
    """Tests for match operation guards."""

    def test_results_are_organizer_only(self, lifecycle, make_tournament):
        """Participants cannot report results."""
        tid = started(lifecycle, make_tournament)
        with pytest.raises(UnauthorizedError):
            lifecycle.record_match_result(tid, "player-1", f"{tid}_r1_m1", "player-1")

    def test_results_need_bracket_in_progress(self, lifecycle, make_tournament):
        """Results before the start are rejected."""
        tournament = make_tournament()
        tid = tournament.tournament_id
        join_players(lifecycle, tid, 2)
        lifecycle.generate_bracket(tid, ORGANIZER)
        with pytest.raises(TransitionError):
            lifecycle.record_match_result(tid, ORGANIZER, f"{tid}_r1_m1", "player-1")

    def test_invalid_winner(self, lifecycle, make_tournament):
        """The winner must play in the match."""
        tid = started(lifecycle, make_tournament)
        with pytest.raises(InvalidWinnerError):
            lifecycle.record_match_result(tid, ORGANIZER, f"{tid}_r1_m1", "player-2")
        match = lifecycle.get_match(tid, ORGANIZER, f"{tid}_r1_m1")
        assert match.status == MatchStatus.SCHEDULED

    def test_concurrent_results_single_winner(self, lifecycle, make_tournament):
        """Two simultaneous reports for one match: one wins, the other is rejected."""
        tid = started(lifecycle, make_tournament)
        match_id = f"{tid}_r1_m1"
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def report(winner):
            barrier.wait()
            try:
                lifecycle.record_match_result(tid, ORGANIZER, match_id, winner)
                outcome = "ok"
            except TransitionError:
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=report, args=(w,)) for w in ("player-1", "player-4")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "rejected"]
        final = lifecycle.get_match(tid, ORGANIZER, f"{tid}_r2_m1")
        assert final.slots[0] in ("player-1", "player-4")


class TestVisibility:
    """Tests for private tournaments and queries."""

    def test_private_hidden_from_strangers(self, lifecycle, make_tournament):
        """Private tournaments are visible to organizer and participants only."""
        tournament = make_tournament(is_public=False)
        tid = tournament.tournament_id
        lifecycle.join_tournament(tid, "player-1")

        assert lifecycle.get_tournament(tid, ORGANIZER).tournament_id == tid
        assert lifecycle.get_tournament(tid, "player-1").tournament_id == tid
        with pytest.raises(UnauthorizedError):
            lifecycle.get_tournament(tid, "player-9")
        assert tid not in [t.tournament_id for t in lifecycle.list_tournaments("player-9")]

    def test_list_by_status(self, lifecycle, make_tournament):
        """Listing filters by status."""
        make_tournament(open_registration=False)
        opened = make_tournament()
        listed = lifecycle.list_tournaments("anyone", status="open")
        assert [t.tournament_id for t in listed] == [opened.tournament_id]

    def test_unknown_tournament(self, lifecycle):
        """Unknown ids are NotFound."""
        with pytest.raises(NotFoundError):
            lifecycle.get_tournament("t_missing", ORGANIZER)

    def test_bracket_not_generated(self, lifecycle, make_tournament):
        """Bracket queries before generation are NotFound."""
        tournament = make_tournament()
        with pytest.raises(NotFoundError):
            lifecycle.get_bracket(tournament.tournament_id, ORGANIZER)

    def test_participants_by_status(self, lifecycle, make_tournament):
        """Participants can be filtered by status."""
        tournament = make_tournament(settings=TournamentSettings(require_approval=True))
        tid = tournament.tournament_id
        join_players(lifecycle, tid, 3)
        lifecycle.approve_participant(tid, ORGANIZER, "player-2")
        lifecycle.decline_participant(tid, ORGANIZER, "player-3")

        approved = lifecycle.get_participants(tid, ORGANIZER, ParticipationStatus.APPROVED)
        assert [p.participant_id for p in approved] == ["player-2"]
        pending = lifecycle.get_participants(tid, ORGANIZER, "registered")
        assert [p.participant_id for p in pending] == ["player-1"]

    def test_participant_statistics(self, lifecycle, make_tournament):
        """Per-participant statistics after one match."""
        tid = started(lifecycle, make_tournament)
        lifecycle.record_match_result(tid, ORGANIZER, f"{tid}_r1_m1", "player-4")
        stats = lifecycle.get_participant_statistics(tid, ORGANIZER, "player-4")
        assert (stats.matches_played, stats.matches_won) == (1, 1)
        assert stats.current_position == 1
