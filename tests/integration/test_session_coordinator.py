"""
Integration tests for SessionCoordinator.

Runs the full answer flow against an in-memory SQLite database:
- Session lifecycle (start, resume, end)
- Review schedule and mastery updates per answer
- Atomicity of the answer transaction
- Daily goals, streak statistics, wrong-answer review
"""

from collections.abc import Callable
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from practice_engine.config import Settings
from practice_engine.core.errors import (
    DuplicateSubmission,
    InvariantViolation,
    NotFound,
    PersistenceFailure,
    SessionEnded,
)
from practice_engine.core.mastery import MasteryLevel
from practice_engine.db.database import read_scope, session_scope
from practice_engine.db.models import DailyGoal, PracticeSession, ReviewSchedule, SessionAnswer
from practice_engine.db.repository import PracticeRepository
from practice_engine.learning.item_selector import SelectionScorer
from practice_engine.study.session_coordinator import SessionCoordinator, clamp_daily_target
from tests.helpers import NOW, ZeroRandom, make_item


class InterleavingScorer(SelectionScorer):
    """
    Runs ``interleave`` just before the Nth select_next call.

    Call 1 is start_session; call 2 lands inside the first submit_answer
    transaction, after every row has been staged but before the commit.
    """

    def __init__(self, on_call: int = 2):
        super().__init__(rng=ZeroRandom())
        self.on_call = on_call
        self.calls = 0
        self.interleave: Callable[[], None] | None = None

    def select_next(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.on_call and self.interleave is not None:
            self.interleave()
        return super().select_next(*args, **kwargs)


def count_rows(session_factory, model) -> int:
    with read_scope(session_factory) as db:
        return db.scalar(select(func.count()).select_from(model))


def commit_elsewhere(session_factory, write: Callable[[Session], None]) -> Callable[[], None]:
    """A competing writer that commits in its own session."""

    def _run() -> None:
        with session_scope(session_factory) as other:
            write(other)

    return _run


@pytest.fixture
def one_item(seed_items):
    seed_items(make_item("q1", skill="algebra", difficulty=2, correct_answer="B"))


@pytest.fixture
def five_items(seed_items):
    seed_items(*[make_item(f"q{i}") for i in range(1, 6)])


@pytest.fixture
def racing(session_factory, clock):
    """Coordinator whose scorer lets a test interleave a competing write."""
    scorer = InterleavingScorer()
    coordinator = SessionCoordinator(
        session_factory=session_factory,
        scorer=scorer,
        settings=Settings(default_daily_target=3),
        clock=clock,
    )
    return coordinator, scorer


class TestAnswerFlow:
    """End-to-end answer processing."""

    def test_correct_then_incorrect(self, coordinator, session_factory, one_item):
        start = coordinator.start_session("alice")
        assert start.first_item_id == "q1"
        assert start.is_resumed is False

        first = coordinator.submit_answer(start.session_id, "q1", "B", 12_000)

        assert first.is_correct is True
        assert first.correct_answer == "B"
        assert first.mastery_points == 15
        assert first.point_change == 15
        assert first.mastery_level == MasteryLevel.NOVICE
        assert first.session_streak == 1
        assert first.current_streak == 1
        # Single-item pool: falls back to the answered item
        assert first.next_item_id == "q1"

        with read_scope(session_factory) as db:
            review = PracticeRepository(db).review_records("alice")["q1"]
        assert review.ease_factor == pytest.approx(2.6)
        assert review.interval == 1
        assert review.repetitions == 1
        assert review.next_review_at == NOW + timedelta(days=1)

        second = coordinator.submit_answer(start.session_id, "q1", "A", 8_000)

        assert second.is_correct is False
        assert second.mastery_points == 5
        assert second.point_change == -10
        assert second.session_streak == 0
        assert second.current_streak == 0
        assert second.best_streak == 1

        with read_scope(session_factory) as db:
            repo = PracticeRepository(db)
            review = repo.review_records("alice")["q1"]
            mastery = repo.mastery_records("alice")["algebra"]
        assert review.ease_factor == pytest.approx(2.4)
        assert review.repetitions == 0
        assert review.total_attempts == 2
        assert review.correct_attempts == 1
        assert mastery.mastery_points == 5
        assert mastery.total_questions == 2
        assert mastery.correct_answers == 1

    def test_session_state_tracks_tallies(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        coordinator.submit_answer(start.session_id, "q2", "B", 1_000)
        coordinator.submit_answer(start.session_id, "q3", "C", 1_000)

        state = coordinator.get_session_state(start.session_id)

        assert state.learner_id == "alice"
        assert state.status == "active"
        assert state.questions_answered == 3
        assert state.correct_answers == 2
        assert state.accuracy == 67
        assert state.best_streak == 2
        assert state.current_streak == 0
        assert state.started_at == NOW

    def test_items_distinct_within_session(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        served = [start.first_item_id]
        current = start.first_item_id

        for _ in range(4):
            result = coordinator.submit_answer(start.session_id, current, "B", 1_000)
            current = result.next_item_id
            served.append(current)

        assert sorted(served) == ["q1", "q2", "q3", "q4", "q5"]

        # Pool exhausted: selection keeps serving from the pool
        result = coordinator.submit_answer(start.session_id, current, "B", 1_000)
        assert result.next_item_id in set(served)

    def test_scope_without_items(self, coordinator, five_items):
        start = coordinator.start_session("alice", category="history")

        assert start.first_item_id is None
        assert coordinator.get_current_item(start.session_id) is None

    def test_scoped_session_serves_scoped_items(self, coordinator, seed_items):
        seed_items(
            make_item("m1", category="math"),
            make_item("p1", category="science", domain="physics", skill="motion"),
            make_item("p2", category="science", domain="physics", skill="motion"),
        )

        start = coordinator.start_session("alice", category="science")
        result = coordinator.submit_answer(start.session_id, start.first_item_id, "B", 1_000)

        assert start.first_item_id in {"p1", "p2"}
        assert result.next_item_id in {"p1", "p2"}
        assert result.next_item_id != start.first_item_id


class TestSessionLifecycle:
    def test_start_resumes_active_session(self, coordinator, five_items):
        first = coordinator.start_session("alice")
        second = coordinator.start_session("alice", category="ignored")

        assert second.session_id == first.session_id
        assert second.first_item_id == first.first_item_id
        assert second.is_resumed is True
        assert coordinator.get_active_session("alice") == first.session_id

    def test_learners_are_independent(self, coordinator, five_items):
        alice = coordinator.start_session("alice")
        bob = coordinator.start_session("bob")

        assert alice.session_id != bob.session_id

    def test_end_session_summary(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        coordinator.submit_answer(start.session_id, "q2", "D", 1_000)

        summary = coordinator.end_session(start.session_id)

        assert summary.questions_answered == 2
        assert summary.correct_answers == 1
        assert summary.accuracy == pytest.approx(0.5)
        assert summary.best_streak == 1
        assert coordinator.get_active_session("alice") is None

    def test_end_without_answers(self, coordinator, five_items):
        start = coordinator.start_session("alice")

        summary = coordinator.end_session(start.session_id)

        assert summary.questions_answered == 0
        assert summary.accuracy == 0

    def test_ended_session_rejects_answers(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        coordinator.end_session(start.session_id)

        with pytest.raises(SessionEnded):
            coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        with pytest.raises(SessionEnded):
            coordinator.end_session(start.session_id)

    def test_new_session_after_end(self, coordinator, five_items):
        first = coordinator.start_session("alice")
        coordinator.submit_answer(first.session_id, "q1", "B", 1_000)
        coordinator.submit_answer(first.session_id, "q2", "B", 1_000)
        coordinator.end_session(first.session_id)

        second = coordinator.start_session("alice")
        result = coordinator.submit_answer(second.session_id, "q3", "A", 1_000)

        assert second.session_id != first.session_id
        assert second.is_resumed is False
        # Best streak carries over from earlier sessions
        assert result.best_streak == 2

        stats = coordinator.get_streak_stats("alice")
        assert stats.current_streak == 0
        assert stats.best_streak == 2
        assert stats.total_sessions == 2

    def test_not_found(self, coordinator, five_items):
        start = coordinator.start_session("alice")

        with pytest.raises(NotFound):
            coordinator.submit_answer("no-such-session", "q1", "B", 1_000)
        with pytest.raises(NotFound) as exc_info:
            coordinator.submit_answer(start.session_id, "no-such-item", "B", 1_000)
        assert exc_info.value.kind == "item"
        with pytest.raises(NotFound):
            coordinator.end_session("no-such-session")
        with pytest.raises(NotFound):
            coordinator.get_session_state("no-such-session")

    def test_negative_time_rejected(self, coordinator, five_items):
        start = coordinator.start_session("alice")

        with pytest.raises(InvariantViolation):
            coordinator.submit_answer(start.session_id, "q1", "B", -1)


class TestAtomicity:
    """Either every effect of an answer is persisted or none is."""

    def test_duplicate_submission_applied_once(self, coordinator, session_factory, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000, submission_token="t-1")

        with pytest.raises(DuplicateSubmission):
            coordinator.submit_answer(start.session_id, "q1", "B", 1_000, submission_token="t-1")

        state = coordinator.get_session_state(start.session_id)
        assert state.questions_answered == 1
        assert count_rows(session_factory, SessionAnswer) == 1

        with read_scope(session_factory) as db:
            assert PracticeRepository(db).mastery_records("alice")["algebra"].total_questions == 1

    def test_failure_mid_answer_rolls_back(self, racing, session_factory, five_items):
        coordinator, scorer = racing
        start = coordinator.start_session("alice")

        def blow_up() -> None:
            raise RuntimeError("selection blew up")

        scorer.interleave = blow_up

        with pytest.raises(RuntimeError):
            coordinator.submit_answer(start.session_id, "q1", "B", 1_000)

        assert count_rows(session_factory, SessionAnswer) == 0
        assert count_rows(session_factory, DailyGoal) == 0
        with read_scope(session_factory) as db:
            repo = PracticeRepository(db)
            assert repo.review_records("alice") == {}
            assert repo.mastery_records("alice") == {}
            practice_session = db.get(PracticeSession, start.session_id)
            assert practice_session.questions_answered == 0
            assert practice_session.answered_item_ids == []

    def test_concurrent_session_update_is_retryable(self, racing, session_factory, five_items):
        """Another writer bumps the session row mid-answer: the version check rejects ours."""
        coordinator, scorer = racing
        start = coordinator.start_session("alice")

        def touch_session(other: Session) -> None:
            other.get(PracticeSession, start.session_id).last_active_at = NOW + timedelta(
                seconds=1
            )

        scorer.interleave = commit_elsewhere(session_factory, touch_session)

        with pytest.raises(PersistenceFailure) as exc_info:
            coordinator.submit_answer(start.session_id, "q1", "B", 1_000)

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, StaleDataError)
        assert count_rows(session_factory, SessionAnswer) == 0
        assert coordinator.get_session_state(start.session_id).questions_answered == 0

        # Nothing was applied, so the same answer goes through on retry
        result = coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        assert result.mastery_points == 15
        assert coordinator.get_session_state(start.session_id).questions_answered == 1

    def test_lost_row_race_with_fresh_token_is_retryable(
        self, racing, session_factory, five_items
    ):
        """A unique-row conflict other than the token is not reported as a duplicate."""
        coordinator, scorer = racing
        start = coordinator.start_session("alice")
        scorer.interleave = commit_elsewhere(
            session_factory,
            lambda other: other.add(ReviewSchedule(learner_id="alice", item_id="q1")),
        )

        with pytest.raises(PersistenceFailure) as exc_info:
            coordinator.submit_answer(
                start.session_id, "q1", "B", 1_000, submission_token="fresh-token"
            )

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert count_rows(session_factory, SessionAnswer) == 0

        # The token was never consumed
        result = coordinator.submit_answer(
            start.session_id, "q1", "B", 1_000, submission_token="fresh-token"
        )
        assert result.is_correct is True
        assert count_rows(session_factory, SessionAnswer) == 1

    def test_token_race_reports_duplicate(self, racing, session_factory, five_items):
        """The same token committed by another writer mid-answer is a duplicate."""
        coordinator, scorer = racing
        start = coordinator.start_session("alice")
        scorer.interleave = commit_elsewhere(
            session_factory,
            lambda other: other.add(
                SessionAnswer(
                    session_id=start.session_id,
                    learner_id="alice",
                    item_id="q1",
                    selected_answer="B",
                    is_correct=True,
                    time_spent_ms=1_000,
                    submitted_at=NOW,
                    submission_token="t-1",
                )
            ),
        )

        with pytest.raises(DuplicateSubmission):
            coordinator.submit_answer(start.session_id, "q1", "B", 1_000, submission_token="t-1")

        # Only the competing writer's answer exists; ours was rolled back
        assert count_rows(session_factory, SessionAnswer) == 1
        assert coordinator.get_session_state(start.session_id).questions_answered == 0


class TestDailyGoals:
    def test_goal_met_at_target(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        coordinator.submit_answer(start.session_id, "q2", "A", 2_000)

        progress = coordinator.get_daily_goal_progress("alice")
        assert progress.goal_date == NOW.date()
        assert progress.answered == 2
        assert progress.target == 3
        assert progress.progress == 67
        assert progress.met is False
        assert progress.accuracy == 50
        assert progress.time_spent_ms == 3_000

        coordinator.submit_answer(start.session_id, "q3", "B", 1_000)

        progress = coordinator.get_daily_goal_progress("alice")
        assert progress.answered == 3
        assert progress.progress == 100
        assert progress.met is True

    def test_progress_capped_at_100(self, coordinator, five_items):
        start = coordinator.start_session("alice")
        for item_id in ("q1", "q2", "q3", "q4", "q5"):
            coordinator.submit_answer(start.session_id, item_id, "B", 1_000)

        progress = coordinator.get_daily_goal_progress("alice")
        assert progress.answered == 5
        assert progress.progress == 100

    def test_no_activity(self, coordinator):
        progress = coordinator.get_daily_goal_progress("alice", date(2024, 1, 1))

        assert progress.answered == 0
        assert progress.target == 3
        assert progress.progress == 0
        assert progress.met is False

    @pytest.mark.parametrize("requested,stored", [(150, 100), (0, 1), (-5, 1), (20, 20)])
    def test_target_clamped(self, coordinator, requested, stored):
        assert coordinator.set_daily_goal_target("alice", requested) == stored
        assert coordinator.get_daily_goal_progress("alice").target == stored
        assert clamp_daily_target(requested) == stored

    def test_new_target_applies_from_next_day(self, coordinator, clock, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)

        coordinator.set_daily_goal_target("alice", 1)

        assert coordinator.get_daily_goal_progress("alice").target == 3

        clock.advance(days=1)
        coordinator.submit_answer(start.session_id, "q2", "B", 1_000)

        progress = coordinator.get_daily_goal_progress("alice")
        assert progress.goal_date == NOW.date() + timedelta(days=1)
        assert progress.target == 1
        assert progress.met is True


class TestProgressViews:
    def test_mastery_overview(self, coordinator, seed_items):
        seed_items(
            make_item("a1", skill="algebra", domain="algebra"),
            make_item("g1", skill="angles", domain="geometry", difficulty=3),
        )
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "a1", "B", 1_000)
        coordinator.submit_answer(start.session_id, "g1", "B", 1_000)

        overview = coordinator.get_mastery_overview("alice")

        assert [(e.domain, e.skill) for e in overview] == [
            ("algebra", "algebra"),
            ("geometry", "angles"),
        ]
        assert overview[0].mastery_points == 15
        # 15 x 1.2 = 18
        assert overview[1].mastery_points == 18
        assert all(e.mastery_level == MasteryLevel.NOVICE for e in overview)
        assert coordinator.get_mastery_overview("nobody") == []

    def test_current_item(self, coordinator, one_item):
        start = coordinator.start_session("alice")

        view = coordinator.get_current_item(start.session_id)
        assert view.item_id == "q1"
        assert view.skill == "algebra"
        assert view.mastery is None

        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)

        view = coordinator.get_current_item(start.session_id)
        assert view.mastery.points == 15
        assert view.mastery.level == MasteryLevel.NOVICE

    def test_streak_stats_for_new_learner(self, coordinator):
        stats = coordinator.get_streak_stats("nobody")

        assert stats.current_streak == 0
        assert stats.best_streak == 0
        assert stats.total_sessions == 0

    def test_reset_review_history(self, coordinator, session_factory, five_items):
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        coordinator.submit_answer(start.session_id, "q2", "B", 1_000)

        assert coordinator.reset_review_history("alice", "q1") == 1
        assert coordinator.reset_review_history("alice") == 1
        assert coordinator.reset_review_history("alice") == 0

        with read_scope(session_factory) as db:
            repo = PracticeRepository(db)
            assert repo.review_records("alice") == {}
            # Mastery is untouched
            assert repo.mastery_records("alice")["algebra"].total_questions == 2

    def test_wrong_answers(self, coordinator, clock, seed_items):
        seed_items(
            make_item("q1", skill="algebra"),
            make_item("q2", skill="algebra"),
            make_item("p1", category="science", domain="physics", skill="motion"),
        )
        start = coordinator.start_session("alice")
        coordinator.submit_answer(start.session_id, "q1", "A", 1_000)
        clock.advance(minutes=1)
        coordinator.submit_answer(start.session_id, "q2", "C", 1_000)
        clock.advance(minutes=1)
        coordinator.submit_answer(start.session_id, "q1", "B", 1_000)
        clock.advance(minutes=1)
        coordinator.submit_answer(start.session_id, "p1", "D", 1_000)

        page = coordinator.get_wrong_answers("alice", category="math")

        assert page.total == 2
        assert page.has_more is False
        assert [e.item_id for e in page.wrong_answers] == ["q2", "q1"]
        q2, q1 = page.wrong_answers
        assert q2.has_improved is False
        assert q2.selected_answer == "C"
        assert q1.has_improved is True
        assert q1.total_attempts == 2
        assert q1.correct_answer == "B"

        everything = coordinator.get_wrong_answers("alice", limit=1)
        assert everything.total == 3
        assert everything.has_more is True
        assert everything.wrong_answers[0].item_id == "p1"
