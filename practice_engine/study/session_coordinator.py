"""
Session Coordinator: Orchestration layer for adaptive practice.

Owns the lifecycle of a practice session (active -> ended) and, on every
answer, applies all state changes in one transaction:
- Raw answer log
- Review schedule (ReviewScheduler)
- Skill mastery (MasteryTracker)
- Session streaks, tallies and exclusion set
- Daily goal progress
- Next item (SelectionScorer)

Either everything above is committed or nothing is.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from practice_engine.config import Settings, get_settings
from practice_engine.core.errors import (
    DuplicateSubmission,
    InvariantViolation,
    NotFound,
    PersistenceFailure,
    SessionEnded,
)
from practice_engine.core.mastery import MasteryRecord, MasteryTracker
from practice_engine.core.rounding import round_half_up
from practice_engine.db.database import read_scope, session_scope
from practice_engine.db.models import DailyGoal, PracticeSession, SessionAnswer
from practice_engine.db.repository import PracticeRepository, SqlItemCatalog, as_utc
from practice_engine.learning.item_selector import SelectionScorer
from practice_engine.learning.items import ItemCatalog
from practice_engine.study.review_scheduler import ReviewScheduler
from practice_engine.study.schemas import (
    AnswerResult,
    CurrentItemView,
    DailyGoalProgress,
    MasteryOverviewEntry,
    SessionStart,
    SessionStateView,
    SessionSummary,
    SkillMasteryView,
    StreakStats,
    WrongAnswerEntry,
    WrongAnswerPage,
)

MIN_DAILY_TARGET = 1
MAX_DAILY_TARGET = 100


def clamp_daily_target(target: int) -> int:
    """Clamp a requested daily target to [1, 100]."""
    return max(MIN_DAILY_TARGET, min(MAX_DAILY_TARGET, int(target)))


def _percent(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        return 0
    return round_half_up(numerator / denominator * 100)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionCoordinator:
    """
    Practice session orchestration.

    Every public method takes the learner or session explicitly; there is no
    ambient identity. Mutating methods run in their own transaction.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        scorer: SelectionScorer | None = None,
        scheduler: ReviewScheduler | None = None,
        tracker: MasteryTracker | None = None,
        catalog_factory: Callable[[Session], ItemCatalog] | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize coordinator.

        Args:
            session_factory: SQLAlchemy session factory (defaults to configured DB)
            scorer: Item selection scorer (inject a fixed random source for tests)
            scheduler: SM-2 review scheduler
            tracker: Skill mastery tracker
            catalog_factory: Builds the content pool view for a DB session
            settings: Application settings (default daily target)
            clock: Returns the current time as an aware UTC datetime
        """
        self.session_factory = session_factory
        self.scorer = scorer or SelectionScorer()
        self.scheduler = scheduler or ReviewScheduler()
        self.tracker = tracker or MasteryTracker()
        self.catalog_factory = catalog_factory or SqlItemCatalog
        self.settings = settings or get_settings()
        self.clock = clock or _utcnow

    # ==================================================================
    # Session lifecycle
    # ==================================================================

    def start_session(
        self,
        learner_id: str,
        category: str | None = None,
        domain: str | None = None,
    ) -> SessionStart:
        """
        Start a practice session, or resume the learner's active one.

        Args:
            learner_id: Learner identifier
            category: Optional category scope
            domain: Optional domain scope

        Returns:
            SessionStart; first_item_id is None when nothing matches the scope
        """
        now = self.clock()
        try:
            with session_scope(self.session_factory) as db:
                repo = PracticeRepository(db)

                existing = repo.active_session(learner_id)
                if existing is not None:
                    logger.info(f"Resuming session {existing.id} for learner {learner_id}")
                    return SessionStart(
                        session_id=existing.id,
                        first_item_id=existing.current_item_id,
                        is_resumed=True,
                    )

                catalog = self.catalog_factory(db)
                first_item_id = self.scorer.select_next(
                    catalog.list_items(category, domain),
                    repo.review_records(learner_id),
                    repo.mastery_records(learner_id),
                    excluded_ids=(),
                    now=now,
                    category=category,
                    domain=domain,
                )

                practice_session = repo.add_session(
                    PracticeSession(
                        learner_id=learner_id,
                        category=category,
                        domain=domain,
                        status="active",
                        best_streak=repo.best_streak(learner_id),
                        answered_item_ids=[],
                        current_item_id=first_item_id,
                        started_at=now,
                        last_active_at=now,
                    )
                )
                session_id = practice_session.id
        except SQLAlchemyError as e:
            # A concurrent start for the same learner trips the active-session index
            raise PersistenceFailure(f"Could not start session for {learner_id}: {e}") from e

        logger.info(
            f"Started session {session_id} for learner {learner_id} "
            f"(category={category}, domain={domain}, first_item={first_item_id})"
        )
        return SessionStart(session_id=session_id, first_item_id=first_item_id, is_resumed=False)

    def submit_answer(
        self,
        session_id: str,
        item_id: str,
        selected_answer: str,
        time_spent_ms: int,
        submission_token: str | None = None,
    ) -> AnswerResult:
        """
        Grade an answer and advance the session.

        Args:
            session_id: Active session
            item_id: Item being answered
            selected_answer: Learner's answer, compared to the item's correct answer
            time_spent_ms: Time spent on the item
            submission_token: Optional client key; a repeat within the session is rejected

        Returns:
            AnswerResult with correctness, next item, streaks and mastery

        Raises:
            NotFound: Unknown session or item
            SessionEnded: Session is no longer active
            DuplicateSubmission: submission_token already applied
            PersistenceFailure: Commit failed; nothing was written
        """
        if time_spent_ms < 0:
            raise InvariantViolation(f"time_spent_ms must be >= 0, got {time_spent_ms}")

        now = self.clock()
        try:
            with session_scope(self.session_factory) as db:
                repo = PracticeRepository(db)
                catalog = self.catalog_factory(db)

                practice_session = repo.get_session(session_id)
                if practice_session is None:
                    raise NotFound("session", session_id)
                if not practice_session.is_active:
                    raise SessionEnded(session_id)
                if submission_token is not None and repo.has_submission(
                    session_id, submission_token
                ):
                    raise DuplicateSubmission(session_id, submission_token)

                item = catalog.get_item(item_id)
                if item is None:
                    raise NotFound("item", item_id)

                learner_id = practice_session.learner_id
                is_correct = item.is_correct(selected_answer)

                # 1. Raw answer
                repo.add_answer(
                    SessionAnswer(
                        session_id=session_id,
                        learner_id=learner_id,
                        item_id=item.id,
                        selected_answer=selected_answer,
                        is_correct=is_correct,
                        time_spent_ms=time_spent_ms,
                        submitted_at=now,
                        submission_token=submission_token,
                    )
                )

                # 2. Review schedule
                reviews = repo.review_records(learner_id)
                prior_review = reviews.get(item.id) or self.scheduler.initial(item.id)
                review = self.scheduler.update(prior_review, is_correct, now)
                repo.save_review(learner_id, review)
                reviews[item.id] = review

                # 3. Skill mastery
                masteries = repo.mastery_records(learner_id)
                prior_mastery = masteries.get(item.skill) or MasteryRecord(
                    skill=item.skill, category=item.category, domain=item.domain
                )
                mastery = self.tracker.update(prior_mastery, is_correct, item.difficulty, now)
                repo.save_mastery(learner_id, mastery.record)
                masteries[item.skill] = mastery.record

                # 4. Session streaks and exclusion set
                if is_correct:
                    practice_session.session_streak += 1
                    practice_session.current_streak += 1
                    practice_session.correct_answers += 1
                else:
                    practice_session.session_streak = 0
                    practice_session.current_streak = 0
                practice_session.best_streak = max(
                    practice_session.best_streak, practice_session.current_streak
                )
                practice_session.questions_answered += 1
                answered_ids = [*practice_session.answered_item_ids, item.id]
                practice_session.answered_item_ids = answered_ids

                # 5. Daily goal
                self._record_daily_progress(
                    repo, learner_id, now.date(), is_correct, time_spent_ms
                )

                # 6. Next item
                next_item_id = self.scorer.select_next(
                    catalog.list_items(practice_session.category, practice_session.domain),
                    reviews,
                    masteries,
                    excluded_ids=answered_ids,
                    now=now,
                    category=practice_session.category,
                    domain=practice_session.domain,
                )
                practice_session.current_item_id = next_item_id
                practice_session.last_active_at = now

                result = AnswerResult(
                    is_correct=is_correct,
                    correct_answer=item.correct_answer,
                    next_item_id=next_item_id,
                    current_streak=practice_session.current_streak,
                    session_streak=practice_session.session_streak,
                    best_streak=practice_session.best_streak,
                    mastery_level=mastery.mastery_level,
                    mastery_points=mastery.mastery_points,
                    point_change=mastery.point_change,
                )
        except StaleDataError as e:
            raise PersistenceFailure(
                f"Session {session_id} was modified concurrently; answer not applied"
            ) from e
        except IntegrityError as e:
            # Any unique row can lose a race; only an applied token is a duplicate
            if submission_token is not None and self._submission_applied(
                session_id, submission_token
            ):
                logger.warning(f"Duplicate submission {submission_token!r} for session {session_id}")
                raise DuplicateSubmission(session_id, submission_token) from e
            raise PersistenceFailure(f"Could not record answer for session {session_id}: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not record answer for session {session_id}: {e}") from e

        logger.debug(
            f"Session {session_id}: item {item_id} correct={result.is_correct} "
            f"points={result.mastery_points} ({result.point_change:+d}) next={result.next_item_id}"
        )
        return result

    def _submission_applied(self, session_id: str, submission_token: str) -> bool:
        """Check, outside the failed transaction, whether the token was committed."""
        try:
            with read_scope(self.session_factory) as db:
                return PracticeRepository(db).has_submission(session_id, submission_token)
        except SQLAlchemyError as e:
            logger.warning(f"Could not check submission {submission_token!r}: {e}")
            return False

    def end_session(self, session_id: str) -> SessionSummary:
        """
        Mark a session ended and return its final tallies.

        Raises:
            NotFound: Unknown session
            SessionEnded: Session already ended
        """
        now = self.clock()
        try:
            with session_scope(self.session_factory) as db:
                repo = PracticeRepository(db)
                practice_session = repo.get_session(session_id)
                if practice_session is None:
                    raise NotFound("session", session_id)
                if not practice_session.is_active:
                    raise SessionEnded(session_id)

                practice_session.status = "ended"
                practice_session.ended_at = now
                practice_session.last_active_at = now

                summary = SessionSummary(
                    questions_answered=practice_session.questions_answered,
                    correct_answers=practice_session.correct_answers,
                    accuracy=practice_session.accuracy,
                    session_streak=practice_session.session_streak,
                    best_streak=practice_session.best_streak,
                )
        except StaleDataError as e:
            raise PersistenceFailure(f"Session {session_id} was modified concurrently") from e
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not end session {session_id}: {e}") from e

        logger.info(
            f"Ended session {session_id}: {summary.correct_answers}/{summary.questions_answered} "
            f"correct, best streak {summary.best_streak}"
        )
        return summary

    # ==================================================================
    # Session queries
    # ==================================================================

    def get_active_session(self, learner_id: str) -> str | None:
        """Return the learner's active session id, if any."""
        with read_scope(self.session_factory) as db:
            practice_session = PracticeRepository(db).active_session(learner_id)
            return practice_session.id if practice_session else None

    def get_session_state(self, session_id: str) -> SessionStateView:
        """Live streaks and tallies for a session."""
        with read_scope(self.session_factory) as db:
            s = PracticeRepository(db).get_session(session_id)
            if s is None:
                raise NotFound("session", session_id)
            return SessionStateView(
                session_id=s.id,
                learner_id=s.learner_id,
                status=s.status,
                category=s.category,
                domain=s.domain,
                current_streak=s.current_streak,
                best_streak=s.best_streak,
                session_streak=s.session_streak,
                questions_answered=s.questions_answered,
                correct_answers=s.correct_answers,
                accuracy=_percent(s.correct_answers, s.questions_answered),
                current_item_id=s.current_item_id,
                started_at=as_utc(s.started_at),
                last_active_at=as_utc(s.last_active_at),
            )

    def get_current_item(self, session_id: str) -> CurrentItemView | None:
        """
        The item currently presented in a session.

        Returns None when the session has no current item (empty scope) or the
        item has since left the content pool.
        """
        with read_scope(self.session_factory) as db:
            repo = PracticeRepository(db)
            s = repo.get_session(session_id)
            if s is None:
                raise NotFound("session", session_id)
            if s.current_item_id is None:
                return None

            item = self.catalog_factory(db).get_item(s.current_item_id)
            if item is None:
                return None

            mastery_row = repo.get_mastery(s.learner_id, item.skill)
            mastery = (
                SkillMasteryView(
                    level=mastery_row.mastery_level,
                    points=mastery_row.mastery_points,
                    skill=mastery_row.skill,
                    domain=mastery_row.domain,
                )
                if mastery_row
                else None
            )
            return CurrentItemView(
                item_id=item.id,
                category=item.category,
                domain=item.domain,
                skill=item.skill,
                difficulty=item.difficulty,
                mastery=mastery,
            )

    def get_streak_stats(self, learner_id: str) -> StreakStats:
        """Current streak of the active session plus all-time best."""
        with read_scope(self.session_factory) as db:
            repo = PracticeRepository(db)
            active = repo.active_session(learner_id)
            return StreakStats(
                current_streak=active.current_streak if active else 0,
                best_streak=repo.best_streak(learner_id),
                total_sessions=repo.session_count(learner_id),
            )

    # ==================================================================
    # Mastery
    # ==================================================================

    def get_mastery_overview(self, learner_id: str) -> list[MasteryOverviewEntry]:
        """Mastery for every skill the learner has practiced, grouped by category/domain."""
        with read_scope(self.session_factory) as db:
            return [
                MasteryOverviewEntry(
                    category=row.category,
                    domain=row.domain,
                    skill=row.skill,
                    mastery_level=row.mastery_level,
                    mastery_points=row.mastery_points,
                    total_questions=row.total_questions,
                    correct_answers=row.correct_answers,
                )
                for row in PracticeRepository(db).mastery_rows(learner_id)
            ]

    def reset_review_history(self, learner_id: str, item_id: str | None = None) -> int:
        """
        Learner-initiated reset of spaced-repetition state.

        Args:
            learner_id: Learner identifier
            item_id: Reset one item, or every item when None

        Returns:
            Number of review records deleted
        """
        try:
            with session_scope(self.session_factory) as db:
                deleted = PracticeRepository(db).delete_reviews(learner_id, item_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not reset reviews for {learner_id}: {e}") from e

        logger.info(f"Reset {deleted} review records for learner {learner_id} (item={item_id})")
        return deleted

    # ==================================================================
    # Daily goals
    # ==================================================================

    def _daily_target(self, repo: PracticeRepository, learner_id: str) -> int:
        pref = repo.get_preference(learner_id)
        if pref is not None:
            return pref.daily_question_target
        return self.settings.default_daily_target

    def _record_daily_progress(
        self,
        repo: PracticeRepository,
        learner_id: str,
        goal_date: date,
        is_correct: bool,
        time_spent_ms: int,
    ) -> DailyGoal:
        goal = repo.get_daily_goal(learner_id, goal_date)
        if goal is None:
            goal = repo.add_daily_goal(
                DailyGoal(
                    learner_id=learner_id,
                    goal_date=goal_date,
                    target_questions=self._daily_target(repo, learner_id),
                    questions_answered=0,
                    correct_answers=0,
                    time_spent_ms=0,
                )
            )
        goal.questions_answered += 1
        goal.correct_answers += 1 if is_correct else 0
        goal.time_spent_ms += time_spent_ms
        goal.goal_met = goal.questions_answered >= goal.target_questions
        return goal

    def get_daily_goal_progress(
        self, learner_id: str, goal_date: date | None = None
    ) -> DailyGoalProgress:
        """
        Progress towards the daily target.

        Args:
            learner_id: Learner identifier
            goal_date: Calendar day (UTC); defaults to today
        """
        goal_date = goal_date or self.clock().date()
        with read_scope(self.session_factory) as db:
            repo = PracticeRepository(db)
            goal = repo.get_daily_goal(learner_id, goal_date)
            if goal is None:
                return DailyGoalProgress(
                    goal_date=goal_date,
                    answered=0,
                    target=self._daily_target(repo, learner_id),
                    progress=0,
                    met=False,
                    correct_answers=0,
                    accuracy=0,
                )
            return DailyGoalProgress(
                goal_date=goal_date,
                answered=goal.questions_answered,
                target=goal.target_questions,
                progress=min(100, _percent(goal.questions_answered, goal.target_questions)),
                met=goal.goal_met,
                correct_answers=goal.correct_answers,
                accuracy=_percent(goal.correct_answers, goal.questions_answered),
                time_spent_ms=goal.time_spent_ms,
            )

    def set_daily_goal_target(self, learner_id: str, target: int) -> int:
        """
        Store the learner's daily target, clamped to [1, 100].

        Days already started keep the target they were created with.

        Returns:
            The stored (clamped) target
        """
        clamped = clamp_daily_target(target)
        try:
            with session_scope(self.session_factory) as db:
                PracticeRepository(db).set_daily_target(learner_id, clamped)
        except SQLAlchemyError as e:
            raise PersistenceFailure(f"Could not store daily target for {learner_id}: {e}") from e

        if clamped != target:
            logger.info(f"Daily target {target} for {learner_id} clamped to {clamped}")
        return clamped

    # ==================================================================
    # Review of mistakes
    # ==================================================================

    def get_wrong_answers(
        self,
        learner_id: str,
        category: str | None = None,
        domain: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> WrongAnswerPage:
        """
        Latest wrong answer per item, most recent first.

        has_improved is set when the learner has answered the item correctly
        at any point.
        """
        with read_scope(self.session_factory) as db:
            catalog = self.catalog_factory(db)
            answers = PracticeRepository(db).answers_for_learner(learner_id)

            attempts: dict[str, int] = {}
            improved: set[str] = set()
            latest_wrong: dict[str, SessionAnswer] = {}
            for answer in answers:
                attempts[answer.item_id] = attempts.get(answer.item_id, 0) + 1
                if answer.is_correct:
                    improved.add(answer.item_id)
                else:
                    # answers are ordered oldest first, so the last one wins
                    latest_wrong[answer.item_id] = answer

            entries = []
            for answer in sorted(
                latest_wrong.values(), key=lambda a: (as_utc(a.submitted_at), a.id), reverse=True
            ):
                item = catalog.get_item(answer.item_id)
                if item is None or not item.in_scope(category, domain):
                    continue
                entries.append(
                    WrongAnswerEntry(
                        item_id=item.id,
                        session_id=answer.session_id,
                        selected_answer=answer.selected_answer,
                        correct_answer=item.correct_answer,
                        submitted_at=as_utc(answer.submitted_at),
                        time_spent_ms=answer.time_spent_ms,
                        category=item.category,
                        domain=item.domain,
                        skill=item.skill,
                        difficulty=item.difficulty,
                        has_improved=item.id in improved,
                        total_attempts=attempts[item.id],
                    )
                )

        return WrongAnswerPage(
            wrong_answers=entries[offset : offset + limit],
            total=len(entries),
            has_more=offset + limit < len(entries),
        )
