"""
Practice Repository.

All reads and writes of scheduler state go through here, against a Session
owned by the caller. Nothing in this module commits: the session coordinator
decides the transaction boundary.

Usage:
    with session_scope() as session:
        repo = PracticeRepository(session)
        records = repo.review_records("learner-1")
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, date, datetime

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from practice_engine.core.mastery import MasteryRecord
from practice_engine.db.models import (
    DailyGoal,
    LearnerPreference,
    PracticeItemRow,
    PracticeSession,
    ReviewSchedule,
    SessionAnswer,
    SkillMastery,
)
from practice_engine.learning.items import PracticeItem
from practice_engine.study.review_scheduler import ReviewRecord


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# =============================================================================
# Row <-> record conversion
# =============================================================================


def item_from_row(row: PracticeItemRow) -> PracticeItem:
    return PracticeItem(
        id=row.id,
        category=row.category,
        domain=row.domain,
        skill=row.skill,
        difficulty=row.difficulty,
        correct_answer=row.correct_answer,
    )


def review_from_row(row: ReviewSchedule) -> ReviewRecord:
    return ReviewRecord(
        item_id=row.item_id,
        ease_factor=row.ease_factor,
        interval=row.interval_days,
        repetitions=row.repetitions,
        next_review_at=as_utc(row.next_review_at),
        last_reviewed_at=as_utc(row.last_reviewed_at),
        total_attempts=row.total_attempts,
        correct_attempts=row.correct_attempts,
    )


def mastery_from_row(row: SkillMastery) -> MasteryRecord:
    return MasteryRecord(
        skill=row.skill,
        category=row.category,
        domain=row.domain,
        mastery_points=row.mastery_points,
        total_questions=row.total_questions,
        correct_answers=row.correct_answers,
        current_streak=row.current_streak,
        last_practiced_at=as_utc(row.last_practiced_at),
    )


class SqlItemCatalog:
    """ItemCatalog backed by the practice_items table."""

    def __init__(self, session: Session):
        self.session = session

    def get_item(self, item_id: str) -> PracticeItem | None:
        row = self.session.get(PracticeItemRow, item_id)
        return item_from_row(row) if row else None

    def list_items(
        self, category: str | None = None, domain: str | None = None
    ) -> list[PracticeItem]:
        stmt = select(PracticeItemRow)
        if category is not None:
            stmt = stmt.where(PracticeItemRow.category == category)
        if domain is not None:
            stmt = stmt.where(PracticeItemRow.domain == domain)
        stmt = stmt.order_by(PracticeItemRow.id)
        return [item_from_row(row) for row in self.session.scalars(stmt)]

    def upsert_items(self, items: Iterable[PracticeItem]) -> int:
        """Insert or refresh item metadata. Returns the number of items written."""
        count = 0
        for item in items:
            row = self.session.get(PracticeItemRow, item.id)
            if row is None:
                row = PracticeItemRow(id=item.id)
                self.session.add(row)
            row.category = item.category
            row.domain = item.domain
            row.skill = item.skill
            row.difficulty = item.difficulty
            row.correct_answer = item.correct_answer
            count += 1
        return count


class PracticeRepository:
    """Scheduler state access for one transaction."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Review schedules
    # ------------------------------------------------------------------

    def review_records(self, learner_id: str) -> dict[str, ReviewRecord]:
        stmt = select(ReviewSchedule).where(ReviewSchedule.learner_id == learner_id)
        return {row.item_id: review_from_row(row) for row in self.session.scalars(stmt)}

    def get_review(self, learner_id: str, item_id: str) -> ReviewSchedule | None:
        stmt = select(ReviewSchedule).where(
            ReviewSchedule.learner_id == learner_id, ReviewSchedule.item_id == item_id
        )
        return self.session.scalars(stmt).first()

    def save_review(self, learner_id: str, record: ReviewRecord) -> ReviewSchedule:
        row = self.get_review(learner_id, record.item_id)
        if row is None:
            row = ReviewSchedule(learner_id=learner_id, item_id=record.item_id)
            self.session.add(row)
        row.ease_factor = record.ease_factor
        row.interval_days = record.interval
        row.repetitions = record.repetitions
        row.next_review_at = record.next_review_at
        row.last_reviewed_at = record.last_reviewed_at
        row.total_attempts = record.total_attempts
        row.correct_attempts = record.correct_attempts
        return row

    def delete_reviews(self, learner_id: str, item_id: str | None = None) -> int:
        stmt = delete(ReviewSchedule).where(ReviewSchedule.learner_id == learner_id)
        if item_id is not None:
            stmt = stmt.where(ReviewSchedule.item_id == item_id)
        result = self.session.execute(stmt)
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Skill mastery
    # ------------------------------------------------------------------

    def mastery_records(self, learner_id: str) -> dict[str, MasteryRecord]:
        stmt = select(SkillMastery).where(SkillMastery.learner_id == learner_id)
        return {row.skill: mastery_from_row(row) for row in self.session.scalars(stmt)}

    def mastery_rows(self, learner_id: str) -> list[SkillMastery]:
        stmt = (
            select(SkillMastery)
            .where(SkillMastery.learner_id == learner_id)
            .order_by(SkillMastery.category, SkillMastery.domain, SkillMastery.skill)
        )
        return list(self.session.scalars(stmt))

    def get_mastery(self, learner_id: str, skill: str) -> SkillMastery | None:
        stmt = select(SkillMastery).where(
            SkillMastery.learner_id == learner_id, SkillMastery.skill == skill
        )
        return self.session.scalars(stmt).first()

    def save_mastery(self, learner_id: str, record: MasteryRecord) -> SkillMastery:
        row = self.get_mastery(learner_id, record.skill)
        if row is None:
            row = SkillMastery(learner_id=learner_id, skill=record.skill)
            self.session.add(row)
        row.category = record.category
        row.domain = record.domain
        row.mastery_points = record.mastery_points
        row.mastery_level = record.mastery_level.value
        row.total_questions = record.total_questions
        row.correct_answers = record.correct_answers
        row.current_streak = record.current_streak
        row.last_practiced_at = record.last_practiced_at
        return row

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> PracticeSession | None:
        return self.session.get(PracticeSession, session_id)

    def active_session(self, learner_id: str) -> PracticeSession | None:
        stmt = select(PracticeSession).where(
            PracticeSession.learner_id == learner_id, PracticeSession.status == "active"
        )
        return self.session.scalars(stmt).first()

    def best_streak(self, learner_id: str) -> int:
        stmt = select(func.max(PracticeSession.best_streak)).where(
            PracticeSession.learner_id == learner_id
        )
        return self.session.scalar(stmt) or 0

    def session_count(self, learner_id: str) -> int:
        stmt = select(func.count(PracticeSession.id)).where(
            PracticeSession.learner_id == learner_id
        )
        return self.session.scalar(stmt) or 0

    def add_session(self, practice_session: PracticeSession) -> PracticeSession:
        self.session.add(practice_session)
        self.session.flush()
        return practice_session

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    def has_submission(self, session_id: str, submission_token: str) -> bool:
        stmt = select(SessionAnswer.id).where(
            SessionAnswer.session_id == session_id,
            SessionAnswer.submission_token == submission_token,
        )
        return self.session.scalars(stmt).first() is not None

    def add_answer(self, answer: SessionAnswer) -> SessionAnswer:
        self.session.add(answer)
        return answer

    def answers_for_learner(self, learner_id: str) -> list[SessionAnswer]:
        stmt = (
            select(SessionAnswer)
            .where(SessionAnswer.learner_id == learner_id)
            .order_by(SessionAnswer.submitted_at, SessionAnswer.id)
        )
        return list(self.session.scalars(stmt))

    # ------------------------------------------------------------------
    # Daily goals / preferences
    # ------------------------------------------------------------------

    def get_daily_goal(self, learner_id: str, goal_date: date) -> DailyGoal | None:
        stmt = select(DailyGoal).where(
            DailyGoal.learner_id == learner_id, DailyGoal.goal_date == goal_date
        )
        return self.session.scalars(stmt).first()

    def add_daily_goal(self, goal: DailyGoal) -> DailyGoal:
        self.session.add(goal)
        return goal

    def get_preference(self, learner_id: str) -> LearnerPreference | None:
        return self.session.get(LearnerPreference, learner_id)

    def set_daily_target(self, learner_id: str, target: int) -> LearnerPreference:
        pref = self.get_preference(learner_id)
        if pref is None:
            pref = LearnerPreference(learner_id=learner_id, daily_question_target=target)
            self.session.add(pref)
        else:
            pref.daily_question_target = target
        return pref
