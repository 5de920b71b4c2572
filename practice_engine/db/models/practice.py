"""
Practice Scheduler Models.

SQLAlchemy models for adaptive practice:
- Content pool adapter (practice items)
- Per-item spaced-repetition schedules
- Per-skill mastery
- Practice sessions and their raw answer log
- Daily goals and learner preferences
"""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class PracticeItemRow(Base):
    """
    Item metadata imported from the content pool.

    Only the fields the scheduler needs; prompts and options live elsewhere.
    """

    __tablename__ = "practice_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    skill: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False)
    correct_answer: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())

    __table_args__ = (Index("idx_practice_items_scope", "category", "domain"),)

    def __repr__(self) -> str:
        return f"<PracticeItemRow id={self.id} skill={self.skill} difficulty={self.difficulty}>"


class ReviewSchedule(Base):
    """SM-2 state per learner per item. Created on first attempt."""

    __tablename__ = "review_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)

    ease_factor: Mapped[float] = mapped_column(Float, nullable=False, default=2.5)
    interval_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("learner_id", "item_id", name="uq_review_learner_item"),
        Index("idx_review_next_review", "learner_id", "next_review_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReviewSchedule learner={self.learner_id} item={self.item_id} "
            f"interval={self.interval_days} ease={self.ease_factor}>"
        )


class SkillMastery(Base):
    """Point-based mastery per learner per skill."""

    __tablename__ = "skill_mastery"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(Text, nullable=False)
    skill: Mapped[str] = mapped_column(Text, nullable=False)

    # Stored alongside points for reporting queries; always rewritten together
    mastery_level: Mapped[str] = mapped_column(Text, nullable=False, default="novice")
    mastery_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total_questions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_practiced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (UniqueConstraint("learner_id", "skill", name="uq_mastery_learner_skill"),)

    def __repr__(self) -> str:
        return (
            f"<SkillMastery learner={self.learner_id} skill={self.skill} "
            f"points={self.mastery_points} level={self.mastery_level}>"
        )


class PracticeSession(Base):
    """
    One continuous practice run.

    At most one active session per learner, enforced by a partial unique index.
    The version column makes concurrent writers to the same session fail at
    flush time instead of overwriting each other.
    """

    __tablename__ = "practice_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    # Scope filters
    category: Mapped[str | None] = mapped_column(Text)
    domain: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")  # 'active', 'ended'

    # Streaks
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    session_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Tallies
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Served items, in order; reassigned (never mutated in place) on each answer
    answered_item_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    current_item_id: Mapped[str | None] = mapped_column(String(64))

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    answers: Mapped[list[SessionAnswer]] = relationship(
        back_populates="session", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_active_session_per_learner",
            "learner_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<PracticeSession id={self.id} learner={self.learner_id} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def accuracy(self) -> float:
        """Session accuracy as a fraction (0-1)."""
        if self.questions_answered > 0:
            return self.correct_answers / self.questions_answered
        return 0.0


class SessionAnswer(Base):
    """Raw answer log. A repeated submission token within a session is rejected."""

    __tablename__ = "session_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("practice_sessions.id", ondelete="CASCADE"), nullable=False
    )
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)

    selected_answer: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    time_spent_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submission_token: Mapped[str | None] = mapped_column(Text)

    session: Mapped[PracticeSession] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint("session_id", "submission_token", name="uq_answer_submission_token"),
        Index("idx_answers_learner_item", "learner_id", "item_id"),
    )

    def __repr__(self) -> str:
        return f"<SessionAnswer session={self.session_id} item={self.item_id} correct={self.is_correct}>"


class DailyGoal(Base):
    """Per learner per calendar day answer target and progress."""

    __tablename__ = "daily_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    goal_date: Mapped[date] = mapped_column(Date, nullable=False)

    target_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    questions_answered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_spent_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goal_met: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (UniqueConstraint("learner_id", "goal_date", name="uq_daily_goal_learner_date"),)

    def __repr__(self) -> str:
        return (
            f"<DailyGoal learner={self.learner_id} date={self.goal_date} "
            f"{self.questions_answered}/{self.target_questions}>"
        )


class LearnerPreference(Base):
    """Learner-level settings."""

    __tablename__ = "learner_preferences"

    learner_id: Mapped[str] = mapped_column(Text, primary_key=True)
    daily_question_target: Mapped[int] = mapped_column(Integer, nullable=False)
