"""
Result models returned by the session coordinator.

These are the shapes integration layers (CLI, HTTP handlers) serialize.
"""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, Field

from practice_engine.core.mastery import MasteryLevel


class SessionStart(BaseModel):
    """Response for starting (or resuming) a practice session."""

    session_id: str
    first_item_id: str | None = Field(None, description="None when no item matches the scope")
    is_resumed: bool = False


class AnswerResult(BaseModel):
    """Response for a graded answer."""

    is_correct: bool
    correct_answer: str
    next_item_id: str | None
    current_streak: int
    session_streak: int
    best_streak: int
    mastery_level: MasteryLevel
    mastery_points: int = Field(..., ge=0, le=1000)
    point_change: int


class SessionSummary(BaseModel):
    """Final tallies for an ended session."""

    questions_answered: int
    correct_answers: int
    accuracy: float = Field(..., ge=0, le=1, description="Fraction correct; 0 if none answered")
    session_streak: int
    best_streak: int


class SessionStateView(BaseModel):
    """Live view of a session."""

    session_id: str
    learner_id: str
    status: str
    category: str | None
    domain: str | None
    current_streak: int
    best_streak: int
    session_streak: int
    questions_answered: int
    correct_answers: int
    accuracy: int = Field(..., description="Percent correct, rounded")
    current_item_id: str | None
    started_at: datetime
    last_active_at: datetime


class SkillMasteryView(BaseModel):
    level: MasteryLevel
    points: int
    skill: str
    domain: str


class CurrentItemView(BaseModel):
    """The item currently presented, with the learner's mastery for its skill."""

    item_id: str
    category: str
    domain: str
    skill: str
    difficulty: float
    mastery: SkillMasteryView | None


class MasteryOverviewEntry(BaseModel):
    category: str
    domain: str
    skill: str
    mastery_level: MasteryLevel
    mastery_points: int
    total_questions: int
    correct_answers: int


class DailyGoalProgress(BaseModel):
    """Progress towards a learner's daily answer target."""

    goal_date: date
    answered: int
    target: int
    progress: int = Field(..., ge=0, le=100, description="Percent of target, capped at 100")
    met: bool
    correct_answers: int
    accuracy: int = Field(..., description="Percent correct, rounded")
    time_spent_ms: int = 0


class StreakStats(BaseModel):
    current_streak: int
    best_streak: int
    total_sessions: int


class WrongAnswerEntry(BaseModel):
    """Most recent wrong answer on one item."""

    item_id: str
    session_id: str
    selected_answer: str
    correct_answer: str
    submitted_at: datetime
    time_spent_ms: int
    category: str
    domain: str
    skill: str
    difficulty: float
    has_improved: bool
    total_attempts: int


class WrongAnswerPage(BaseModel):
    wrong_answers: list[WrongAnswerEntry]
    total: int
    has_more: bool
