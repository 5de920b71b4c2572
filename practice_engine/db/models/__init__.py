# SQLAlchemy models
from .base import Base
from .practice import (
    DailyGoal,
    LearnerPreference,
    PracticeItemRow,
    PracticeSession,
    ReviewSchedule,
    SessionAnswer,
    SkillMastery,
)

__all__ = [
    # Base
    "Base",
    # Content pool
    "PracticeItemRow",
    # Scheduling state
    "ReviewSchedule",
    "SkillMastery",
    # Sessions
    "PracticeSession",
    "SessionAnswer",
    # Goals
    "DailyGoal",
    "LearnerPreference",
]
