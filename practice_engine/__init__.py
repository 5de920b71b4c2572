"""
practice-engine: adaptive practice scheduling.

- ReviewScheduler: SM-2 spaced repetition per (learner, item)
- MasteryTracker: point-based mastery per (learner, skill)
- SelectionScorer: ranks the content pool to pick the next item
- SessionCoordinator: session lifecycle, committing every answer atomically
"""

from practice_engine.core.errors import (
    DuplicateSubmission,
    InvariantViolation,
    NotFound,
    PersistenceFailure,
    PracticeEngineError,
    SessionEnded,
)
from practice_engine.core.mastery import MasteryLevel, MasteryRecord, MasteryTracker
from practice_engine.learning.item_selector import DEFAULT_WEIGHTS, ScoringWeights, SelectionScorer
from practice_engine.learning.items import ItemCatalog, PracticeItem
from practice_engine.study.review_scheduler import ReviewRecord, ReviewScheduler
from practice_engine.study.session_coordinator import SessionCoordinator

__version__ = "1.0.0"

__all__ = [
    # Scheduling
    "ReviewRecord",
    "ReviewScheduler",
    # Mastery
    "MasteryLevel",
    "MasteryRecord",
    "MasteryTracker",
    # Selection
    "DEFAULT_WEIGHTS",
    "ItemCatalog",
    "PracticeItem",
    "ScoringWeights",
    "SelectionScorer",
    # Orchestration
    "SessionCoordinator",
    # Errors
    "DuplicateSubmission",
    "InvariantViolation",
    "NotFound",
    "PersistenceFailure",
    "PracticeEngineError",
    "SessionEnded",
]
