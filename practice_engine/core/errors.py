"""
Error taxonomy for the practice engine.

Pure computations (review scheduling, mastery, selection) only ever raise
InvariantViolation. The session coordinator is the single place where storage
failures surface, and every failure there means the transaction was rolled back.
"""

from __future__ import annotations


class PracticeEngineError(Exception):
    """Base class for all practice engine errors."""

    retryable = False


class NotFound(PracticeEngineError):
    """Raised when a referenced session, item, or learner record does not exist."""

    def __init__(self, kind: str, key: object):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class InvariantViolation(PracticeEngineError):
    """Raised when a record handed to a pure component breaks its invariants."""
    pass


class SessionEnded(PracticeEngineError):
    """Raised when an ended session receives an answer or a second end request."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} has already ended")


class DuplicateSubmission(PracticeEngineError):
    """Raised when a submission token was already applied to a session."""

    def __init__(self, session_id: str, submission_token: str):
        self.session_id = session_id
        self.submission_token = submission_token
        super().__init__(
            f"Submission {submission_token!r} was already applied to session {session_id}"
        )


class PersistenceFailure(PracticeEngineError):
    """Raised when the atomic commit fails. Nothing was written; safe to retry."""

    retryable = True
