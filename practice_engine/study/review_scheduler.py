"""
Review Scheduler - SM-2 spaced repetition per (learner, item).

Variant of SuperMemo 2 driven by a binary correct/incorrect signal:
- Correct: repetitions += 1; interval 1 -> 6 -> round(interval x ease); ease += 0.1
- Incorrect: repetitions = 0; interval = 1; ease -= 0.2
- Ease is floored at 1.3 and unbounded above, so well-known items recede
  indefinitely instead of being resurfaced on a fixed cap.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta

from practice_engine.core.errors import InvariantViolation
from practice_engine.core.rounding import round_half_up

DEFAULT_EASE_FACTOR = 2.5
EASE_PRECISION = 6  # decimal places kept, so 2.6 - 0.2 stores as 2.4
MIN_EASE_FACTOR = 1.3


@dataclass(frozen=True)
class ReviewRecord:
    """Spaced-repetition state for one learner on one item."""

    item_id: str
    ease_factor: float = DEFAULT_EASE_FACTOR
    interval: int = 1  # days
    repetitions: int = 0
    next_review_at: datetime | None = None
    last_reviewed_at: datetime | None = None
    total_attempts: int = 0
    correct_attempts: int = 0

    def validate(self) -> None:
        """Raise InvariantViolation if this record is internally inconsistent."""
        if self.ease_factor < MIN_EASE_FACTOR:
            raise InvariantViolation(
                f"ease_factor {self.ease_factor} below {MIN_EASE_FACTOR} for item {self.item_id}"
            )
        if self.interval < 0 or (self.total_attempts > 0 and self.interval < 1):
            raise InvariantViolation(f"interval {self.interval} invalid for item {self.item_id}")
        if self.repetitions < 0 or self.total_attempts < 0 or self.correct_attempts < 0:
            raise InvariantViolation(f"negative counter on review record for item {self.item_id}")
        if self.correct_attempts > self.total_attempts:
            raise InvariantViolation(
                f"correct_attempts {self.correct_attempts} exceeds "
                f"total_attempts {self.total_attempts} for item {self.item_id}"
            )

    def days_overdue(self, now: datetime) -> float | None:
        """Days past the interval since the last review, negative if not yet due."""
        if self.last_reviewed_at is None:
            return None
        days_since = (now - self.last_reviewed_at) / timedelta(days=1)
        return days_since - self.interval

    def is_due(self, now: datetime) -> bool:
        return self.next_review_at is None or now >= self.next_review_at


class ReviewScheduler:
    """Pure SM-2 update rule."""

    CORRECT_EASE_DELTA = 0.1
    INCORRECT_EASE_DELTA = -0.2
    FIRST_INTERVAL = 1
    SECOND_INTERVAL = 6
    RELEARN_INTERVAL = 1

    @staticmethod
    def initial(item_id: str) -> ReviewRecord:
        """Default record for an item the learner has never attempted."""
        return ReviewRecord(item_id=item_id)

    def update(
        self,
        prior: ReviewRecord,
        was_correct: bool,
        now: datetime | None = None,
    ) -> ReviewRecord:
        """
        Calculate the next review state.

        Args:
            prior: Current record (use initial() for a never-seen item)
            was_correct: Whether the learner answered correctly
            now: Reference time (defaults to current UTC time)

        Returns:
            New ReviewRecord; the prior record is left untouched
        """
        prior.validate()
        now = now or datetime.now(UTC)

        if was_correct:
            repetitions = prior.repetitions + 1
            if repetitions == 1:
                interval = self.FIRST_INTERVAL
            elif repetitions == 2:
                interval = self.SECOND_INTERVAL
            else:
                interval = round_half_up(prior.interval * prior.ease_factor)
            ease_factor = prior.ease_factor + self.CORRECT_EASE_DELTA
        else:
            repetitions = 0
            interval = self.RELEARN_INTERVAL
            ease_factor = prior.ease_factor + self.INCORRECT_EASE_DELTA

        return replace(
            prior,
            ease_factor=max(MIN_EASE_FACTOR, round(ease_factor, EASE_PRECISION)),
            interval=interval,
            repetitions=repetitions,
            next_review_at=now + timedelta(days=interval),
            last_reviewed_at=now,
            total_attempts=prior.total_attempts + 1,
            correct_attempts=prior.correct_attempts + (1 if was_correct else 0),
        )
