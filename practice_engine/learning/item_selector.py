"""
Item Selection for Adaptive Practice.

Greedy, stateless-per-call ranking of the candidate pool. Each item's score is
the sum of independently inspectable signals:
- Spaced-repetition urgency (0-40): overdue and never-seen items first
- Weak-skill priority (0-40): low-accuracy and untested skills first
- Recency penalty (0 to -20): skills practiced in the last few minutes wait
- Jitter (0-10): breaks ties and keeps repeated calls from being static
"""

from __future__ import annotations

import random
from collections.abc import Collection, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol

from loguru import logger

from practice_engine.core.mastery import MasteryRecord
from practice_engine.core.rounding import round_half_up
from practice_engine.learning.items import PracticeItem
from practice_engine.study.review_scheduler import ReviewRecord


class RandomSource(Protocol):
    def random(self) -> float: ...


@dataclass(frozen=True)
class ScoringWeights:
    """
    Tuning constants for item selection.

    Values are empirical and kept for parity with the established ranking.
    Bump ``version`` whenever any value changes.
    """

    version: str = "2024.1"

    # Spaced-repetition urgency
    overdue_base: float = 20.0
    overdue_per_day: float = 5.0
    max_urgency: float = 40.0
    due_soon: float = 15.0
    never_seen: float = 25.0

    # Weak-skill priority
    max_weakness: float = 40.0
    untested_skill: float = 35.0

    # Recency penalty
    recent_window: timedelta = timedelta(minutes=5)
    recent_penalty: float = -20.0
    warm_window: timedelta = timedelta(minutes=15)
    warm_penalty: float = -10.0

    # Tie-breaking
    max_jitter: float = 10.0


DEFAULT_WEIGHTS = ScoringWeights()


@dataclass(frozen=True)
class ScoreBreakdown:
    """Score components for one candidate item."""

    item_id: str
    urgency: float
    weakness: float
    recency: float
    jitter: float

    @property
    def total(self) -> float:
        return self.urgency + self.weakness + self.recency + self.jitter


class SelectionScorer:
    """
    Rank candidate items and pick the next one to serve.

    Reads review and mastery state; never mutates it.
    """

    def __init__(
        self,
        weights: ScoringWeights = DEFAULT_WEIGHTS,
        rng: RandomSource | None = None,
    ):
        """
        Initialize scorer.

        Args:
            weights: Scoring constants
            rng: Source of jitter; pass a fixed source for deterministic ranking
        """
        self.weights = weights
        self.rng = rng if rng is not None else random.Random()

    # ------------------------------------------------------------------
    # Individual signals
    # ------------------------------------------------------------------

    def urgency_score(self, record: ReviewRecord | None, now: datetime) -> float:
        """Spaced-repetition urgency (0-40)."""
        w = self.weights
        overdue = record.days_overdue(now) if record is not None else None
        if overdue is None:
            return w.never_seen
        if overdue > 0:
            return min(w.max_urgency, w.overdue_base + overdue * w.overdue_per_day)
        if overdue > -1:
            return w.due_soon
        return 0.0

    def weakness_score(self, mastery: MasteryRecord | None) -> float:
        """Weak-skill priority (0-40); low accuracy scores high."""
        w = self.weights
        accuracy = mastery.accuracy if mastery is not None else None
        if accuracy is None:
            return w.untested_skill
        return float(round_half_up((1 - accuracy) * w.max_weakness))

    def recency_penalty(self, mastery: MasteryRecord | None, now: datetime) -> float:
        """Penalty (0 to -20) for skills practiced in the last few minutes."""
        w = self.weights
        if mastery is None or mastery.last_practiced_at is None:
            return 0.0
        elapsed = now - mastery.last_practiced_at
        if elapsed < w.recent_window:
            return w.recent_penalty
        if elapsed < w.warm_window:
            return w.warm_penalty
        return 0.0

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def eligible_items(
        self,
        candidates: Iterable[PracticeItem],
        excluded_ids: Collection[str] = (),
        category: str | None = None,
        domain: str | None = None,
    ) -> list[PracticeItem]:
        """
        Scope the pool and drop excluded items.

        Falls back to the whole scoped pool once every item has been excluded,
        so a session over a small pool repeats items instead of dead-ending.
        """
        pool = [item for item in candidates if item.in_scope(category, domain)]
        excluded = set(excluded_ids)
        eligible = [item for item in pool if item.id not in excluded]
        return eligible or pool

    def score_items(
        self,
        candidates: Iterable[PracticeItem],
        review_records: Mapping[str, ReviewRecord],
        mastery_records: Mapping[str, MasteryRecord],
        excluded_ids: Collection[str] = (),
        now: datetime | None = None,
        category: str | None = None,
        domain: str | None = None,
    ) -> list[ScoreBreakdown]:
        """
        Score every eligible item, best first.

        Args:
            candidates: Content pool
            review_records: Learner's review records keyed by item id
            mastery_records: Learner's mastery records keyed by skill
            excluded_ids: Item ids already served in this session
            now: Reference time (defaults to current UTC time)
            category: Optional category scope
            domain: Optional domain scope

        Returns:
            ScoreBreakdown per eligible item, sorted by total descending
        """
        now = now or datetime.now(UTC)
        scores = []
        for item in self.eligible_items(candidates, excluded_ids, category, domain):
            mastery = mastery_records.get(item.skill)
            scores.append(
                ScoreBreakdown(
                    item_id=item.id,
                    urgency=self.urgency_score(review_records.get(item.id), now),
                    weakness=self.weakness_score(mastery),
                    recency=self.recency_penalty(mastery, now),
                    jitter=self.rng.random() * self.weights.max_jitter,
                )
            )
        scores.sort(key=lambda s: s.total, reverse=True)
        return scores

    def select_next(
        self,
        candidates: Iterable[PracticeItem],
        review_records: Mapping[str, ReviewRecord],
        mastery_records: Mapping[str, MasteryRecord],
        excluded_ids: Collection[str] = (),
        now: datetime | None = None,
        category: str | None = None,
        domain: str | None = None,
    ) -> str | None:
        """
        Pick the highest scoring item.

        Returns:
            Item id, or None when no item matches the requested scope at all
        """
        scores = self.score_items(
            candidates, review_records, mastery_records, excluded_ids, now, category, domain
        )
        if not scores:
            logger.info(f"No items in scope (category={category}, domain={domain})")
            return None

        best = scores[0]
        logger.debug(
            f"Selected {best.item_id} score={best.total:.1f} "
            f"(urgency={best.urgency:.1f}, weakness={best.weakness:.0f}, "
            f"recency={best.recency:.0f}) from {len(scores)} candidates"
        )
        return best.item_id
