"""
Practice items as seen by the scheduler.

Items are owned by an external content pool. The scheduler only reads the
identifier, the scoping tags, the difficulty, and an opaque comparison value
for the correct answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PracticeItem:
    """One practice question, reduced to the fields the scheduler consumes."""

    id: str
    category: str
    domain: str
    skill: str
    difficulty: float  # 1-3 scale
    correct_answer: str

    def is_correct(self, selected_answer: str) -> bool:
        return selected_answer == self.correct_answer

    def in_scope(self, category: str | None = None, domain: str | None = None) -> bool:
        if category is not None and self.category != category:
            return False
        if domain is not None and self.domain != domain:
            return False
        return True


class ItemCatalog(Protocol):
    """Read-only view over the content pool."""

    def get_item(self, item_id: str) -> PracticeItem | None: ...

    def list_items(
        self, category: str | None = None, domain: str | None = None
    ) -> list[PracticeItem]: ...
