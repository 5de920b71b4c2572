"""Test doubles and builders shared across the test suite."""

from datetime import UTC, datetime, timedelta

from practice_engine.learning.items import PracticeItem

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


class ZeroRandom:
    """Random source with no variance: jitter is always 0."""

    def random(self) -> float:
        return 0.0


class ScriptedRandom:
    """Random source that replays the given values in order, then repeats the last."""

    def __init__(self, *values: float):
        self.values = list(values)

    def random(self) -> float:
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]


class FakeClock:
    """Controllable clock for the session coordinator."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_item(
    item_id: str,
    skill: str = "algebra",
    difficulty: float = 2,
    category: str = "math",
    domain: str = "algebra",
    correct_answer: str = "B",
) -> PracticeItem:
    return PracticeItem(
        id=item_id,
        category=category,
        domain=domain,
        skill=skill,
        difficulty=difficulty,
        correct_answer=correct_answer,
    )
