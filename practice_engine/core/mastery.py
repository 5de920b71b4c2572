"""
Core Mastery Module.

Point-based skill mastery per learner.

Design:
- MasteryLevel: Enum mapping a 0-1000 point score to a discrete level
- MasteryRecord: Dataclass for one learner's state on one skill
- MasteryTracker: Pure update rule (correctness + difficulty + streak -> points)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum

from practice_engine.core.errors import InvariantViolation
from practice_engine.core.rounding import round_half_up

MIN_MASTERY_POINTS = 0
MAX_MASTERY_POINTS = 1000


class MasteryLevel(str, Enum):
    """
    Mastery level categorization.

    Thresholds are inclusive lower bounds on mastery points.
    """

    NOVICE = "novice"  # 0-99
    BEGINNER = "beginner"  # 100-299
    INTERMEDIATE = "intermediate"  # 300-599
    ADVANCED = "advanced"  # 600-899
    EXPERT = "expert"  # 900-1000

    @classmethod
    def from_points(cls, points: int) -> MasteryLevel:
        """
        Convert a mastery point score to a level.

        Args:
            points: Mastery points between 0 and 1000

        Returns:
            Corresponding MasteryLevel
        """
        if points >= 900:
            return cls.EXPERT
        elif points >= 600:
            return cls.ADVANCED
        elif points >= 300:
            return cls.INTERMEDIATE
        elif points >= 100:
            return cls.BEGINNER
        else:
            return cls.NOVICE

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return self.value.title()

    @property
    def color(self) -> str:
        """Rich color for CLI display."""
        return {
            MasteryLevel.NOVICE: "red",
            MasteryLevel.BEGINNER: "yellow",
            MasteryLevel.INTERMEDIATE: "cyan",
            MasteryLevel.ADVANCED: "blue",
            MasteryLevel.EXPERT: "green",
        }[self]


@dataclass(frozen=True)
class MasteryRecord:
    """
    Mastery state for one learner on one skill.

    The level is derived from points on every read, so it can never drift.
    """

    skill: str
    category: str
    domain: str
    mastery_points: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    current_streak: int = 0
    last_practiced_at: datetime | None = None

    @property
    def mastery_level(self) -> MasteryLevel:
        return MasteryLevel.from_points(self.mastery_points)

    @property
    def accuracy(self) -> float | None:
        """Lifetime accuracy (0-1), or None before the first question."""
        if self.total_questions <= 0:
            return None
        return self.correct_answers / self.total_questions

    def validate(self) -> None:
        """Raise InvariantViolation if this record is internally inconsistent."""
        if not MIN_MASTERY_POINTS <= self.mastery_points <= MAX_MASTERY_POINTS:
            raise InvariantViolation(
                f"mastery_points {self.mastery_points} outside "
                f"[{MIN_MASTERY_POINTS}, {MAX_MASTERY_POINTS}] for skill {self.skill}"
            )
        if self.total_questions < 0 or self.correct_answers < 0 or self.current_streak < 0:
            raise InvariantViolation(f"negative counter on mastery record for skill {self.skill}")
        if self.correct_answers > self.total_questions:
            raise InvariantViolation(
                f"correct_answers {self.correct_answers} exceeds "
                f"total_questions {self.total_questions} for skill {self.skill}"
            )


@dataclass(frozen=True)
class MasteryUpdate:
    """Result of a mastery update."""

    record: MasteryRecord
    point_change: int  # realized delta, after clamping

    @property
    def mastery_points(self) -> int:
        return self.record.mastery_points

    @property
    def mastery_level(self) -> MasteryLevel:
        return self.record.mastery_level


class MasteryTracker:
    """
    Pure point-based mastery update.

    Formula:
        change = round((base x difficulty_multiplier + streak_bonus) x level_penalty)

    - base: +15 correct, -10 incorrect
    - difficulty_multiplier: 0.6 + difficulty x 0.2 (1-3 scale -> 0.8-1.2)
    - streak_bonus: min(10, prior skill streak x 2), correct only
    - level_penalty: max(0.5, 1 - points / 2000), correct only (diminishing returns)
    """

    # Point deltas
    CORRECT_BASE_POINTS = 15
    INCORRECT_BASE_POINTS = -10

    # Difficulty multiplier
    DIFFICULTY_INTERCEPT = 0.6
    DIFFICULTY_SLOPE = 0.2
    MIN_DIFFICULTY = 1
    MAX_DIFFICULTY = 3

    # Streak bonus
    STREAK_BONUS_PER_ANSWER = 2
    MAX_STREAK_BONUS = 10

    # Diminishing returns
    LEVEL_PENALTY_DIVISOR = 2000
    MIN_LEVEL_PENALTY = 0.5

    def difficulty_multiplier(self, item_difficulty: float) -> float:
        if not self.MIN_DIFFICULTY <= item_difficulty <= self.MAX_DIFFICULTY:
            raise InvariantViolation(
                f"item difficulty {item_difficulty} outside "
                f"[{self.MIN_DIFFICULTY}, {self.MAX_DIFFICULTY}]"
            )
        return self.DIFFICULTY_INTERCEPT + item_difficulty * self.DIFFICULTY_SLOPE

    def point_change(
        self,
        was_correct: bool,
        item_difficulty: float,
        prior_streak: int,
        prior_points: int,
    ) -> int:
        """
        Unclamped point delta for one answer.

        Args:
            was_correct: Did the learner answer correctly?
            item_difficulty: Item difficulty on the 1-3 scale
            prior_streak: Skill streak before this answer
            prior_points: Mastery points before this answer

        Returns:
            Signed point delta before the [0, 1000] clamp
        """
        base = self.CORRECT_BASE_POINTS if was_correct else self.INCORRECT_BASE_POINTS
        multiplier = self.difficulty_multiplier(item_difficulty)

        if was_correct:
            streak_bonus = min(self.MAX_STREAK_BONUS, prior_streak * self.STREAK_BONUS_PER_ANSWER)
            level_penalty = max(
                self.MIN_LEVEL_PENALTY, 1 - prior_points / self.LEVEL_PENALTY_DIVISOR
            )
        else:
            streak_bonus = 0
            level_penalty = 1

        return round_half_up((base * multiplier + streak_bonus) * level_penalty)

    def update(
        self,
        prior: MasteryRecord,
        was_correct: bool,
        item_difficulty: float,
        now: datetime | None = None,
    ) -> MasteryUpdate:
        """
        Apply one answer to a skill's mastery record.

        Returns the new record together with the realized point change, which
        can be smaller than the raw formula near the 0 and 1000 bounds.
        """
        prior.validate()
        now = now or datetime.now(UTC)

        raw_change = self.point_change(
            was_correct, item_difficulty, prior.current_streak, prior.mastery_points
        )
        new_points = max(
            MIN_MASTERY_POINTS, min(MAX_MASTERY_POINTS, prior.mastery_points + raw_change)
        )

        record = replace(
            prior,
            mastery_points=new_points,
            total_questions=prior.total_questions + 1,
            correct_answers=prior.correct_answers + (1 if was_correct else 0),
            current_streak=prior.current_streak + 1 if was_correct else 0,
            last_practiced_at=now,
        )
        return MasteryUpdate(record=record, point_change=new_points - prior.mastery_points)
