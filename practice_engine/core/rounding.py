"""Rounding helper shared by the scheduling formulas."""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves towards +infinity.

    Python's built-in round() uses banker's rounding (2.5 -> 2, 3.5 -> 4), which
    would make interval growth and point deltas depend on the parity of the
    result. All formulas here round halves up instead: 37.5 -> 38, -2.5 -> -2.
    """
    return math.floor(value + 0.5)
