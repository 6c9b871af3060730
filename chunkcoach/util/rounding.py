from __future__ import annotations

"""Half-up rounding for BPM values and scores."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest int, halves away from -inf (2.5 -> 3, -2.5 -> -2).

    Python's ``round`` uses banker's rounding, which would turn a practice
    tempo of 52.5 into 52.
    """
    return int(math.floor(value + 0.5))
