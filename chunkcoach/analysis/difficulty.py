from __future__ import annotations

"""Song-relative difficulty scoring.

Each feature is squashed through a unit-steepness sigmoid centred on the
song's own median for that feature, then combined with fixed weights. A bar
sitting exactly on every median therefore scores 50; empty bars score 0 and
are left out of the medians.
"""

import dataclasses
import math
from typing import Dict, List, Sequence

import numpy as np

from .models import FEATURE_KEYS, BarFeature
from ..app import explain
from ..util.rounding import round_half_up

WEIGHTS: Dict[str, float] = {
    "note_density": 0.25,
    "string_crossings": 0.20,
    "position_shifts": 0.15,
    "technique_score": 0.15,
    "rhythm_score": 0.15,
    "fret_span": 0.10,
}


def sigmoid(value: float, median: float, steepness: float = 1.0) -> float:
    x = steepness * (value - median)
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def compute_medians(features: Sequence[BarFeature]) -> Dict[str, float]:
    """Per-key median over non-empty bars; upper-middle element for even counts."""
    rows = [f.vector() for f in features if not f.is_empty]
    if not rows:
        return {k: 0.0 for k in FEATURE_KEYS}
    matrix = np.sort(np.asarray(rows, dtype=float), axis=0)
    mid = matrix[len(rows) // 2]
    return {k: float(v) for k, v in zip(FEATURE_KEYS, mid)}


def score_difficulty(feature: BarFeature, medians: Dict[str, float]) -> int:
    if feature.is_empty:
        return 0
    total = sum(
        weight * sigmoid(float(getattr(feature, key)), medians.get(key, 0.0))
        for key, weight in WEIGHTS.items()
    )
    return round_half_up(total * 100)


def score_bars(features: Sequence[BarFeature]) -> List[BarFeature]:
    """Return copies of `features` with `difficulty` attached."""
    medians = compute_medians(features)
    scored = [dataclasses.replace(f, difficulty=score_difficulty(f, medians)) for f in features]
    explain.trace("difficulty_scored", {
        "medians": {k: round(v, 3) for k, v in medians.items()},
        "max": max((f.difficulty for f in scored), default=0),
    })
    return scored
