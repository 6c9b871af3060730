from __future__ import annotations

"""Randomness helpers for interleaving order and seeding."""

import os
import random
from typing import Optional

import numpy as np


def seed_from_env() -> Optional[int]:
    seed = os.environ.get("SEED")
    if seed is None:
        return None
    try:
        return int(seed)
    except ValueError:
        return None


def seed_if_needed() -> None:
    """Seed the global RNGs if the SEED env var is set."""
    s = seed_from_env()
    if s is not None:
        random.seed(s)
        np.random.seed(s)


def make_rng(seed: Optional[int] = None) -> random.Random:
    """Private RNG for one session build; falls back to SEED, then to entropy."""
    if seed is None:
        seed = seed_from_env()
    return random.Random(seed)
