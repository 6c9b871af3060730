from __future__ import annotations

"""Configuration loading and validation for chunkcoach.

Loads YAML configuration, applies section defaults, and replaces
out-of-range tunables with their defaults (with a WARNING line).
"""

from pathlib import Path
from typing import Any, Dict, Optional

import sys

import yaml


DEFAULTS: Dict[str, Dict[str, Any]] = {
    "analysis": {
        "track": 0,
        "max_chunk_size": 4,
        "similarity_threshold": 5.0,
        "position_shift_min": 3,
    },
    "session": {
        "minutes": 30,
        "min_isolation_chunks": 3,
        "interleave_count": 3,
        "interleave_tempo_pct": 0.70,
        "interleave_reps": 2,
        "runthrough_tempo_pct": 0.60,
        "context_floor_pct": 0.60,
        "context_max_gap": 2,
    },
    "runner": {
        "rest_ms": 5000,
        "interstitial_ms": 5000,
        "tempo_ramp": False,
        "tempo_ramp_pct": 0.05,
        "rep_min_travel_ticks": 500,
        "rep_return_window_ticks": 100,
    },
    "storage": {
        "output_dir": "output",
        "history_file": "practice_history.parquet",
    },
}

# key -> (min, max) inclusive; None means unbounded
_RANGES: Dict[str, Dict[str, tuple]] = {
    "analysis": {
        "track": (0, None),
        "max_chunk_size": (1, 4),
        "similarity_threshold": (0, None),
        "position_shift_min": (0, None),
    },
    "session": {
        "minutes": (1, None),
        "min_isolation_chunks": (0, None),
        "interleave_count": (0, None),
        "interleave_tempo_pct": (0.05, 1.0),
        "interleave_reps": (1, None),
        "runthrough_tempo_pct": (0.05, 1.0),
        "context_floor_pct": (0.05, 1.0),
        "context_max_gap": (0, None),
    },
    "runner": {
        "rest_ms": (0, None),
        "interstitial_ms": (0, None),
        "tempo_ramp_pct": (0.0, 1.0),
        "rep_min_travel_ticks": (0, None),
        "rep_return_window_ticks": (0, None),
    },
}


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except FileNotFoundError:
        print(f"ERROR: Config file not found: {path}", file=sys.stderr)
        sys.exit(1)


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from YAML or the package defaults.

    Args:
        path: Optional path to a YAML config. If None, use package defaults.

    Returns:
        A dictionary with configuration values.
    """
    if path:
        return _load_yaml(Path(path))
    return _load_yaml(Path(__file__).with_name("defaults.yml"))


def _in_range(value: Any, bounds: tuple) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    lo, hi = bounds
    if lo is not None and value < lo:
        return False
    if hi is not None and value > hi:
        return False
    return True


def validate_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply defaults and validate configuration values.

    Args:
        cfg: The raw configuration dictionary.

    Returns:
        The validated and merged configuration dictionary.
    """
    for section, defaults in DEFAULTS.items():
        if not isinstance(cfg.get(section), dict):
            cfg[section] = {}
        for key, value in defaults.items():
            cfg[section].setdefault(key, value)

    for section, ranges in _RANGES.items():
        values = cfg[section]
        for key, bounds in ranges.items():
            if not _in_range(values[key], bounds):
                default = DEFAULTS[section][key]
                print(f"WARNING: Invalid {section}.{key} '{values[key]}', using {default}.")
                values[key] = default

    runner = cfg["runner"]
    if not isinstance(runner["tempo_ramp"], bool):
        print(f"WARNING: Invalid runner.tempo_ramp '{runner['tempo_ramp']}', using False.")
        runner["tempo_ramp"] = False

    # Integer-valued keys may arrive as floats from YAML
    for section, key in (("analysis", "track"), ("analysis", "max_chunk_size"),
                         ("session", "minutes"), ("session", "interleave_reps")):
        cfg[section][key] = int(cfg[section][key])

    return cfg
