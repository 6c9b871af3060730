from __future__ import annotations

"""Explain mode: terse one-line traces at engine and runner milestones.

Off by default. The CLI turns it on with ``--explain``; each milestone then
prints ``[EXPLAIN] <event> :: <compact json>``.
"""

import json
from typing import Any, Dict

_ENABLED = False


def enable(flag: bool = True) -> None:
    global _ENABLED
    _ENABLED = bool(flag)


def enabled() -> bool:
    return _ENABLED


def trace(event: str, payload: Dict[str, Any] | None = None) -> None:
    if not _ENABLED:
        return
    try:
        data = json.dumps(payload or {}, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        # unserializable payload; event name alone still marks the milestone
        print(f"[EXPLAIN] {event}")
        return
    print(f"[EXPLAIN] {event} :: {data}")
