from __future__ import annotations

"""Instance-scoped pub/sub used by the session runner."""

from typing import Any, Callable, Dict, List

REP_COMPLETED = "rep-completed"
PLAYBACK_STOPPED = "playback-stopped"
RATING_SAVED = "rating-saved"
STOP_REQUESTED = "stop-requested"


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Callable[[Any], None]]] = {}

    def subscribe(self, event: str, handler: Callable[[Any], None]) -> None:
        self._subs.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: Callable[[Any], None]) -> None:
        handlers = self._subs.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Any = None) -> None:
        # Handlers may unsubscribe while being called.
        for h in list(self._subs.get(event, [])):
            h(payload)
