"""Event bus carrying outbound media actions to the controlling application."""

import threading
from typing import Any, Callable, Dict, List

from flowmedia.logging import get_logger

logger = get_logger(__name__)


class EventBus:
    """Publish-subscribe event system. Components publish/subscribe without knowing each other.

    Event Flow Architecture:
    - The now-playing coordinator publishes MEDIA_ACTION with a tagged string
      ("play", "pause", "next", "prev", "seekTo:<ms>", "headsetConnected",
      "headsetDisconnected") for the controlling application.
    - SESSION_STATE_CHANGED is published after every applied render so
      observers (CLI, tests) can follow the projected state.
    - LIBRARY_SCANNED is published when a background scan completes.
    """

    # =========================================================================
    # Coordinator -> Application
    # =========================================================================

    MEDIA_ACTION = "media.action"
    # {"status": "active"|"stopped", "is_playing": bool, "title": str}
    SESSION_STATE_CHANGED = "session.state_changed"

    # =========================================================================
    # Scanner -> Application
    # =========================================================================

    # {"source": "catalog"|"folder"|"downloads", "tracks": int}
    LIBRARY_SCANNED = "library.scanned"

    # Tagged payloads of MEDIA_ACTION
    PLAY = "play"
    PAUSE = "pause"
    NEXT = "next"
    PREV = "prev"
    SEEK_TO_PREFIX = "seekTo:"
    HEADSET_CONNECTED = "headsetConnected"
    HEADSET_DISCONNECTED = "headsetDisconnected"

    def __init__(self):
        self._subscribers: Dict[str, List[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(event, []).append(callback)

    def unsubscribe(self, event: str, callback: Callable[[Any], None]) -> None:
        with self._lock:
            if event in self._subscribers:
                try:
                    self._subscribers[event].remove(callback)
                except ValueError:
                    pass

    def publish(self, event: str, data: Any = None) -> None:
        # Publishers run on the command thread and on scan workers
        with self._lock:
            callbacks = list(self._subscribers.get(event, []))
        for callback in callbacks:
            try:
                callback(data)
            except Exception as e:
                logger.error(
                    "Error in event callback for %s: %s", event, e, exc_info=True
                )


def seek_event(position_ms: int) -> str:
    """Encode a seek action for MEDIA_ACTION."""
    return f"{EventBus.SEEK_TO_PREFIX}{int(position_ms)}"
