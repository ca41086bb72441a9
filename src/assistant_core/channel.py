"""Push-based event channel between the model backend and the stream controller.

The backend emits ``token``/``done``/``error`` events; the controller
subscribes for the lifetime of one exchange and unsubscribes on every exit
path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

TOKEN_EVENT = "ai-token"
DONE_EVENT = "ai-done"
ERROR_EVENT = "ai-error"

Listener = Callable[[dict[str, Any]], None]


class Subscription:
    """Handle returned by ``EventChannel.subscribe``."""

    def __init__(self, channel: EventChannel, event: str, listener: Listener) -> None:
        self._channel = channel
        self.event = event
        self.listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Detach the listener. Safe to call more than once."""
        if self._active:
            self._active = False
            self._channel._remove(self)


class EventChannel:
    """Named-event pub/sub with synchronous, in-order delivery."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[Subscription]] = {}

    def subscribe(self, event: str, listener: Listener) -> Subscription:
        sub = Subscription(self, event, listener)
        self._subscriptions.setdefault(event, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.event, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.event, None)

    def emit(self, event: str, payload: dict[str, Any] | None = None) -> int:
        """Deliver ``payload`` to every active listener of ``event``.

        Returns the number of listeners invoked. A listener that
        unsubscribes during delivery is skipped for the rest of the pass.
        """
        data = payload or {}
        delivered = 0
        for sub in list(self._subscriptions.get(event, [])):
            if not sub.active:
                continue
            try:
                sub.listener(data)
            except Exception:
                logger.exception("Listener for %s failed", event)
            delivered += 1
        return delivered

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._subscriptions.get(event, []))
        return sum(len(subs) for subs in self._subscriptions.values())
