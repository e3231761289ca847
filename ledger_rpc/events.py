"""
Named-event registry for status callbacks.

subscribe() hands back a Subscription handle; release it (or use it as a
context manager) so listeners never outlive their owner. EventBus.close()
releases everything that is still registered.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ENDPOINT_ROTATED = "endpoint.rotated"
PIPELINE_RETRY = "pipeline.retry"
PIPELINE_OUTCOME = "pipeline.outcome"
ACCOUNT_CHANGED = "wallet.account_changed"
NETWORK_CHANGED = "wallet.network_changed"


@dataclass
class Event:
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Subscription:
    """Registration handle returned by EventBus.subscribe"""

    def __init__(self, bus: "EventBus", name: str, callback: Callable[[Event], Any]):
        self._bus = bus
        self.name = name
        self.callback = callback
        self.active = True

    def release(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class EventBus:
    def __init__(self):
        self._subs: Dict[str, List[Subscription]] = {}

    def subscribe(self, name: str, callback: Callable[[Event], Any]) -> Subscription:
        sub = Subscription(self, name, callback)
        self._subs.setdefault(name, []).append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        subs = self._subs.get(sub.name, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subs.pop(sub.name, None)

    def listener_count(self, name: Optional[str] = None) -> int:
        if name is None:
            return sum(len(v) for v in self._subs.values())
        return len(self._subs.get(name, []))

    def emit(self, name: str, **data: Any) -> int:
        """Deliver synchronously; returns how many listeners ran without raising."""
        event = Event(name=name, data=data)
        delivered = 0
        for sub in list(self._subs.get(name, [])):
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                # a broken listener must not break the emitting operation
                logger.exception(f"Listener for {name} failed")
        return delivered

    def close(self) -> None:
        for subs in list(self._subs.values()):
            for sub in list(subs):
                sub.release()
        self._subs.clear()
