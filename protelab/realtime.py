"""
In-process change notifications.

Writers publish a row after their transaction commits; subscribers register
an equality filter and a callback. Subscribers are expected to re-run their
query when called rather than patch cached results.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    table: str
    filters: Dict[str, Any]
    callback: Callable[[Dict[str, Any]], None]
    hub: "RealtimeHub" = field(repr=False)
    active: bool = True

    def matches(self, table: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        return all(row.get(k) == v for k, v in self.filters.items())

    def unsubscribe(self) -> None:
        self.hub.unsubscribe(self)


class RealtimeHub:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, filters: Dict[str, Any],
                  callback: Callable[[Dict[str, Any]], None]) -> Subscription:
        sub = Subscription(table=table, filters=dict(filters), callback=callback, hub=self)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            sub.active = False
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def publish(self, table: str, row: Dict[str, Any]) -> int:
        """Deliver *row* to every matching subscriber; returns the delivery count."""
        with self._lock:
            targets = [s for s in self._subscriptions if s.active and s.matches(table, row)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(row)
                delivered += 1
            except Exception as e:
                logger.warning("Realtime subscriber on %s failed: %s", table, e)
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
