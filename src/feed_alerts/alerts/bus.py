# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/bus.py
"""
Observer registry for trigger batches and alert lifecycle events.
"""
from __future__ import annotations
import logging
from typing import Callable, List, Sequence

from .schema import AlertEvent, AlertTrigger

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[List[AlertTrigger]], None]
EventCallback = Callable[[AlertEvent], None]


class SubscriberBus:
    """
    Fans out each new trigger batch (and typed AlertEvents) to subscribers.

    A failing callback is logged and skipped; the remaining subscribers
    still run.
    """

    def __init__(self):
        self._trigger_subscribers: List[TriggerCallback] = []
        self._event_subscribers: List[EventCallback] = []

    def subscribe(self, callback: TriggerCallback) -> Callable[[], None]:
        """Register ``callback`` for trigger batches; returns an unsubscribe function."""
        self._trigger_subscribers.append(callback)

        def unsubscribe():
            if callback in self._trigger_subscribers:
                self._trigger_subscribers.remove(callback)

        return unsubscribe

    def subscribe_events(self, callback: EventCallback) -> Callable[[], None]:
        self._event_subscribers.append(callback)

        def unsubscribe():
            if callback in self._event_subscribers:
                self._event_subscribers.remove(callback)

        return unsubscribe

    def publish(self, triggers: Sequence[AlertTrigger]) -> int:
        """Deliver ``triggers`` to every subscriber; returns how many failed."""
        failures = 0
        # snapshot so callbacks may unsubscribe while we iterate
        for callback in list(self._trigger_subscribers):
            try:
                callback(list(triggers))
            except Exception as e:
                failures += 1
                logger.error(f"Error in alert subscriber {callback!r}: {e}", exc_info=True)
        return failures

    def emit(self, event: AlertEvent) -> int:
        failures = 0
        for callback in list(self._event_subscribers):
            try:
                callback(event)
            except Exception as e:
                failures += 1
                logger.error(f"Error in alert event subscriber for {event.type.value}: {e}", exc_info=True)
        return failures

    def clear(self):
        self._trigger_subscribers.clear()
        self._event_subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._trigger_subscribers)
