"""
Event bus for step-up flow events.

Synchronous in-process pub/sub on the event loop thread. Handlers execute
immediately in the publisher's context. Handler errors are logged but never
propagate: a broken view must not corrupt flow state.
"""

import logging
from typing import Callable, Dict, List

from core.events import StepUpEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for step-up events.

    Views subscribe with the event class name (e.g. "FlowFailed") and the
    orchestrator publishes instances. Delivery follows subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable):
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class to subscribe to (e.g. 'FlowSucceeded')
            callback: Function to call when event is published
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable):
        """Remove a handler. Unknown handlers are ignored (views unmount twice)."""
        handlers = self._subscribers.get(event_type, [])
        if callback in handlers:
            handlers.remove(callback)

    def publish(self, event: StepUpEvent):
        """
        Publish an event to all subscribers of that type.

        Args:
            event: StepUpEvent instance to publish
        """
        event_type = event.__class__.__name__

        for callback in list(self._subscribers.get(event_type, [])):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (flow_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.flow_id,
                )
