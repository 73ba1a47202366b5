"""
In-process event bus for execution lifecycle events
"""
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..clock import utcnow


logger = logging.getLogger(__name__)


EXECUTION_EVENTS_TOPIC = "reminder.execution.events"


@dataclass
class Event:
    """Envelope delivered to subscribers; ``key`` is the execution id for lifecycle events"""
    topic: str
    payload: Any
    key: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class EventBus:
    """
    Fan-out of lifecycle events to in-process subscribers

    Subscribers are called one after another in subscription order, so each
    sees the events of an execution in the order the manager published them.
    A subscriber may be a plain function or return an awaitable. Its errors
    are logged against the execution and counted in ``delivery_failures``;
    they never reach the publisher.
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}
        self.delivery_failures = 0

    async def publish(self, topic: str, payload: Any, key: str = None):
        if key is None:
            key = getattr(payload, "execution_id", None)
        event = Event(topic=topic, payload=payload, key=key)

        subscribers = list(self.subscribers.get(topic, ()))
        for subscriber in subscribers:
            await self._deliver(subscriber, event)

        logger.debug(
            f"Published {type(payload).__name__} on '{topic}' to {len(subscribers)} subscribers",
            extra={"topic": topic, "execution_id": key}
        )

    async def subscribe(self, topic: str, handler: Callable):
        self.subscribers.setdefault(topic, []).append(handler)
        logger.info(f"Subscribed {_name(handler)} to '{topic}'")

    async def unsubscribe(self, topic: str, handler: Callable):
        handlers = self.subscribers.get(topic)
        if not handlers or handler not in handlers:
            return
        handlers.remove(handler)
        if not handlers:
            del self.subscribers[topic]
        logger.info(f"Unsubscribed {_name(handler)} from '{topic}'")

    async def _deliver(self, subscriber: Callable, event: Event):
        try:
            result = subscriber(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.delivery_failures += 1
            logger.error(
                f"Subscriber {_name(subscriber)} failed on '{event.topic}': {e}",
                exc_info=True,
                extra={"topic": event.topic, "execution_id": event.key}
            )


def _name(handler: Callable) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)
