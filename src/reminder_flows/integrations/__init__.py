"""External collaborators: channel providers, entity directory, event bus"""

from .dispatcher import (
    Channel,
    ChannelDispatcher,
    ChannelProvider,
    DispatchResult,
    OutboundMessage,
    LoggingChannelProvider,
    MockChannelProvider,
    STEP_CHANNELS,
    resolve_recipient
)
from .entities import EntityDirectory, InMemoryEntityDirectory
from .event_bus import EventBus, Event, EXECUTION_EVENTS_TOPIC

__all__ = [
    "Channel",
    "ChannelDispatcher",
    "ChannelProvider",
    "DispatchResult",
    "OutboundMessage",
    "LoggingChannelProvider",
    "MockChannelProvider",
    "STEP_CHANNELS",
    "resolve_recipient",
    "EntityDirectory",
    "InMemoryEntityDirectory",
    "EventBus",
    "Event",
    "EXECUTION_EVENTS_TOPIC"
]
