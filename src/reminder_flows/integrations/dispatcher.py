"""
Channel dispatch to external message providers
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..clock import utcnow
from ..exceptions import DispatchError
from ..models.flow import StepType


logger = logging.getLogger(__name__)


class Channel(Enum):
    """Delivery channels"""
    NOTIFICATION = "notification"
    EMAIL = "email"
    SMS = "sms"


STEP_CHANNELS = {
    StepType.SEND_NOTIFICATION: Channel.NOTIFICATION,
    StepType.SEND_EMAIL: Channel.EMAIL,
    StepType.SEND_SMS: Channel.SMS,
}

# Context snapshot keys holding the recipient address per channel, in priority order
RECIPIENT_KEYS = {
    Channel.NOTIFICATION: ("client_user_id", "client_id", "entity_id"),
    Channel.EMAIL: ("client_email",),
    Channel.SMS: ("client_phone",),
}


def resolve_recipient(channel: Channel, context: Dict[str, Any]) -> Optional[str]:
    for key in RECIPIENT_KEYS[channel]:
        value = context.get(key)
        if value:
            return str(value)
    return None


@dataclass
class OutboundMessage:
    """A rendered message handed to a provider"""
    channel: Channel
    recipient: str
    body: str
    subject: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class DispatchResult:
    """Outcome of a send"""
    ok: bool
    error: Optional[str] = None
    provider_message_id: Optional[str] = None


class ChannelProvider(ABC):
    """An external delivery provider for one or more channels"""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> DispatchResult:
        """Deliver a message; may raise on failure"""
        pass


class ChannelDispatcher:
    """Routes messages to providers with a bounded timeout; never raises"""

    def __init__(self, timeout: float = 30.0, providers: Dict[Channel, ChannelProvider] = None):
        self.timeout = timeout
        self.providers: Dict[Channel, ChannelProvider] = dict(providers or {})

    def register_provider(self, channel: Channel, provider: ChannelProvider):
        self.providers[channel] = provider
        logger.info(f"Registered {type(provider).__name__} for channel '{channel.value}'")

    async def send(
        self,
        channel: Channel,
        recipient: Optional[str],
        body: str,
        subject: Optional[str] = None,
        metadata: Dict[str, Any] = None
    ) -> DispatchResult:
        try:
            return await self._send(channel, recipient, body, subject, metadata or {})
        except DispatchError as e:
            logger.warning(str(e), extra={"channel": channel.value, **(metadata or {})})
            return DispatchResult(ok=False, error=str(e))

    async def _send(
        self,
        channel: Channel,
        recipient: Optional[str],
        body: str,
        subject: Optional[str],
        metadata: Dict[str, Any]
    ) -> DispatchResult:
        provider = self.providers.get(channel)
        if provider is None:
            raise DispatchError(channel.value, "no provider registered")
        if not recipient:
            raise DispatchError(channel.value, "no recipient available")

        message = OutboundMessage(
            channel=channel,
            recipient=recipient,
            body=body,
            subject=subject,
            metadata=metadata
        )

        try:
            result = await asyncio.wait_for(provider.send(message), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise DispatchError(channel.value, f"timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"Provider error on channel '{channel.value}': {e}", exc_info=True)
            raise DispatchError(channel.value, str(e))

        if not result.ok:
            raise DispatchError(channel.value, result.error or "provider rejected message")
        return result


class LoggingChannelProvider(ChannelProvider):
    """Writes messages to the log instead of delivering them"""

    async def send(self, message: OutboundMessage) -> DispatchResult:
        logger.info(
            f"[{message.channel.value}] to={message.recipient} "
            f"subject={message.subject!r} body={message.body!r}"
        )
        return DispatchResult(ok=True)


class MockChannelProvider(ChannelProvider):
    """Records messages in memory; can be told to fail or stall"""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent: List[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> DispatchResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            return DispatchResult(ok=False, error="mock provider failure")
        self.sent.append(message)
        return DispatchResult(ok=True, provider_message_id=f"mock-{len(self.sent)}")

    def messages_for(self, channel: Channel) -> List[OutboundMessage]:
        return [m for m in self.sent if m.channel == channel]
