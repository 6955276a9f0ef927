"""Chat transport interface and connection time tracking."""

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

from .events import Platform

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[Any]]


class ChatTransportFacade(Protocol):
    """A platform connection that delivers raw payloads."""

    platform: Platform

    def connection_time(self) -> Optional[int]:
        """Ms epoch of the most recent successful handshake, if connected."""
        ...

    def set_event_handler(self, handler: EventHandler) -> None:
        """Register the callback that receives each raw payload."""
        ...


def is_deliverable(platform: Platform, raw: Any) -> bool:
    """EventSub keepalives, welcomes and revocations never reach the pipeline."""
    if platform is Platform.TWITCH and isinstance(raw, dict) and isinstance(raw.get("metadata"), dict):
        return raw["metadata"].get("message_type") == "notification"
    return True


class ConnectionRegistry:
    """Knows when each platform last connected."""

    def __init__(self):
        self._transports: dict[Platform, ChatTransportFacade] = {}
        self._times: dict[Platform, int] = {}

    def register(self, transport: ChatTransportFacade) -> None:
        self._transports[Platform.parse(transport.platform)] = transport

    def record_connection(self, platform: "str | Platform", connected_at_ms: int) -> None:
        """Record a handshake for platforms without a registered transport."""
        self._times[Platform.parse(platform)] = int(connected_at_ms)

    def connection_time(self, platform: "str | Platform") -> Optional[int]:
        platform = Platform.parse(platform)
        transport = self._transports.get(platform)
        if transport is not None:
            connected = transport.connection_time()
            if connected is not None:
                return connected
        return self._times.get(platform)


class ReplayTransport:
    """Transport fed from recorded payloads (replays and tests)."""

    def __init__(self, platform: "str | Platform", connected_at_ms: Optional[int] = None):
        self.platform = Platform.parse(platform)
        self._connected_at = connected_at_ms
        self._handler: Optional[EventHandler] = None

    def connection_time(self) -> Optional[int]:
        return self._connected_at

    def connect(self, at_ms: int) -> None:
        self._connected_at = int(at_ms)

    def set_event_handler(self, handler: EventHandler) -> None:
        self._handler = handler

    async def deliver(self, raw: Any) -> Any:
        """Pass one payload to the handler. Returns the handler's result."""
        if self._handler is None:
            raise RuntimeError(f"No handler registered for {self.platform.value} transport")
        if not is_deliverable(self.platform, raw):
            logger.debug(f"Dropped non-notification {self.platform.value} envelope")
            return None
        return await self._handler(raw)
