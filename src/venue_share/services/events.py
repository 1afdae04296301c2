"""Typed event bus for share notifications."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from uuid import UUID

from venue_share.domain.packages import SharePackage, ShareOutcome
from venue_share.domain.peers import ConnectionState, PeerHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VenueShareReceived:
    """A share request is waiting for the user to accept or decline it."""

    package: SharePackage
    sender_display_name: str
    respond: Callable[[bool], Awaitable[object]] = field(compare=False)


@dataclass(frozen=True)
class ImportSharedVenue:
    """Request to import a package outside the live accept flow."""

    package: SharePackage
    sender_display_name: str


@dataclass(frozen=True)
class VenueShareCompleted:
    """The receiving device answered a share request we sent."""

    package_id: UUID
    peer_name: str
    accepted: bool
    outcome: ShareOutcome


@dataclass(frozen=True)
class PeerDiscovered:
    """A nearby peer became visible."""

    peer: PeerHandle


@dataclass(frozen=True)
class ConnectionStateChanged:
    """Coarse connection status changed."""

    state: ConnectionState


ShareEvent = (
    VenueShareReceived
    | ImportSharedVenue
    | VenueShareCompleted
    | PeerDiscovered
    | ConnectionStateChanged
)

EVENT_TYPES: tuple[type, ...] = (
    VenueShareReceived,
    ImportSharedVenue,
    VenueShareCompleted,
    PeerDiscovered,
    ConnectionStateChanged,
)

EventHandler = Callable[[ShareEvent], Awaitable[None] | None]


@dataclass
class EventBus:
    """Explicit observer registry for the share event types."""

    _handlers: dict[type, list[EventHandler]] = field(default_factory=dict)

    def subscribe(self, event_type: type, handler: EventHandler) -> None:
        """Register a handler for one event type."""
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type.__name__}")
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: type, handler: EventHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: ShareEvent) -> None:
        """Deliver an event to its handlers in subscription order."""
        for handler in list(self._handlers.get(type(event), [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Handler %r failed for %s", handler, type(event).__name__
                )
