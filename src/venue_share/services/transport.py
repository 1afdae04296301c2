"""Interfaces for nearby peer discovery and payload transport."""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Protocol

from venue_share.domain.peers import PeerHandle, ServiceIdentity, TransportSession

ReceiveHandler = Callable[[TransportSession, bytes], Awaitable[None]]


class PeerDiscovery(Protocol):
    """Advertise this device and discover others on the local network."""

    @property
    def discovered_peers(self) -> list[PeerHandle]:
        """Return the peers currently visible."""

    async def start_advertising(self, identity: ServiceIdentity) -> None:
        """Announce the service; a repeated call while advertising is a no-op."""

    async def stop_advertising(self) -> None:
        """Withdraw the announcement; a no-op when not advertising."""

    def browse_for_peers(self) -> AsyncIterator[PeerHandle]:
        """Yield peers as they are found until browsing stops."""

    async def stop_browsing(self) -> None:
        """End the current browse; a later browse starts afresh."""

    async def close(self) -> None:
        """Release network resources."""


class PeerTransport(Protocol):
    """Reliable, ordered exchange of opaque payloads with one peer at a time."""

    def on_receive(self, handler: ReceiveHandler) -> None:
        """Register the handler invoked for every delivered payload."""

    async def connect(self, peer: PeerHandle) -> TransportSession:
        """Open a session to a peer or raise a `ConnectError`."""

    async def send(self, session: TransportSession, payload: bytes) -> None:
        """Deliver a payload on a session or raise a `SendError`."""

    async def close_session(self, session: TransportSession) -> None:
        """Close a session; closing twice is a no-op."""

    async def close(self) -> None:
        """Close every session and release resources."""
