"""HTTP transport for share sessions between nearby peers."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

import httpx

from venue_share.domain.errors import (
    ConnectTimeoutError,
    PayloadTooLargeError,
    PeerDeclinedError,
    PeerUnreachableError,
    SendFailedError,
    SendTimeoutError,
    SequenceGapError,
    SessionClosedError,
)
from venue_share.domain.peers import PeerHandle, TransportSession
from venue_share.services.transport import ReceiveHandler

logger = logging.getLogger(__name__)

SEQUENCE_HEADER = "X-Share-Sequence"
MAX_BYTES_HEADER = "X-Share-Max-Bytes"


class DeliveryStatus(Enum):
    """How an inbound message was handled."""

    DELIVERED = "delivered"
    DUPLICATE = "duplicate"


@dataclass
class HttpPeerTransport:
    """Peer transport over plain HTTP on the local network.

    Outbound sessions post to the peer's `/share` endpoints with httpx.
    Inbound sessions are opened and fed by this device's own FastAPI
    endpoints through `accept_session`, `deliver` and `close_inbound`.
    """

    local_name: str
    local_port: int
    http_client: httpx.AsyncClient
    connect_timeout: float = 15.0
    send_timeout: float = 30.0
    max_payload_bytes: int = 64 * 1024 * 1024
    accept_inbound: bool = True

    _handler: ReceiveHandler | None = field(default=None, init=False)
    _outbound: dict[UUID, TransportSession] = field(default_factory=dict, init=False)
    _inbound: dict[UUID, TransportSession] = field(default_factory=dict, init=False)
    _send_locks: dict[UUID, asyncio.Lock] = field(default_factory=dict, init=False)

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        local_name: str,
        local_port: int,
        connect_timeout: float = 15.0,
        send_timeout: float = 30.0,
        max_payload_bytes: int = 64 * 1024 * 1024,
        accept_inbound: bool = True,
    ) -> "HttpPeerTransport":
        """Create a transport with a managed httpx session."""
        return cls(
            local_name=local_name,
            local_port=local_port,
            http_client=httpx.AsyncClient(),
            connect_timeout=connect_timeout,
            send_timeout=send_timeout,
            max_payload_bytes=max_payload_bytes,
            accept_inbound=accept_inbound,
        )

    def on_receive(self, handler: ReceiveHandler) -> None:
        """Register the handler invoked for every delivered payload."""
        self._handler = handler

    async def connect(self, peer: PeerHandle) -> TransportSession:
        """Open an outbound session by announcing it to the peer."""
        session = TransportSession(peer=peer)
        url = f"{peer.base_url}/share/sessions"
        payload = {
            "session_id": str(session.id),
            "peer_name": self.local_name,
            "port": self.local_port,
        }
        try:
            response = await self.http_client.post(
                url, json=payload, timeout=self.connect_timeout
            )
        except httpx.TimeoutException as exc:
            raise ConnectTimeoutError(
                f"{peer.name} did not answer within {self.connect_timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise PeerUnreachableError(
                f"Cannot reach {peer.name} at {peer.base_url}"
            ) from exc

        if response.status_code == httpx.codes.FORBIDDEN:
            raise PeerDeclinedError(f"{peer.name} declined the session")
        if response.is_error:
            raise PeerUnreachableError(
                f"{peer.name} answered {response.status_code} to session request"
            )
        self._outbound[session.id] = session
        logger.info("Opened session %s to %s", session.id, peer.name)
        return session

    async def send(self, session: TransportSession, payload: bytes) -> None:
        """Post one payload on an outbound session.

        Sends on a session are serialized so the peer sees them in order.
        """
        if len(payload) > self.max_payload_bytes:
            raise PayloadTooLargeError(len(payload), self.max_payload_bytes)
        lock = self._send_locks.setdefault(session.id, asyncio.Lock())
        async with lock:
            if not session.is_open:
                raise SessionClosedError(f"Session {session.id} is closed")
            url = f"{session.peer.base_url}/share/sessions/{session.id}/messages"
            headers = {
                SEQUENCE_HEADER: str(session.sequence),
                "Content-Type": "application/octet-stream",
            }
            try:
                response = await self.http_client.post(
                    url, content=payload, headers=headers, timeout=self.send_timeout
                )
            except httpx.TimeoutException as exc:
                self._close_outbound(session)
                raise SendTimeoutError(
                    f"{session.peer.name} did not acknowledge within "
                    f"{self.send_timeout}s"
                ) from exc
            except httpx.TransportError as exc:
                self._close_outbound(session)
                raise SendFailedError(
                    f"Connection to {session.peer.name} dropped"
                ) from exc

            if response.status_code == httpx.codes.REQUEST_ENTITY_TOO_LARGE:
                limit = _advertised_limit(response)
                raise PayloadTooLargeError(len(payload), limit)
            if response.status_code == httpx.codes.NOT_FOUND:
                self._close_outbound(session)
                raise SessionClosedError(
                    f"{session.peer.name} no longer knows session {session.id}"
                )
            if response.is_error:
                self._close_outbound(session)
                raise SendFailedError(
                    f"{session.peer.name} rejected message: {response.status_code}"
                )
            session.sequence += 1

    async def close_session(self, session: TransportSession) -> None:
        """Close a session and tell the peer when it is ours."""
        if not session.is_open:
            return
        if not session.outbound:
            self.close_inbound(session.id)
            return
        self._close_outbound(session)
        url = f"{session.peer.base_url}/share/sessions/{session.id}"
        try:
            await self.http_client.delete(url, timeout=self.connect_timeout)
        except httpx.HTTPError as exc:
            logger.info(
                "Could not tell %s that session %s closed: %s",
                session.peer.name,
                session.id,
                exc,
            )

    async def close(self) -> None:
        """Close every session and the underlying HTTP client."""
        for session in list(self._outbound.values()):
            await self.close_session(session)
        for session_id in list(self._inbound):
            self.close_inbound(session_id)
        await self.http_client.aclose()

    def accept_session(self, session_id: UUID, peer: PeerHandle) -> TransportSession:
        """Register an inbound session announced by a peer."""
        if not self.accept_inbound:
            raise PeerDeclinedError(f"Not accepting sessions from {peer.name}")
        existing = self._inbound.get(session_id)
        if existing is not None and existing.is_open:
            return existing
        session = TransportSession(peer=peer, id=session_id, outbound=False)
        self._inbound[session_id] = session
        logger.info("Accepted session %s from %s", session_id, peer.name)
        return session

    async def deliver(
        self, session_id: UUID, sequence: int, payload: bytes
    ) -> DeliveryStatus:
        """Hand an inbound payload to the receive handler exactly once."""
        session = self._inbound.get(session_id)
        if session is None or not session.is_open:
            raise SessionClosedError(f"Unknown session {session_id}")
        if len(payload) > self.max_payload_bytes:
            raise PayloadTooLargeError(len(payload), self.max_payload_bytes)
        if sequence < session.sequence:
            logger.info(
                "Dropping repeated message %d on session %s", sequence, session_id
            )
            return DeliveryStatus.DUPLICATE
        if sequence > session.sequence:
            self.close_inbound(session_id)
            raise SequenceGapError(
                f"Expected message {session.sequence}, got {sequence}"
            )

        session.sequence += 1
        if self._handler is None:
            logger.warning(
                "No receive handler; dropping message from %s", session.peer.name
            )
            return DeliveryStatus.DELIVERED
        await self._handler(session, payload)
        return DeliveryStatus.DELIVERED

    def close_inbound(self, session_id: UUID) -> bool:
        """Close an inbound session; returns False when it was unknown."""
        session = self._inbound.pop(session_id, None)
        if session is None:
            return False
        session.close()
        logger.info("Closed session %s from %s", session_id, session.peer.name)
        return True

    def _close_outbound(self, session: TransportSession) -> None:
        session.close()
        self._outbound.pop(session.id, None)
        self._send_locks.pop(session.id, None)


def _advertised_limit(response: httpx.Response) -> int:
    """Payload limit a peer reports with a 413; 0 when missing or unreadable."""
    raw = response.headers.get(MAX_BYTES_HEADER, "0")
    try:
        return max(int(raw), 0)
    except ValueError:
        logger.info("Peer sent unreadable %s header: %r", MAX_BYTES_HEADER, raw)
        return 0
