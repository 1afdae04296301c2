"""Coordinator for sending and receiving venue shares.

The manager owns the outbound transport sessions and the single pending-share
slot. Every state change happens on the event loop while holding one lock, so
an inbound package can never race a user decision. Event handlers run after
the lock is released and may call `respond` directly.
"""

import asyncio
import functools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import ValidationError

from venue_share.domain.errors import (
    DecodeError,
    EncodeError,
    PayloadTooLargeError,
    SessionClosedError,
    ShareError,
    TransportError,
    VenueImportError,
)
from venue_share.domain.packages import (
    SenderInfo,
    ShareCancel,
    ShareMessage,
    ShareOutcome,
    SharePackage,
    ShareResponse,
)
from venue_share.domain.peers import (
    ConnectionState,
    PeerHandle,
    ServiceIdentity,
    TransportSession,
)
from venue_share.domain.venues import Venue
from venue_share.services.codec import decode_message, encode_message
from venue_share.services.events import (
    ConnectionStateChanged,
    EventBus,
    PeerDiscovered,
    VenueShareCompleted,
    VenueShareReceived,
)
from venue_share.services.importer import VenueImportService
from venue_share.services.transport import PeerDiscovery, PeerTransport

logger = logging.getLogger(__name__)


class PendingSharePolicy(str, Enum):
    """What happens when a share arrives while another awaits a decision."""

    REPLACE = "replace"
    QUEUE = "queue"
    REJECT = "reject"


class ShareState(Enum):
    """Receiving-side state of the pending-share slot."""

    IDLE = "idle"
    PENDING_DECISION = "pending_decision"
    IMPORTING = "importing"


@dataclass(frozen=True)
class SendReport:
    """Result of sending one message to a peer."""

    package_id: UUID
    peer: PeerHandle
    error: ShareError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ShareDecision:
    """Result of answering a pending share."""

    outcome: ShareOutcome
    venue: Venue | None = None
    error: VenueImportError | None = None


class ResponseToken:
    """Single-use completion handle for a pending share."""

    def __init__(self, future: asyncio.Future) -> None:
        self._future = future

    @property
    def resolved(self) -> bool:
        return self._future.done()

    @property
    def outcome(self) -> ShareOutcome | None:
        return self._future.result() if self._future.done() else None

    def resolve(self, outcome: ShareOutcome) -> bool:
        """Complete the token; returns False if it was already completed."""
        if self._future.done():
            logger.warning(
                "Ignoring second resolution %s (already %s)",
                outcome.value,
                self._future.result().value,
            )
            return False
        self._future.set_result(outcome)
        return True

    async def wait(self) -> ShareOutcome:
        """Wait until the share is resolved and return its outcome."""
        return await asyncio.shield(self._future)


@dataclass
class PendingShare:
    """An inbound package awaiting a decision."""

    package: SharePackage
    sender: PeerHandle
    token: ResponseToken
    received_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(frozen=True)
class PendingShareView:
    """Read-only snapshot of the pending share for the presentation layer."""

    package_id: UUID
    venue_name: str
    sender_display_name: str
    scene_count: int
    photo_count: int
    attachment_count: int
    received_at: datetime


@dataclass
class ShareManager:
    """Sends venues to peers and brokers decisions on received ones."""

    transport: PeerTransport
    discovery: PeerDiscovery
    importer: VenueImportService
    event_bus: EventBus
    identity: ServiceIdentity
    app_version: str = "1.0"
    policy: PendingSharePolicy = PendingSharePolicy.REPLACE
    max_payload_bytes: int = 64 * 1024 * 1024

    _pending: PendingShare | None = field(default=None, init=False)
    _queue: deque[PendingShare] = field(default_factory=deque, init=False)
    _state: ShareState = field(default=ShareState.IDLE, init=False)
    _connection_state: ConnectionState = field(
        default=ConnectionState.IDLE, init=False
    )
    _sessions: dict[str, TransportSession] = field(default_factory=dict, init=False)
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False)
    _browse_task: asyncio.Task | None = field(default=None, init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _session_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _outgoing: dict[UUID, str] = field(default_factory=dict, init=False)
    _started: bool = field(default=False, init=False)
    _stopped: bool = field(default=False, init=False)

    @property
    def state(self) -> ShareState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def discovered_peers(self) -> list[PeerHandle]:
        return self.discovery.discovered_peers

    @property
    def pending_count(self) -> int:
        """Number of shares waiting, including the one being decided."""
        return len(self._queue) + (1 if self._pending else 0)

    @property
    def pending_package(self) -> SharePackage | None:
        return self._pending.package if self._pending else None

    def find_peer(self, name: str) -> PeerHandle | None:
        """Return a discovered peer by display name."""
        for peer in self.discovered_peers:
            if peer.name == name:
                return peer
        return None

    def pending_snapshot(self) -> PendingShareView | None:
        """Return a snapshot of the share awaiting a decision, if any."""
        share = self._pending
        if share is None:
            return None
        venue = share.package.venue
        return PendingShareView(
            package_id=share.package.package_id,
            venue_name=venue.name,
            sender_display_name=share.package.sender.display_name,
            scene_count=len(venue.scenes),
            photo_count=share.package.photo_count,
            attachment_count=len(venue.attachments),
            received_at=share.received_at,
        )

    async def start(self) -> None:
        """Register for inbound payloads, advertise and begin browsing."""
        if self._started:
            return
        self._started = True
        self._stopped = False
        self.transport.on_receive(self.handle_payload)
        await self.discovery.start_advertising(self.identity)
        self._browse_task = asyncio.create_task(self._browse())
        await self._set_connection_state(ConnectionState.SEARCHING)
        logger.info("Share manager started as %s", self.identity.instance_name)

    async def stop(self) -> None:
        """Cancel outstanding shares and release every session."""
        if not self._started:
            return
        self._started = False
        self._stopped = True
        self._outgoing.clear()
        async with self._lock:
            outstanding = list(self._queue)
            if self._pending is not None:
                outstanding.insert(0, self._pending)
            self._pending = None
            self._queue.clear()
            self._state = ShareState.IDLE
            for share in outstanding:
                self._settle(share, ShareOutcome.CANCELLED)

        tasks = list(self._tasks)
        if self._browse_task is not None:
            tasks.append(self._browse_task)
            self._browse_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await self.transport.close_session(session)
        await self.discovery.stop_browsing()
        await self.discovery.stop_advertising()
        await self._set_connection_state(ConnectionState.IDLE)
        logger.info("Share manager stopped")

    async def flush(self) -> None:
        """Wait for background sends and replies to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def share_venue(self, venue: Venue, peer: PeerHandle) -> asyncio.Task:
        """Send a venue to a peer in the background.

        The returned task resolves to a `SendReport`; failures are reported in
        it rather than raised.
        """
        task = asyncio.create_task(self._share(venue, peer))
        self._track(task)
        return task

    async def cancel_share(self, package_id: UUID, peer: PeerHandle) -> SendReport:
        """Withdraw a share request previously sent to a peer."""
        if self._outgoing.get(package_id) == peer.name:
            del self._outgoing[package_id]
        return await self._deliver(package_id, peer, ShareCancel(package_id=package_id))

    async def respond(
        self,
        accept: bool,
        package_id: UUID | None = None,
        overwrite_existing: bool = False,
    ) -> ShareDecision:
        """Accept or decline the pending share.

        Only the first answer for a share has an effect; later calls return
        `ALREADY_RESOLVED`.
        """
        async with self._lock:
            share = self._pending
            if (
                share is None
                or share.token.resolved
                or (package_id is not None and share.package.package_id != package_id)
            ):
                logger.info("No pending share %s to answer", package_id or "")
                return ShareDecision(outcome=ShareOutcome.ALREADY_RESOLVED)

            if accept:
                self._state = ShareState.IMPORTING
                try:
                    venue = self.importer.import_package(
                        share.package, overwrite_existing=overwrite_existing
                    )
                except VenueImportError as exc:
                    logger.warning(
                        "Import of %r failed: %s", share.package.venue.name, exc
                    )
                    decision = ShareDecision(
                        outcome=ShareOutcome.IMPORT_FAILED, error=exc
                    )
                else:
                    decision = ShareDecision(outcome=ShareOutcome.ACCEPTED, venue=venue)
            else:
                decision = ShareDecision(outcome=ShareOutcome.DECLINED)

            self._settle(share, decision.outcome)
            next_share = self._advance()

        if next_share is not None:
            await self._announce(next_share)
        elif decision.outcome is ShareOutcome.IMPORT_FAILED:
            await self._set_connection_state(ConnectionState.FAILED)
        else:
            await self._set_connection_state(ConnectionState.COMPLETED)
        return decision

    async def handle_payload(self, session: TransportSession, payload: bytes) -> None:
        """Receive handler registered with the transport."""
        try:
            message = decode_message(payload)
        except DecodeError as exc:
            logger.warning(
                "Dropped %d byte payload from %s: %s",
                len(payload),
                session.peer.name,
                exc,
            )
            return

        if isinstance(message, SharePackage):
            await self._receive_package(message, session.peer)
        elif isinstance(message, ShareResponse):
            await self._receive_response(message, session.peer)
        else:
            await self._receive_cancel(message, session.peer)

    async def _receive_package(self, package: SharePackage, sender: PeerHandle) -> None:
        logger.info(
            "Received venue %r from %s: %d scenes, %d photos, %d attachments",
            package.venue.name,
            package.sender.display_name,
            len(package.venue.scenes),
            package.photo_count,
            len(package.venue.attachments),
        )
        loop = asyncio.get_running_loop()
        share = PendingShare(
            package=package,
            sender=sender,
            token=ResponseToken(loop.create_future()),
        )
        announce = None
        async with self._lock:
            if self._stopped:
                logger.info(
                    "Refusing share %s from %s: manager is stopped",
                    package.package_id,
                    sender.name,
                )
                self._settle(share, ShareOutcome.CANCELLED)
                return
            if self._is_waiting(package.package_id):
                logger.info("Ignoring repeated package %s", package.package_id)
                return
            if self._pending is None:
                self._pending = share
                announce = share
            elif self.policy is PendingSharePolicy.REPLACE:
                self._settle(self._pending, ShareOutcome.SUPERSEDED)
                self._pending = share
                announce = share
            elif self.policy is PendingSharePolicy.QUEUE:
                self._queue.append(share)
                logger.info(
                    "Queued share %s behind %d", package.package_id, len(self._queue)
                )
            else:
                self._settle(share, ShareOutcome.REJECTED)
            if self._pending is not None:
                self._state = ShareState.PENDING_DECISION

        if announce is not None:
            await self._announce(announce)

    async def _receive_response(
        self, response: ShareResponse, peer: PeerHandle
    ) -> None:
        if self._outgoing.get(response.package_id) != peer.name:
            logger.warning(
                "Ignoring answer from %s for share %s that was not sent to it",
                peer.name,
                response.package_id,
            )
            return
        del self._outgoing[response.package_id]
        logger.info(
            "%s answered share %s: %s",
            peer.name,
            response.package_id,
            response.outcome.value,
        )
        await self._set_connection_state(
            ConnectionState.COMPLETED if response.accepted else ConnectionState.FAILED
        )
        await self.event_bus.publish(
            VenueShareCompleted(
                package_id=response.package_id,
                peer_name=peer.name,
                accepted=response.accepted,
                outcome=response.outcome,
            )
        )

    async def _receive_cancel(self, cancel: ShareCancel, peer: PeerHandle) -> None:
        next_share = None
        async with self._lock:
            share = self._pending
            if (
                share is not None
                and share.package.package_id == cancel.package_id
                and share.sender.name == peer.name
            ):
                self._settle(share, ShareOutcome.CANCELLED)
                next_share = self._advance()
            else:
                for queued in list(self._queue):
                    if (
                        queued.package.package_id == cancel.package_id
                        and queued.sender.name == peer.name
                    ):
                        self._queue.remove(queued)
                        self._settle(queued, ShareOutcome.CANCELLED)
        if next_share is not None:
            await self._announce(next_share)

    async def _announce(self, share: PendingShare) -> None:
        await self._set_connection_state(ConnectionState.RECEIVING)
        await self.event_bus.publish(
            VenueShareReceived(
                package=share.package,
                sender_display_name=share.package.sender.display_name,
                respond=functools.partial(
                    self.respond, package_id=share.package.package_id
                ),
            )
        )

    def _advance(self) -> PendingShare | None:
        """Free the slot and promote the next queued share. Caller holds the lock."""
        self._pending = self._queue.popleft() if self._queue else None
        self._state = (
            ShareState.PENDING_DECISION if self._pending else ShareState.IDLE
        )
        return self._pending

    def _is_waiting(self, package_id: UUID) -> bool:
        if self._pending is not None and self._pending.package.package_id == package_id:
            return True
        return any(share.package.package_id == package_id for share in self._queue)

    def _settle(self, share: PendingShare, outcome: ShareOutcome) -> None:
        if not share.token.resolve(outcome):
            return
        logger.info(
            "Share %s from %s resolved: %s",
            share.package.package_id,
            share.sender.name,
            outcome.value,
        )
        if outcome is ShareOutcome.CANCELLED:
            return
        response = ShareResponse(
            package_id=share.package.package_id,
            accepted=outcome is ShareOutcome.ACCEPTED,
            outcome=outcome,
        )
        self._track(asyncio.create_task(self._reply(share.sender, response)))

    async def _reply(self, peer: PeerHandle, response: ShareResponse) -> None:
        report = await self._deliver(response.package_id, peer, response)
        if not report.ok:
            logger.warning(
                "Could not tell %s about share %s: %s",
                peer.name,
                response.package_id,
                report.error,
            )

    async def _share(self, venue: Venue, peer: PeerHandle) -> SendReport:
        try:
            package = SharePackage.from_venue(
                venue,
                SenderInfo(
                    display_name=self.identity.instance_name,
                    app_version=self.app_version,
                ),
            )
        except ValidationError as exc:
            logger.warning("Could not package venue %r: %s", venue.name, exc)
            await self._set_connection_state(ConnectionState.FAILED)
            return SendReport(
                package_id=venue.id,
                peer=peer,
                error=EncodeError(f"Venue {venue.name!r} cannot be packaged: {exc}"),
            )
        logger.info(
            "Sharing venue %r with %s (%d attachments)",
            venue.name,
            peer.name,
            len(venue.attachments),
        )
        await self._set_connection_state(ConnectionState.SHARING)
        self._outgoing[package.package_id] = peer.name
        report = await self._deliver(package.package_id, peer, package)
        if not report.ok:
            self._outgoing.pop(package.package_id, None)
            logger.warning(
                "Sharing %r with %s failed: %s", venue.name, peer.name, report.error
            )
            await self._set_connection_state(ConnectionState.FAILED)
        return report

    async def _deliver(
        self, package_id: UUID, peer: PeerHandle, message: ShareMessage
    ) -> SendReport:
        payload = encode_message(message)
        try:
            await self._send_to_peer(peer, payload)
        except TransportError as exc:
            return SendReport(package_id=package_id, peer=peer, error=exc)
        return SendReport(package_id=package_id, peer=peer)

    async def _send_to_peer(self, peer: PeerHandle, payload: bytes) -> None:
        if len(payload) > self.max_payload_bytes:
            raise PayloadTooLargeError(len(payload), self.max_payload_bytes)

        session = await self._session_for(peer)
        try:
            await self.transport.send(session, payload)
        except SessionClosedError:
            logger.info("Session to %s was closed, reconnecting", peer.name)
            self._drop_session(peer, session)
        except TransportError:
            self._drop_session(peer, session)
            raise
        else:
            return

        session = await self._session_for(peer)
        try:
            await self.transport.send(session, payload)
        except TransportError:
            self._drop_session(peer, session)
            raise

    async def _session_for(self, peer: PeerHandle) -> TransportSession:
        async with self._session_lock:
            session = self._sessions.get(peer.name)
            if session is not None and session.is_open:
                return session
            await self._set_connection_state(ConnectionState.CONNECTING)
            session = await self.transport.connect(peer)
            self._sessions[peer.name] = session
            await self._set_connection_state(ConnectionState.CONNECTED)
            return session

    def _drop_session(self, peer: PeerHandle, session: TransportSession) -> None:
        if self._sessions.get(peer.name) is session:
            del self._sessions[peer.name]

    async def _browse(self) -> None:
        try:
            async for peer in self.discovery.browse_for_peers():
                if peer.name == self.identity.instance_name:
                    continue
                await self.event_bus.publish(PeerDiscovered(peer=peer))
        except Exception:
            logger.exception("Peer browsing stopped unexpectedly")

    async def _set_connection_state(self, state: ConnectionState) -> None:
        if state is self._connection_state:
            return
        self._connection_state = state
        await self.event_bus.publish(ConnectionStateChanged(state=state))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
