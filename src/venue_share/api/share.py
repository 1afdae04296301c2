"""Share endpoints: inbound transport, pending decisions and imports."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel

from venue_share.adapters.http_transport import MAX_BYTES_HEADER
from venue_share.api.venues import venue_summary
from venue_share.domain.errors import (
    DecodeError,
    PayloadTooLargeError,
    PeerDeclinedError,
    SequenceGapError,
    SessionClosedError,
)
from venue_share.domain.peers import PeerHandle
from venue_share.services.codec import decode
from venue_share.services.events import ImportSharedVenue

if TYPE_CHECKING:
    from venue_share.containers import AppContainer

router = APIRouter(prefix="/share", tags=["share"])


class OpenSessionRequest(BaseModel):
    """Peer announcing an outbound session to us."""

    session_id: UUID
    peer_name: str
    port: int


class RespondRequest(BaseModel):
    """User decision on the pending share."""

    accept: bool
    package_id: UUID | None = None
    overwrite_existing: bool = False


class SendVenueRequest(BaseModel):
    """Request to share a stored venue with a discovered peer."""

    peer_name: str


@router.post("/sessions")
async def open_session(body: OpenSessionRequest, request: Request) -> dict[str, str]:
    """Accept an inbound transport session."""
    container: AppContainer = request.app.state.container
    host = request.client.host if request.client else "127.0.0.1"
    peer = PeerHandle(name=body.peer_name, host=host, port=body.port)
    try:
        session = container.transport.accept_session(body.session_id, peer)
    except PeerDeclinedError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)
        ) from exc
    return {"session_id": str(session.id)}


@router.post("/sessions/{session_id}/messages")
async def receive_message(
    session_id: UUID,
    request: Request,
    x_share_sequence: int = Header(),
) -> dict[str, str]:
    """Deliver one message on an inbound session."""
    container: AppContainer = request.app.state.container
    payload = await request.body()
    try:
        delivery = await container.transport.deliver(
            session_id, x_share_sequence, payload
        )
    except SessionClosedError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)
        ) from exc
    except PayloadTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
            headers={MAX_BYTES_HEADER: str(exc.limit)},
        ) from exc
    except SequenceGapError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=str(exc)
        ) from exc
    return {"status": delivery.value}


@router.delete("/sessions/{session_id}")
async def close_session(session_id: UUID, request: Request) -> dict[str, str]:
    """Close an inbound session."""
    container: AppContainer = request.app.state.container
    if not container.transport.close_inbound(session_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return {"status": "closed"}


@router.get("/peers")
async def list_peers(request: Request) -> dict[str, object]:
    """Return peers currently visible on the local network."""
    container: AppContainer = request.app.state.container
    return {
        "peers": [
            {"name": peer.name, "host": peer.host, "port": peer.port}
            for peer in container.share_manager.discovered_peers
        ]
    }


@router.get("/pending")
async def pending_share(request: Request) -> dict[str, object]:
    """Return the share awaiting a decision."""
    container: AppContainer = request.app.state.container
    snapshot = container.share_manager.pending_snapshot()
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    conflicts = []
    if container.share_manager.pending_package is not None:
        conflicts = container.import_service.find_conflicts(
            container.share_manager.pending_package
        )
    return {
        "package_id": str(snapshot.package_id),
        "venue_name": snapshot.venue_name,
        "sender": snapshot.sender_display_name,
        "scenes": snapshot.scene_count,
        "photos": snapshot.photo_count,
        "attachments": snapshot.attachment_count,
        "received_at": snapshot.received_at.isoformat(),
        "conflicts": [venue_summary(venue) for venue in conflicts],
    }


@router.post("/pending/respond")
async def respond_to_pending(
    body: RespondRequest, request: Request
) -> dict[str, object]:
    """Accept or decline the pending share."""
    container: AppContainer = request.app.state.container
    decision = await container.share_manager.respond(
        body.accept,
        package_id=body.package_id,
        overwrite_existing=body.overwrite_existing,
    )
    return {
        "outcome": decision.outcome.value,
        "venue": venue_summary(decision.venue) if decision.venue else None,
        "error": str(decision.error) if decision.error else None,
    }


@router.post("/import", status_code=status.HTTP_202_ACCEPTED)
async def import_package(request: Request) -> dict[str, str]:
    """Import an encoded package outside the live share flow."""
    container: AppContainer = request.app.state.container
    payload = await request.body()
    try:
        package = decode(payload)
    except DecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc
    await container.event_bus.publish(
        ImportSharedVenue(
            package=package, sender_display_name=package.sender.display_name
        )
    )
    return {"status": "accepted", "package_id": str(package.package_id)}


@router.post("/venues/{venue_id}")
async def send_venue(
    venue_id: UUID, body: SendVenueRequest, request: Request
) -> dict[str, str]:
    """Share a stored venue with a discovered peer and wait for delivery."""
    container: AppContainer = request.app.state.container
    venue = container.venue_repository.get_venue(venue_id)
    if venue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="venue")
    peer = container.share_manager.find_peer(body.peer_name)
    if peer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="peer")
    report = await container.share_manager.share_venue(venue, peer)
    if not report.ok:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=str(report.error)
        )
    return {"status": "sent", "package_id": str(report.package_id)}
