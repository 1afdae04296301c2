"""Read-only venue endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, HTTPException, Request, status

if TYPE_CHECKING:
    from venue_share.containers import AppContainer
    from venue_share.domain.venues import Venue

router = APIRouter(prefix="/venues", tags=["venues"])


def venue_summary(venue: Venue) -> dict[str, object]:
    """Summarise a venue without its binary content."""
    return {
        "id": str(venue.id),
        "name": venue.name,
        "address": venue.address,
        "venue_type": venue.venue_type,
        "scenes": [
            {"id": str(scene.id), "name": scene.name, "photos": len(scene.photos)}
            for scene in venue.scenes
        ],
        "attachments": len(venue.attachments),
        "source_package_id": (
            str(venue.source_package_id) if venue.source_package_id else None
        ),
    }


@router.get("")
async def list_venues(request: Request) -> dict[str, object]:
    """Return stored venues."""
    container: AppContainer = request.app.state.container
    venues = container.venue_repository.list_venues()
    return {"venues": [venue_summary(venue) for venue in venues]}


@router.get("/{venue_id}")
async def venue_detail(venue_id: UUID, request: Request) -> dict[str, object]:
    """Return one stored venue."""
    container: AppContainer = request.app.state.container
    venue = container.venue_repository.get_venue(venue_id)
    if venue is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    return venue_summary(venue)
