"""Domain models for scouted venues."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class Photo:
    """Single photo captured for a scene."""

    id: UUID
    taken_at: datetime
    data: bytes
    note: str | None = None


@dataclass(frozen=True)
class Scene:
    """Group of photos for one shooting setup within a venue."""

    id: UUID
    name: str
    date: datetime
    note: str | None = None
    photos: tuple[Photo, ...] = ()


@dataclass(frozen=True)
class Attachment:
    """File attached to a venue, such as a floor plan PDF."""

    id: UUID
    file_name: str
    file_type: str
    data: bytes
    added_at: datetime


@dataclass(frozen=True)
class Venue:
    """Represents a scouted filming location owned by the local store."""

    id: UUID
    name: str
    created_at: datetime
    updated_at: datetime
    address: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    venue_type: str = ""
    notes: str = ""
    scenes: tuple[Scene, ...] = ()
    attachments: tuple[Attachment, ...] = ()
    source_package_id: UUID | None = None

    @property
    def photo_count(self) -> int:
        return sum(len(scene.photos) for scene in self.scenes)
