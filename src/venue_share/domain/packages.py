"""Wire models for venue share packages."""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from venue_share.domain.venues import Venue

_WIRE_CONFIG = ConfigDict(
    frozen=True,
    extra="forbid",
    ser_json_bytes="base64",
    val_json_bytes="base64",
)


class PhotoSnapshot(BaseModel):
    """Photo content carried inline in a package."""

    model_config = _WIRE_CONFIG

    source_id: UUID
    taken_at: datetime
    data: bytes
    note: str | None = None


class SceneSnapshot(BaseModel):
    """Scene content carried inline in a package."""

    model_config = _WIRE_CONFIG

    source_id: UUID
    name: str
    date: datetime
    note: str | None = None
    photos: tuple[PhotoSnapshot, ...] = ()


class AttachmentSnapshot(BaseModel):
    """Attachment content carried inline in a package."""

    model_config = _WIRE_CONFIG

    source_id: UUID
    file_name: str
    file_type: str
    data: bytes
    added_at: datetime


class VenueSnapshot(BaseModel):
    """Self-contained copy of a venue and everything it owns."""

    model_config = _WIRE_CONFIG

    source_id: UUID
    name: str
    address: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    venue_type: str = ""
    notes: str = ""
    created_at: datetime
    updated_at: datetime
    scenes: tuple[SceneSnapshot, ...] = ()
    attachments: tuple[AttachmentSnapshot, ...] = ()


class SenderInfo(BaseModel):
    """Identifies the device that built a package."""

    model_config = _WIRE_CONFIG

    display_name: str = Field(min_length=1)
    app_version: str = "1.0"
    sent_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class SharePackage(BaseModel):
    """Immutable export of one venue for transfer to another device."""

    model_config = _WIRE_CONFIG

    package_id: UUID = Field(default_factory=uuid4)
    sender: SenderInfo
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    venue: VenueSnapshot

    @classmethod
    def from_venue(cls, venue: Venue, sender: SenderInfo) -> "SharePackage":
        """Snapshot a stored venue into a new package."""
        return cls(
            sender=sender,
            venue=VenueSnapshot(
                source_id=venue.id,
                name=venue.name,
                address=venue.address,
                contact_name=venue.contact_name,
                contact_phone=venue.contact_phone,
                venue_type=venue.venue_type,
                notes=venue.notes,
                created_at=venue.created_at,
                updated_at=venue.updated_at,
                scenes=tuple(
                    SceneSnapshot(
                        source_id=scene.id,
                        name=scene.name,
                        date=scene.date,
                        note=scene.note,
                        photos=tuple(
                            PhotoSnapshot(
                                source_id=photo.id,
                                taken_at=photo.taken_at,
                                data=photo.data,
                                note=photo.note,
                            )
                            for photo in scene.photos
                        ),
                    )
                    for scene in venue.scenes
                ),
                attachments=tuple(
                    AttachmentSnapshot(
                        source_id=attachment.id,
                        file_name=attachment.file_name,
                        file_type=attachment.file_type,
                        data=attachment.data,
                        added_at=attachment.added_at,
                    )
                    for attachment in venue.attachments
                ),
            ),
        )

    @property
    def source_ids(self) -> set[UUID]:
        """Return every identity from the sender's store carried by the package."""
        ids = {self.package_id, self.venue.source_id}
        for scene in self.venue.scenes:
            ids.add(scene.source_id)
            ids.update(photo.source_id for photo in scene.photos)
        ids.update(attachment.source_id for attachment in self.venue.attachments)
        return ids

    @property
    def photo_count(self) -> int:
        return sum(len(scene.photos) for scene in self.venue.scenes)

    @property
    def size_hint(self) -> int:
        """Approximate number of binary bytes carried inline."""
        total = sum(len(a.data) for a in self.venue.attachments)
        for scene in self.venue.scenes:
            total += sum(len(photo.data) for photo in scene.photos)
        return total


class ShareOutcome(str, Enum):
    """Final result of a share offer as seen by both devices."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    IMPORT_FAILED = "import_failed"
    ALREADY_RESOLVED = "already_resolved"


class ShareResponse(BaseModel):
    """Receiver's answer to a share request."""

    model_config = _WIRE_CONFIG

    package_id: UUID
    accepted: bool
    outcome: ShareOutcome


class ShareCancel(BaseModel):
    """Sender withdraws a share request it sent earlier."""

    model_config = _WIRE_CONFIG

    package_id: UUID


ShareMessage = SharePackage | ShareResponse | ShareCancel
