"""Supabase-backed venue repository."""

import base64
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from venue_share.domain.errors import VenueImportError
from venue_share.domain.venues import Attachment, Photo, Scene, Venue
from venue_share.services.importer import VenueRepository

_VENUE_COLUMNS = (
    "id, name, address, contact_name, contact_phone, venue_type, notes, "
    "created_at, updated_at, source_package_id, "
    "venue_scenes(id, position, name, date, note, "
    "scene_photos(id, position, taken_at, data_base64, note)), "
    "venue_attachments(id, position, file_name, file_type, data_base64, added_at)"
)


@dataclass
class SupabaseVenueRepository(VenueRepository):
    """Supabase implementation for venue trees.

    Writes go through the `import_venue_tree` Postgres function so the venue,
    its scenes, photos and attachments commit in a single transaction.
    """

    client: Client

    def create_venue_tree(
        self, venue: Venue, replace_venue_id: UUID | None = None
    ) -> Venue:
        """Insert the whole tree atomically and return it."""
        response = self.client.rpc(
            "import_venue_tree",
            {
                "tree": _venue_to_tree(venue),
                "replace_venue_id": str(replace_venue_id) if replace_venue_id else None,
            },
        ).execute()
        if not response.data:
            raise VenueImportError(f"Failed to store venue {venue.name!r}")
        return venue

    def list_venues(self) -> list[Venue]:
        """Return all venues ordered by creation time."""
        response = (
            self.client.table("venues")
            .select(_VENUE_COLUMNS)
            .order("created_at")
            .execute()
        )
        return [_row_to_venue(row) for row in response.data or []]

    def get_venue(self, venue_id: UUID) -> Venue | None:
        """Return a venue by id, if present."""
        response = (
            self.client.table("venues")
            .select(_VENUE_COLUMNS)
            .eq("id", str(venue_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_venue(response.data[0])

    def has_package(self, package_id: UUID) -> bool:
        """Return whether a venue was imported from the package."""
        response = (
            self.client.table("venues")
            .select("id")
            .eq("source_package_id", str(package_id))
            .limit(1)
            .execute()
        )
        return bool(response.data)


def _encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _venue_to_tree(venue: Venue) -> dict[str, object]:
    return {
        "id": str(venue.id),
        "name": venue.name,
        "address": venue.address,
        "contact_name": venue.contact_name,
        "contact_phone": venue.contact_phone,
        "venue_type": venue.venue_type,
        "notes": venue.notes,
        "created_at": venue.created_at.isoformat(),
        "updated_at": venue.updated_at.isoformat(),
        "source_package_id": (
            str(venue.source_package_id) if venue.source_package_id else None
        ),
        "scenes": [
            {
                "id": str(scene.id),
                "position": scene_index,
                "name": scene.name,
                "date": scene.date.isoformat(),
                "note": scene.note,
                "photos": [
                    {
                        "id": str(photo.id),
                        "position": photo_index,
                        "taken_at": photo.taken_at.isoformat(),
                        "data_base64": _encode_bytes(photo.data),
                        "note": photo.note,
                    }
                    for photo_index, photo in enumerate(scene.photos)
                ],
            }
            for scene_index, scene in enumerate(venue.scenes)
        ],
        "attachments": [
            {
                "id": str(attachment.id),
                "position": index,
                "file_name": attachment.file_name,
                "file_type": attachment.file_type,
                "data_base64": _encode_bytes(attachment.data),
                "added_at": attachment.added_at.isoformat(),
            }
            for index, attachment in enumerate(venue.attachments)
        ],
    }


def _by_position(rows: list[dict[str, object]] | None) -> list[dict[str, object]]:
    return sorted(rows or [], key=lambda row: int(row.get("position") or 0))


def _row_to_venue(row: dict[str, object]) -> Venue:
    scenes = tuple(
        Scene(
            id=UUID(scene_row["id"]),
            name=scene_row["name"],
            date=datetime.fromisoformat(scene_row["date"]),
            note=scene_row.get("note"),
            photos=tuple(
                Photo(
                    id=UUID(photo_row["id"]),
                    taken_at=datetime.fromisoformat(photo_row["taken_at"]),
                    data=base64.b64decode(photo_row["data_base64"]),
                    note=photo_row.get("note"),
                )
                for photo_row in _by_position(scene_row.get("scene_photos"))
            ),
        )
        for scene_row in _by_position(row.get("venue_scenes"))
    )
    attachments = tuple(
        Attachment(
            id=UUID(attachment_row["id"]),
            file_name=attachment_row["file_name"],
            file_type=attachment_row["file_type"],
            data=base64.b64decode(attachment_row["data_base64"]),
            added_at=datetime.fromisoformat(attachment_row["added_at"]),
        )
        for attachment_row in _by_position(row.get("venue_attachments"))
    )
    source_package_id = row.get("source_package_id")
    return Venue(
        id=UUID(row["id"]),
        name=row["name"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        address=row.get("address") or "",
        contact_name=row.get("contact_name") or "",
        contact_phone=row.get("contact_phone") or "",
        venue_type=row.get("venue_type") or "",
        notes=row.get("notes") or "",
        scenes=scenes,
        attachments=attachments,
        source_package_id=UUID(source_package_id) if source_package_id else None,
    )
