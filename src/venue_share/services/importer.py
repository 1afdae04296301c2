"""Import accepted share packages into the local venue store."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID, uuid4

from venue_share.domain.errors import DuplicateImportError, VenueImportError
from venue_share.domain.packages import SharePackage
from venue_share.domain.venues import Attachment, Photo, Scene, Venue
from venue_share.services.events import EventBus, ImportSharedVenue

logger = logging.getLogger(__name__)


class VenueRepository(Protocol):
    """Persistence interface for venue trees."""

    def create_venue_tree(
        self, venue: Venue, replace_venue_id: UUID | None = None
    ) -> Venue:
        """Persist a venue with all scenes, photos and attachments atomically.

        When `replace_venue_id` is given that venue is deleted in the same
        commit.
        """

    def list_venues(self) -> list[Venue]:
        """Return all stored venues."""

    def get_venue(self, venue_id: UUID) -> Venue | None:
        """Return a venue by id, if present."""

    def has_package(self, package_id: UUID) -> bool:
        """Return whether a venue was already imported from this package."""


@dataclass
class VenueImportService:
    """Commits received packages as new local venues under fresh identities."""

    repository: VenueRepository
    id_factory: Callable[[], UUID] = field(default=uuid4)

    def import_package(
        self, package: SharePackage, overwrite_existing: bool = False
    ) -> Venue:
        """Import a package and return the stored venue."""
        if self.repository.has_package(package.package_id):
            raise DuplicateImportError(
                f"Package {package.package_id} was already imported"
            )

        replace_venue_id = None
        if overwrite_existing:
            conflicts = self.find_conflicts(package)
            if conflicts:
                replace_venue_id = conflicts[0].id

        venue = self._build_venue(package)
        try:
            stored = self.repository.create_venue_tree(
                venue, replace_venue_id=replace_venue_id
            )
        except VenueImportError:
            raise
        except Exception as exc:
            raise VenueImportError(
                f"Failed to store venue {package.venue.name!r}"
            ) from exc
        logger.info(
            "Imported venue %r from %s with %d scenes and %d photos",
            stored.name,
            package.sender.display_name,
            len(stored.scenes),
            stored.photo_count,
        )
        return stored

    def find_conflicts(self, package: SharePackage) -> list[Venue]:
        """Return stored venues that look like the incoming one.

        A venue conflicts when its name matches case-insensitively or when
        either address contains the other.
        """
        name = package.venue.name.lower()
        address = package.venue.address.lower()
        conflicts = []
        for venue in self.repository.list_venues():
            existing_address = venue.address.lower()
            name_match = venue.name.lower() == name
            address_match = bool(address and existing_address) and (
                address in existing_address or existing_address in address
            )
            if name_match or address_match:
                conflicts.append(venue)
        return conflicts

    async def handle_import_event(self, event: ImportSharedVenue) -> None:
        """Import a package published outside the live accept flow."""
        try:
            self.import_package(event.package)
        except VenueImportError:
            logger.exception(
                "Out-of-band import of %r from %s failed",
                event.package.venue.name,
                event.sender_display_name,
            )

    def register(self, event_bus: EventBus) -> None:
        """Subscribe to out-of-band import requests."""
        event_bus.subscribe(ImportSharedVenue, self.handle_import_event)

    def _build_venue(self, package: SharePackage) -> Venue:
        snapshot = package.venue
        reserved = package.source_ids
        now = datetime.now(tz=UTC)
        scenes = tuple(
            Scene(
                id=self._new_id(reserved),
                name=scene.name,
                date=scene.date,
                note=scene.note,
                photos=tuple(
                    Photo(
                        id=self._new_id(reserved),
                        taken_at=photo.taken_at,
                        data=photo.data,
                        note=photo.note,
                    )
                    for photo in scene.photos
                ),
            )
            for scene in snapshot.scenes
        )
        attachments = tuple(
            Attachment(
                id=self._new_id(reserved),
                file_name=attachment.file_name,
                file_type=attachment.file_type,
                data=attachment.data,
                added_at=attachment.added_at,
            )
            for attachment in snapshot.attachments
        )
        return Venue(
            id=self._new_id(reserved),
            name=snapshot.name,
            created_at=now,
            updated_at=now,
            address=snapshot.address,
            contact_name=snapshot.contact_name,
            contact_phone=snapshot.contact_phone,
            venue_type=snapshot.venue_type,
            notes=snapshot.notes,
            scenes=scenes,
            attachments=attachments,
            source_package_id=package.package_id,
        )

    def _new_id(self, reserved: set[UUID]) -> UUID:
        while True:
            candidate = self.id_factory()
            if candidate not in reserved:
                reserved.add(candidate)
                return candidate
