"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from venue_share.adapters.http_transport import HttpPeerTransport
from venue_share.adapters.supabase_venue_repository import SupabaseVenueRepository
from venue_share.adapters.zeroconf_discovery import ZeroconfPeerDiscovery
from venue_share.config import Settings, parse_pending_share_policy
from venue_share.domain.peers import ServiceIdentity
from venue_share.services.codec import SCHEMA_VERSION
from venue_share.services.events import EventBus
from venue_share.services.importer import VenueImportService, VenueRepository
from venue_share.services.share_manager import ShareManager
from venue_share.services.transport import PeerDiscovery


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    event_bus: EventBus
    venue_repository: VenueRepository
    import_service: VenueImportService
    discovery: PeerDiscovery
    transport: HttpPeerTransport
    share_manager: ShareManager
    close_resources: Callable[[], Awaitable[None]]


def build_identity(settings: Settings) -> ServiceIdentity:
    """Describe this device for mDNS advertising."""
    return ServiceIdentity(
        service_type=settings.service_type,
        instance_name=settings.device_name,
        port=settings.listen_port,
        host=settings.advertise_host,
        properties={
            "version": str(SCHEMA_VERSION),
            "app": "FLICK",
            "app_version": settings.app_version,
        },
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    venue_repository = SupabaseVenueRepository(supabase_client)
    event_bus = EventBus()
    import_service = VenueImportService(venue_repository)
    import_service.register(event_bus)
    discovery = ZeroconfPeerDiscovery(
        service_type=resolved_settings.service_type,
        resolve_timeout_ms=resolved_settings.discovery_resolve_timeout_ms,
    )
    transport = HttpPeerTransport.create(
        local_name=resolved_settings.device_name,
        local_port=resolved_settings.listen_port,
        connect_timeout=resolved_settings.connect_timeout_seconds,
        send_timeout=resolved_settings.send_timeout_seconds,
        max_payload_bytes=resolved_settings.max_payload_bytes,
        accept_inbound=resolved_settings.accept_inbound_sessions,
    )
    share_manager = ShareManager(
        transport=transport,
        discovery=discovery,
        importer=import_service,
        event_bus=event_bus,
        identity=build_identity(resolved_settings),
        app_version=resolved_settings.app_version,
        policy=parse_pending_share_policy(resolved_settings.pending_share_policy),
        max_payload_bytes=resolved_settings.max_payload_bytes,
    )

    async def close_resources() -> None:
        await transport.close()
        await discovery.close()

    return AppContainer(
        settings=resolved_settings,
        event_bus=event_bus,
        venue_repository=venue_repository,
        import_service=import_service,
        discovery=discovery,
        transport=transport,
        share_manager=share_manager,
        close_resources=close_resources,
    )
