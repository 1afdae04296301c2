"""mDNS peer discovery backed by python-zeroconf."""

import asyncio
import logging
import socket
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from zeroconf import IPVersion, ServiceStateChange, Zeroconf
from zeroconf.asyncio import AsyncServiceBrowser, AsyncServiceInfo, AsyncZeroconf

from venue_share.domain.peers import PeerHandle, ServiceIdentity

logger = logging.getLogger(__name__)


@dataclass
class ZeroconfPeerDiscovery:
    """Advertise and browse a DNS-SD service type on the local network."""

    service_type: str
    resolve_timeout_ms: int = 3000

    _zeroconf: AsyncZeroconf | None = field(default=None, init=False)
    _advertised: AsyncServiceInfo | None = field(default=None, init=False)
    _own_name: str | None = field(default=None, init=False)
    _browser: AsyncServiceBrowser | None = field(default=None, init=False)
    _queue: asyncio.Queue | None = field(default=None, init=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _peers: dict[str, PeerHandle] = field(default_factory=dict, init=False)
    _resolving: set[asyncio.Task] = field(default_factory=set, init=False)

    @property
    def discovered_peers(self) -> list[PeerHandle]:
        return list(self._peers.values())

    @property
    def is_advertising(self) -> bool:
        return self._advertised is not None

    async def start_advertising(self, identity: ServiceIdentity) -> None:
        """Register this device's service record."""
        if self._advertised is not None:
            return
        host = identity.host or local_address()
        info = AsyncServiceInfo(
            identity.service_type,
            f"{identity.instance_name}.{identity.service_type}",
            addresses=[socket.inet_aton(host)],
            port=identity.port,
            properties=identity.properties,
            server=f"{socket.gethostname()}.local.",
        )
        await self._ensure_zeroconf().async_register_service(info)
        self._advertised = info
        self._own_name = identity.instance_name
        logger.info(
            "Advertising %s on %s:%d", identity.instance_name, host, identity.port
        )

    async def stop_advertising(self) -> None:
        """Unregister the service record if one is registered."""
        if self._advertised is None or self._zeroconf is None:
            return
        info, self._advertised = self._advertised, None
        await self._zeroconf.async_unregister_service(info)
        logger.info("Stopped advertising")

    async def browse_for_peers(self) -> AsyncIterator[PeerHandle]:
        """Yield newly resolved peers until `stop_browsing` is called."""
        if self._browser is not None:
            raise RuntimeError("Already browsing for peers")
        self._loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        self._peers.clear()
        self._browser = AsyncServiceBrowser(
            self._ensure_zeroconf().zeroconf,
            [self.service_type],
            handlers=[self._on_service_state_change],
        )
        logger.info("Browsing for %s", self.service_type)
        try:
            while True:
                peer = await queue.get()
                if peer is None:
                    return
                yield peer
        finally:
            await self._cancel_browser()

    async def stop_browsing(self) -> None:
        """End the current browse."""
        if self._queue is not None:
            self._queue.put_nowait(None)
        await self._cancel_browser()

    async def close(self) -> None:
        """Stop everything and release the mDNS responder."""
        await self.stop_browsing()
        await self.stop_advertising()
        if self._zeroconf is not None:
            zeroconf, self._zeroconf = self._zeroconf, None
            await zeroconf.async_close()

    def _ensure_zeroconf(self) -> AsyncZeroconf:
        if self._zeroconf is None:
            self._zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
        return self._zeroconf

    async def _cancel_browser(self) -> None:
        self._queue = None
        for task in list(self._resolving):
            task.cancel()
        if self._browser is not None:
            browser, self._browser = self._browser, None
            await browser.async_cancel()

    def _on_service_state_change(
        self,
        zeroconf: Zeroconf,
        service_type: str,
        name: str,
        state_change: ServiceStateChange,
    ) -> None:
        # Zeroconf may call back from its own thread.
        if self._loop is None:
            return
        self._loop.call_soon_threadsafe(
            self.handle_state_change, service_type, name, state_change
        )

    def handle_state_change(
        self, service_type: str, name: str, state_change: ServiceStateChange
    ) -> None:
        """Track a browse notification on the event loop."""
        if state_change is ServiceStateChange.Removed:
            instance = instance_name(name, service_type)
            if self._peers.pop(instance, None) is not None:
                logger.info("Lost peer %s", instance)
            return
        task = asyncio.ensure_future(self._resolve(service_type, name))
        self._resolving.add(task)
        task.add_done_callback(self._resolving.discard)

    async def _resolve(self, service_type: str, name: str) -> None:
        if self._zeroconf is None:
            return
        info = AsyncServiceInfo(service_type, name)
        resolved = await info.async_request(
            self._zeroconf.zeroconf, self.resolve_timeout_ms
        )
        if not resolved:
            logger.info("Could not resolve %s", name)
            return
        peer = peer_from_service_info(info, service_type)
        if peer is None:
            return
        self.add_peer(peer)

    def add_peer(self, peer: PeerHandle) -> None:
        """Record a resolved peer and surface it to the browse iterator."""
        if peer.name == self._own_name:
            return
        is_new = peer.name not in self._peers
        self._peers[peer.name] = peer
        if is_new and self._queue is not None:
            logger.info("Found peer %s at %s", peer.name, peer.base_url)
            self._queue.put_nowait(peer)


def instance_name(name: str, service_type: str) -> str:
    """Strip the service type suffix from a DNS-SD service name."""
    suffix = f".{service_type}"
    return name[: -len(suffix)] if name.endswith(suffix) else name


def peer_from_service_info(
    info: AsyncServiceInfo, service_type: str
) -> PeerHandle | None:
    """Build a peer handle from a resolved service record."""
    addresses = info.parsed_addresses(IPVersion.V4Only)
    if not addresses or info.port is None:
        return None
    properties = {
        key.decode("utf-8", "replace"): (value or b"").decode("utf-8", "replace")
        for key, value in info.properties.items()
    }
    return PeerHandle(
        name=instance_name(info.name, service_type),
        host=addresses[0],
        port=info.port,
        properties=properties,
    )


def local_address() -> str:
    """Best guess at this host's LAN address."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        try:
            probe.connect(("10.255.255.255", 1))
            return probe.getsockname()[0]
        except OSError:
            return "127.0.0.1"
