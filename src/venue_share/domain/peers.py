"""Domain models for nearby peers and transport sessions."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4


@dataclass(frozen=True)
class PeerHandle:
    """A nearby device reachable over the local network."""

    name: str
    host: str
    port: int
    properties: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass(frozen=True)
class ServiceIdentity:
    """What this device announces while advertising."""

    service_type: str
    instance_name: str
    port: int
    host: str | None = None
    properties: dict[str, str] = field(default_factory=dict)


class SessionState(Enum):
    """Lifecycle of a transport session."""

    OPEN = "open"
    CLOSED = "closed"


@dataclass
class TransportSession:
    """A point-to-point channel to one peer.

    Outbound sessions count the sequence numbers they have sent, inbound
    sessions count the next sequence number they expect. Once closed a session
    is never reopened; callers connect again instead.
    """

    peer: PeerHandle
    id: UUID = field(default_factory=uuid4)
    outbound: bool = True
    state: SessionState = SessionState.OPEN
    sequence: int = 0

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    def close(self) -> None:
        self.state = SessionState.CLOSED


class ConnectionState(Enum):
    """Coarse connection status surfaced to the presentation layer."""

    IDLE = "idle"
    SEARCHING = "searching"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SHARING = "sharing"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"
