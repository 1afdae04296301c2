"""Error taxonomy for venue sharing."""


class ShareError(Exception):
    """Base class for venue sharing failures."""


class DecodeError(ShareError):
    """Raised when a received payload cannot be decoded."""


class TruncatedPayloadError(DecodeError):
    """Payload is shorter than its header or declared body length."""


class UnsupportedVersionError(DecodeError):
    """Payload carries a schema version this build does not understand."""

    def __init__(self, version: int, expected: int) -> None:
        super().__init__(f"Unsupported schema version {version} (expected {expected})")
        self.version = version
        self.expected = expected


class MalformedPayloadError(DecodeError):
    """Payload framing or body content is invalid."""


class EncodeError(ShareError):
    """Raised when a venue cannot be turned into a share package."""


class TransportError(ShareError):
    """Base class for transport failures."""


class ConnectError(TransportError):
    """Raised when a session to a peer cannot be established."""


class ConnectTimeoutError(ConnectError):
    """Peer did not answer within the connect timeout."""


class PeerUnreachableError(ConnectError):
    """Peer could not be reached on the network."""


class PeerDeclinedError(ConnectError):
    """Peer refused the session."""


class SendError(TransportError):
    """Raised when a payload cannot be delivered on a session."""


class SessionClosedError(SendError):
    """Session is closed and cannot carry more messages."""


class PayloadTooLargeError(SendError):
    """Payload exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Payload of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class SendTimeoutError(SendError):
    """Peer did not acknowledge the payload within the send timeout."""


class SendFailedError(SendError):
    """Peer rejected the payload or the connection dropped mid-send."""


class SequenceGapError(SendFailedError):
    """Message arrived ahead of an earlier one on the same session."""


class VenueImportError(ShareError):
    """Raised when an accepted package cannot be committed to the store."""


class DuplicateImportError(VenueImportError):
    """Package was already imported into this store."""
