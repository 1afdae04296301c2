"""Binary envelope codec for share messages.

Every message is framed as::

    magic (4) | version (1) | kind (1) | body length (4) | crc32 (4) | body

Integers are big-endian. The body is the UTF-8 JSON form of the pydantic
model for the message kind, with binary fields base64 encoded, so photo and
attachment bytes always travel inline.
"""

import struct
import zlib
from enum import IntEnum

from pydantic import BaseModel, ValidationError

from venue_share.domain.errors import (
    MalformedPayloadError,
    TruncatedPayloadError,
    UnsupportedVersionError,
)
from venue_share.domain.packages import (
    SenderInfo,
    ShareCancel,
    ShareMessage,
    SharePackage,
    ShareResponse,
)
from venue_share.domain.venues import Venue

MAGIC = b"VSHR"
SCHEMA_VERSION = 1

_HEADER = struct.Struct(">4sBBII")
HEADER_SIZE = _HEADER.size


class MessageKind(IntEnum):
    """Message kinds carried in the envelope header."""

    SHARE_REQUEST = 1
    SHARE_RESPONSE = 2
    SHARE_CANCEL = 3


_MODELS: dict[MessageKind, type[BaseModel]] = {
    MessageKind.SHARE_REQUEST: SharePackage,
    MessageKind.SHARE_RESPONSE: ShareResponse,
    MessageKind.SHARE_CANCEL: ShareCancel,
}


def encode(venue: Venue, sender: SenderInfo) -> bytes:
    """Snapshot a venue into a fresh package and encode it as a share request."""
    return encode_package(SharePackage.from_venue(venue, sender))


def encode_package(package: SharePackage) -> bytes:
    """Encode an existing package as a share request."""
    return encode_message(package)


def encode_message(message: ShareMessage) -> bytes:
    """Frame any share message in a versioned envelope."""
    kind = _kind_for(message)
    body = message.model_dump_json().encode("utf-8")
    header = _HEADER.pack(MAGIC, SCHEMA_VERSION, kind, len(body), zlib.crc32(body))
    return header + body


def decode(payload: bytes) -> SharePackage:
    """Decode a share request payload into its package."""
    message = decode_message(payload)
    if not isinstance(message, SharePackage):
        raise MalformedPayloadError(
            f"Expected a share request, got {type(message).__name__}"
        )
    return message


def decode_message(payload: bytes) -> ShareMessage:
    """Decode any framed share message.

    Raises a `DecodeError` subclass for every malformed input.
    """
    data = bytes(payload)
    if len(data) < HEADER_SIZE:
        raise TruncatedPayloadError(
            f"Payload has {len(data)} bytes, header needs {HEADER_SIZE}"
        )
    magic, version, kind_value, length, checksum = _HEADER.unpack_from(data)
    if magic != MAGIC:
        raise MalformedPayloadError("Payload does not start with the share magic")
    if version != SCHEMA_VERSION:
        raise UnsupportedVersionError(version, SCHEMA_VERSION)
    try:
        kind = MessageKind(kind_value)
    except ValueError:
        raise MalformedPayloadError(f"Unknown message kind {kind_value}") from None

    end = HEADER_SIZE + length
    if len(data) < end:
        raise TruncatedPayloadError(
            f"Body has {len(data) - HEADER_SIZE} bytes, header declares {length}"
        )
    if len(data) > end:
        raise MalformedPayloadError(f"{len(data) - end} trailing bytes after body")
    body = data[HEADER_SIZE:end]
    if zlib.crc32(body) != checksum:
        raise MalformedPayloadError("Body checksum mismatch")

    try:
        return _MODELS[kind].model_validate_json(body)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Invalid {kind.name.lower()} body") from exc


def _kind_for(message: ShareMessage) -> MessageKind:
    if isinstance(message, SharePackage):
        return MessageKind.SHARE_REQUEST
    if isinstance(message, ShareResponse):
        return MessageKind.SHARE_RESPONSE
    if isinstance(message, ShareCancel):
        return MessageKind.SHARE_CANCEL
    raise TypeError(f"Unsupported message type: {type(message).__name__}")
