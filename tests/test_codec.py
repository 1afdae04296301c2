"""Tests for the share envelope codec."""

import struct
import zlib
from uuid import uuid4

import pytest

from tests.conftest import make_venue
from venue_share.domain.errors import (
    DecodeError,
    MalformedPayloadError,
    TruncatedPayloadError,
    UnsupportedVersionError,
)
from venue_share.domain.packages import (
    SenderInfo,
    ShareCancel,
    ShareOutcome,
    SharePackage,
    ShareResponse,
)
from venue_share.services.codec import (
    HEADER_SIZE,
    MAGIC,
    decode,
    decode_message,
    encode,
    encode_message,
    encode_package,
)


def _sender() -> SenderInfo:
    return SenderInfo(display_name="Alice's iPad")


def test_encode_decode_preserves_venue_content() -> None:
    venue = make_venue(attachments=2)

    package = decode(encode(venue, _sender()))

    assert package.venue.name == "Warehouse A"
    assert package.venue.address == venue.address
    assert package.venue.notes == venue.notes
    assert [scene.name for scene in package.venue.scenes] == ["Scene 1", "Scene 2"]
    assert [len(scene.photos) for scene in package.venue.scenes] == [3, 1]
    for sent, received in zip(venue.scenes, package.venue.scenes, strict=True):
        assert received.source_id == sent.id
        assert received.note == sent.note
        assert [photo.data for photo in received.photos] == [
            photo.data for photo in sent.photos
        ]
    assert [a.data for a in package.venue.attachments] == [
        a.data for a in venue.attachments
    ]
    assert package.sender.display_name == "Alice's iPad"
    assert package.photo_count == 4


def test_encode_package_keeps_package_identity() -> None:
    package = SharePackage.from_venue(make_venue(), _sender())

    decoded = decode(encode_package(package))

    assert decoded == package


def test_each_encode_creates_a_new_package() -> None:
    venue = make_venue()

    first = decode(encode(venue, _sender()))
    second = decode(encode(venue, _sender()))

    assert first.package_id != second.package_id


def test_header_layout() -> None:
    payload = encode(make_venue(photos_per_scene=()), _sender())

    magic, version, kind, length, checksum = struct.unpack_from(">4sBBII", payload)

    assert magic == MAGIC
    assert version == 1
    assert kind == 1
    assert length == len(payload) - HEADER_SIZE
    assert checksum == zlib.crc32(payload[HEADER_SIZE:])


def test_response_and_cancel_messages() -> None:
    package_id = uuid4()
    response = ShareResponse(
        package_id=package_id, accepted=False, outcome=ShareOutcome.SUPERSEDED
    )

    assert decode_message(encode_message(response)) == response
    assert decode_message(encode_message(ShareCancel(package_id=package_id))) == (
        ShareCancel(package_id=package_id)
    )


@pytest.mark.parametrize("size", [0, 3, HEADER_SIZE - 1])
def test_short_header_is_truncated(size: int) -> None:
    payload = encode(make_venue(), _sender())

    with pytest.raises(TruncatedPayloadError):
        decode(payload[:size])


def test_short_body_is_truncated() -> None:
    payload = encode(make_venue(), _sender())

    with pytest.raises(TruncatedPayloadError):
        decode(payload[:-10])


def test_newer_schema_version_is_rejected() -> None:
    payload = bytearray(encode(make_venue(), _sender()))
    payload[4] = 2

    with pytest.raises(UnsupportedVersionError) as excinfo:
        decode(bytes(payload))

    assert excinfo.value.version == 2
    assert excinfo.value.expected == 1


def test_bad_magic_is_malformed() -> None:
    payload = b"JUNK" + encode(make_venue(), _sender())[4:]

    with pytest.raises(MalformedPayloadError):
        decode(payload)


def test_unknown_kind_is_malformed() -> None:
    payload = bytearray(encode(make_venue(), _sender()))
    payload[5] = 9

    with pytest.raises(MalformedPayloadError):
        decode(bytes(payload))


def test_corrupted_body_fails_checksum() -> None:
    payload = bytearray(encode(make_venue(), _sender()))
    payload[-2] ^= 0xFF

    with pytest.raises(MalformedPayloadError):
        decode(bytes(payload))


def test_trailing_bytes_are_malformed() -> None:
    payload = encode(make_venue(), _sender()) + b"\x00"

    with pytest.raises(MalformedPayloadError):
        decode(payload)


def test_invalid_json_body_is_malformed() -> None:
    body = b'{"package_id": "not-a-uuid"}'
    header = struct.pack(">4sBBII", MAGIC, 1, 1, len(body), zlib.crc32(body))

    with pytest.raises(MalformedPayloadError):
        decode(header + body)


def test_decode_refuses_non_request_messages() -> None:
    payload = encode_message(ShareCancel(package_id=uuid4()))

    with pytest.raises(MalformedPayloadError):
        decode(payload)


def test_garbage_raises_decode_error() -> None:
    with pytest.raises(DecodeError):
        decode_message(b"\x00" * 64)


def test_every_prefix_fails_cleanly() -> None:
    payload = encode_message(ShareCancel(package_id=uuid4()))

    for end in range(len(payload)):
        with pytest.raises(DecodeError):
            decode_message(payload[:end])
