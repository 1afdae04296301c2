"""Tests for container wiring."""

import asyncio

import pytest

from venue_share.config import parse_pending_share_policy
from venue_share.containers import build_container, build_identity
from venue_share.services.share_manager import PendingSharePolicy


def test_build_container_creates_services(settings) -> None:
    container = build_container(settings)

    assert container.share_manager.identity.instance_name == "Receiver"
    assert container.share_manager.policy is PendingSharePolicy.REPLACE
    assert container.transport.local_port == 8765
    asyncio.run(container.close_resources())


def test_identity_advertises_schema_version(settings) -> None:
    identity = build_identity(settings)

    assert identity.service_type == "_flickvenue._tcp.local."
    assert identity.properties["version"] == "1"
    assert identity.properties["app_version"] == "1.0"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, PendingSharePolicy.REPLACE),
        ("", PendingSharePolicy.REPLACE),
        (" Queue ", PendingSharePolicy.QUEUE),
        ("reject", PendingSharePolicy.REJECT),
    ],
)
def test_parse_pending_share_policy(
    raw: str | None, expected: PendingSharePolicy
) -> None:
    assert parse_pending_share_policy(raw) is expected


def test_parse_pending_share_policy_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown pending share policy"):
        parse_pending_share_policy("drop")
