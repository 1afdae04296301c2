"""ASGI entrypoint for the venue share service."""

from venue_share.api.app import create_app
from venue_share.containers import build_container

app = create_app(build_container())
