"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from venue_share.api.share import router as share_router
from venue_share.api.venues import router as venues_router
from venue_share.app_logging import configure_logging
from venue_share.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.share_manager.start()
        except Exception:
            logger.exception("Failed to start venue sharing on the local network")
        yield
        await state_container.share_manager.stop()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(share_router)
    app.include_router(venues_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {
            "status": "ok",
            "device": container.settings.device_name,
            "share_state": container.share_manager.state.value,
        }

    return app
