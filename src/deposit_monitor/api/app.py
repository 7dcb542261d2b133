"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from deposit_monitor.config import Settings, get_settings
from deposit_monitor.services.dispatcher import DepositDispatcher


def create_app(
    dispatcher: DepositDispatcher,
    settings: Optional[Settings] = None,
    manage_lifecycle: bool = False,
) -> FastAPI:
    """Create and configure the control API.

    Args:
        dispatcher: Dispatcher the routes operate on
        settings: Settings (defaults to the cached instance)
        manage_lifecycle: Start monitoring on startup and close on shutdown
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            dispatcher.start()
        yield
        if manage_lifecycle:
            await dispatcher.close()

    app = FastAPI(
        title="Deposit Monitor API",
        description="Status and manual controls for the multi-chain deposit monitor",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.dispatcher = dispatcher
    app.state.settings = settings

    from deposit_monitor.api.routes import health, monitor

    app.include_router(health.router, tags=["Health"])
    app.include_router(monitor.router, prefix="/api", tags=["Monitor"])

    return app
