"""roomrelay application.

This is the main entry point for the roomrelay service, a real-time
room-based presence and messaging relay. Clients join named rooms over a
WebSocket, exchange chat messages and see who else is present.

Modules:
    - rooms: room/session state, relay protocols and the WebSocket endpoint
    - config: YAML-backed settings

Besides the relay the app serves GET /health and, when the configured
static directory exists, the single-page frontend with a catch-all route.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from roomrelay.config import AppConfig, get_config
from roomrelay.rooms.router import router as rooms_router
from roomrelay.rooms.service import RelayService
from roomrelay.rooms.transport import WebSocketTransport

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

for _noisy in ("uvicorn.access", "websockets", "httpx", "httpcore"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log unhandled asyncio errors instead of letting them go unnoticed."""
    exc = context.get("exception")
    logger.error(
        "Unhandled error in event loop: %s", context.get("message", "unknown"),
        exc_info=exc,
    )


def _mount_frontend(app: FastAPI, static_dir: Path) -> None:
    """Serve the built frontend, falling back to index.html for client routes."""
    root = static_dir.resolve()
    index = root / "index.html"

    @app.get("/{full_path:path}", include_in_schema=False)
    async def frontend(full_path: str):
        candidate = (root / full_path).resolve()
        if full_path and candidate.is_file() and root in candidate.parents:
            return FileResponse(candidate)
        if index.is_file():
            return FileResponse(index)
        return JSONResponse({"error": "Not found"}, status_code=404)

    logger.info("Serving frontend from %s", root)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application and its relay service."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        logger.info(
            f"Server running on http://{config.server.host}:{config.server.port}"
        )

        yield  # Application runs here

        app.state.relay.shutdown()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="roomrelay API",
        description="Real-time room-based presence and messaging relay",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.relay = RelayService(
        WebSocketTransport(outbox_limit=config.server.outbox_limit),
        grace_period_seconds=config.rooms.grace_period_seconds,
        snapshot_limit=config.rooms.snapshot_message_limit,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)

    @app.get("/health")
    async def health(request: Request) -> dict:
        """Health check endpoint.

        Returns:
            dict: Status, server time and the number of rooms and connected users.
        """
        relay: RelayService = request.app.state.relay
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "rooms": relay.room_count(),
            "users": relay.connection_count(),
        }

    static_dir = Path(config.server.static_dir)
    if static_dir.is_dir():
        _mount_frontend(app, static_dir)
    else:
        logger.info("Static directory %s not found; frontend not served", static_dir)

    return app


app = create_app()
