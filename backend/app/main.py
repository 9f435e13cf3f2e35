"""MindMate Backend Application.

This is the main entry point for the MindMate chat service: real-time
community chat for a wellness app, with paginated history, soft deletion,
direct messages delivered offline, and engagement badges.

Modules:
    - chat: WebSocket realtime gateway, history and delete endpoints
    - kv: Room cache / offline queue backends (in-memory or Redis)
    - users: Profiles with engagement counters
    - badges: Badge thresholds evaluated from profile counters
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.router import router as chat_router
from app.chat.service import get_chat_services, set_chat_services
from app.config import get_config
from app.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# redis logs connection churn; httpx/httpcore log every request made by
# the test client.
for _noisy in (
    "redis",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in mindmate.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    services = get_chat_services()
    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port} "
        f"(cache backend: {type(services.kv).__name__})"
    )

    yield  # Application runs here

    # Shutdown
    await services.close()
    set_chat_services(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="MindMate API",
    description="Backend service for MindMate - community chat and engagement",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(users_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
