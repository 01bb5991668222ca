"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan owns the long-lived handles (database, Redis): they are
constructed, opened at startup, parked on app.state, and closed at
shutdown. Route dependencies read them from app.state, never from module
globals.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from postpilot import __version__
from postpilot.api import api_router
from postpilot.api.errors import register_exception_handlers
from postpilot.cache.redis_client import RedisClient
from postpilot.config import settings
from postpilot.db.engine import Database

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown.
    """
    logger.info(
        "postpilot.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    database = Database(settings.database_url, echo=settings.debug)
    await database.open()
    app.state.database = database

    redis = RedisClient(settings.redis_url)
    try:
        await redis.open()
        logger.info("postpilot.redis_connected")
    except (RedisError, OSError) as e:
        # Redis is optional — only rate limiting is lost without it
        logger.warning("postpilot.redis_unavailable", error=str(e))
    app.state.redis = redis

    yield

    logger.info("postpilot.shutdown")
    await redis.close()
    await database.close()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="PostPilot",
        description="Content-scheduling backend — session and credential core",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from postpilot.middleware.rate_limit import RateLimitMiddleware
    from postpilot.middleware.request_id import RequestIdMiddleware
    from postpilot.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"message": "API is running", "docs": "/docs", "health": "/api/v1/health"}

    return app


# Default app instance (used by uvicorn: postpilot.main:app)
app = create_app()
