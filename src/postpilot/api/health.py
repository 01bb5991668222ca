"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running
and dependencies (database, Redis) are reachable. Redis is optional:
without it only rate limiting is off, so it never makes the app unhealthy.
"""

from fastapi import APIRouter, Request

from postpilot import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    database = getattr(request.app.state, "database", None)
    try:
        await database.ping()
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e.__class__.__name__}"

    redis = getattr(request.app.state, "redis", None)
    if redis is None or not redis.is_open:
        checks["redis"] = "disabled"
    else:
        checks["redis"] = "ok" if await redis.ping() else "error"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks}
