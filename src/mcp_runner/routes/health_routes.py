"""
Health check endpoints.
"""
import time
from datetime import datetime

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse

start_time = time.time()


async def root(request: Request) -> PlainTextResponse:
    """GET / — Banner pointing at the public health check."""
    return PlainTextResponse(
        "MCP Server is running. Use /public-health for health checks."
    )


async def public_health(request: Request) -> JSONResponse:
    """GET /public-health — Unauthenticated liveness probe."""
    return JSONResponse({"status": "ok"})


async def port_test(request: Request) -> PlainTextResponse:
    """GET /port-test — Plain response for port scanners."""
    return PlainTextResponse("Port is open and server is responding")


async def ping(request: Request) -> JSONResponse:
    """
    GET /ping — Authenticated health check.

    Also reports uptime and the number of active sessions.
    """
    manager = getattr(request.app.state, "session_manager", None)
    return JSONResponse(
        {
            "status": "ok",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": int(time.time() - start_time),
            "sessions": manager.session_count if manager else 0,
        }
    )
