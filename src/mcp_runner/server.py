"""
Starlette-based web server for the MCP runner.

This server provides a REST API with the following endpoints:
- /start: Start (or reconfigure) MCP clients from a Claude Desktop config
- /restart/{id}: Restart a client with its original configuration
- /clients: List clients and describe, stop, or call tools on one of them
- /ping, /public-health, /port-test: Health checks
- /files: Files written by tools (for example images), served from STATIC_DIR

Every route except the public health checks and /files requires the bearer
token.
"""

import asyncio
import contextlib
import os
import sys

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from mcp_runner.config import CONFIG, Config
from mcp_runner.logger import get_logger, setup_logging
from mcp_runner.middleware import BearerAuthMiddleware, RequestLoggingMiddleware
from mcp_runner.routes.health_routes import ping, port_test, public_health, root
from mcp_runner.routes.session_routes import (
    call_session_tool,
    describe_session,
    list_session_tools,
    list_sessions,
    restart_session,
    start_sessions,
    stop_session,
)
from mcp_runner.sessions.manager import SessionManager
from mcp_runner.sessions.stdio_client import create_stdio_client

logger = get_logger(__name__)


async def _keep_alive(interval: float) -> None:
    """Periodic log line so idle platforms do not consider the process hung."""
    while True:
        await asyncio.sleep(interval)
        logger.debug("Keep-alive ping")


def create_app(
    auth_token: str,
    session_manager: SessionManager | None = None,
    config: Config = CONFIG,
) -> Starlette:
    """
    Build the ASGI application.

    Args:
        auth_token: Bearer token required on protected routes.
        session_manager: Manager to expose; a stdio-backed one is created
            when omitted.
        config: Runtime settings.
    """
    if session_manager is None:
        session_manager = SessionManager(
            client_factory=create_stdio_client,
            connect_timeout=config.connect_timeout,
        )

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - session system ready")
        keep_alive = asyncio.create_task(_keep_alive(config.keepalive_interval))
        try:
            yield
        finally:
            logger.info("Application shutdown - closing MCP clients")
            keep_alive.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await keep_alive
            closed = await session_manager.shutdown()
            logger.info(f"Session system shut down ({closed} clients closed)")

    app = Starlette(
        debug=config.log_level.upper() == "DEBUG",
        routes=[
            Route("/", root, methods=["GET"]),
            Route("/public-health", public_health, methods=["GET"]),
            Route("/port-test", port_test, methods=["GET"]),
            Route("/ping", ping, methods=["GET"]),
            Route("/start", start_sessions, methods=["POST"]),
            Route("/restart/{session_id}", restart_session, methods=["POST"]),
            Route("/clients", list_sessions, methods=["GET"]),
            Route("/clients/{session_id}", describe_session, methods=["GET"]),
            Route("/clients/{session_id}", stop_session, methods=["DELETE"]),
            Route("/clients/{session_id}/tools", list_session_tools, methods=["GET"]),
            Route(
                "/clients/{session_id}/call_tools",
                call_session_tool,
                methods=["POST"],
            ),
            Mount(
                "/files",
                app=StaticFiles(directory=config.static_dir, check_dir=False),
                name="files",
            ),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                allow_headers=["Content-Type", "Authorization", "X-API-Key"],
            ),
            Middleware(RequestLoggingMiddleware),
            Middleware(BearerAuthMiddleware, auth_token=auth_token),
        ],
        lifespan=lifespan,
    )
    app.state.session_manager = session_manager
    return app


def run_server(auth_token: str, port: int, config: Config = CONFIG) -> None:
    """Serve the application with uvicorn until interrupted."""
    import uvicorn

    app = create_app(auth_token, config=config)

    ssl_options = {}
    if config.use_https:
        ssl_options = {"ssl_certfile": config.certfile, "ssl_keyfile": config.keyfile}

    logger.info(f"Attempting to bind to {config.host}:{port} ({config.protocol.upper()})...")
    uvicorn_config = uvicorn.Config(
        app,
        host=config.host,
        port=port,
        log_level=config.log_level.lower(),
        proxy_headers=True,
        forwarded_allow_ips="*",
        **ssl_options,
    )
    uvicorn.Server(uvicorn_config).run()


if __name__ == "__main__":
    from mcp_runner.ports import find_available_port

    if "--debug" in sys.argv:
        os.environ["LOG_LEVEL"] = "DEBUG"
        CONFIG.reload()

    setup_logging(level=CONFIG.log_level, log_file=CONFIG.log_file)

    token = CONFIG.auth_token
    if not token:
        logger.critical("MCP_AUTH_TOKEN is required")
        sys.exit(1)

    port = find_available_port(CONFIG)
    if not port:
        logger.critical(
            "No available ports found. Please specify a port by using the PORT "
            "environment variable."
        )
        sys.exit(1)

    run_server(token, port)
