"""
Routes for session management.

Provides REST endpoints for starting, listing, restarting and stopping
MCP client sessions and for calling their tools.
"""

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from mcp_runner.errors import (
    ConfigurationError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    NotFoundError,
    SessionError,
    ShutdownError,
    ToolInvocationError,
)
from mcp_runner.logger import get_logger
from mcp_runner.sessions.models import CallToolRequest, StartRequest

logger = get_logger(__name__)

_STATUS_BY_ERROR = [
    (ConfigurationError, 400),
    (NotFoundError, 404),
    (ConnectionTimeoutError, 504),
    (ConnectionFailedError, 502),
    (ToolInvocationError, 500),
    (ShutdownError, 500),
]


def status_for(error: SessionError) -> int:
    """HTTP status for a lifecycle error."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def _error_response(error: SessionError, summary: str | None = None) -> JSONResponse:
    body = error.to_dict()
    if summary and not isinstance(error, (NotFoundError, ConfigurationError)):
        body["error"] = summary
    return JSONResponse(body, status_code=status_for(error))


def _get_session_manager(request: Request):
    """Get SessionManager from app state."""
    return getattr(request.app.state, "session_manager", None)


def _not_initialized() -> JSONResponse:
    return JSONResponse({"error": "Session system not initialized"}, status_code=503)


async def _read_json(request: Request):
    try:
        return await request.json()
    except Exception:
        return None


async def start_sessions(request: Request) -> JSONResponse:
    """
    POST /start — Start MCP clients from a Claude Desktop style config.

    Body: {"mcpServers": {"<id>": {"command": "...", "args": [...], "env": {...}}}}
    """
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    body = await _read_json(request)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        start_req = StartRequest(**body)
    except PydanticValidationError as e:
        return JSONResponse(
            {"error": "Invalid request", "details": str(e)}, status_code=400
        )

    results = await manager.start_batch(start_req.mcpServers)

    if results.ok:
        return JSONResponse(
            {
                "message": "All MCP clients started successfully",
                "clients": [r.model_dump() for r in results.success],
            },
            status_code=201,
        )
    return JSONResponse(
        {
            "message": "Some MCP clients failed to start",
            "success": [r.model_dump() for r in results.success],
            "errors": [e.model_dump() for e in results.errors],
        },
        status_code=400,
    )


async def restart_session(request: Request) -> JSONResponse:
    """POST /restart/{session_id} — Restart a client with its original config."""
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    session_id = request.path_params["session_id"]
    try:
        result = await manager.restart_session(session_id)
    except SessionError as e:
        logger.error(f"Error restarting client {session_id}: {e}")
        return _error_response(e, "Failed to restart client")

    return JSONResponse({"message": result["message"], "client": result})


async def list_sessions(request: Request) -> JSONResponse:
    """GET /clients — List all clients with their tool names."""
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    return JSONResponse(await manager.list_all_sessions())


async def describe_session(request: Request) -> JSONResponse:
    """GET /clients/{session_id} — Describe a single client."""
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    try:
        info = await manager.list_session(request.path_params["session_id"])
    except SessionError as e:
        return _error_response(e)
    return JSONResponse(info)


async def list_session_tools(request: Request) -> JSONResponse:
    """GET /clients/{session_id}/tools — Full tool descriptors of a client."""
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    try:
        tools = await manager.list_tools(request.path_params["session_id"])
    except SessionError as e:
        return _error_response(e, "Failed to get tools")
    return JSONResponse(tools)


async def call_session_tool(request: Request) -> JSONResponse:
    """
    POST /clients/{session_id}/call_tools — Call a tool on a client.

    Body: {"name": "tool_name", "arguments": {...}}
    """
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    body = await _read_json(request)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

    try:
        call_req = CallToolRequest(**body)
    except PydanticValidationError as e:
        return JSONResponse(
            {"error": "Invalid request", "details": str(e)}, status_code=400
        )

    try:
        result = await manager.invoke_tool(
            request.path_params["session_id"], call_req.name, call_req.arguments
        )
    except SessionError as e:
        return _error_response(e)
    return JSONResponse(result)


async def stop_session(request: Request) -> JSONResponse:
    """DELETE /clients/{session_id} — Close a client and forget it."""
    manager = _get_session_manager(request)
    if not manager:
        return _not_initialized()

    try:
        result = await manager.stop_session(request.path_params["session_id"])
    except SessionError as e:
        return _error_response(e)
    return JSONResponse({"message": result["message"]})
