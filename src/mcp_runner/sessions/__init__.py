"""
Session system for the MCP runner.

A session binds a caller-chosen id to a tool server subprocess driven by a
protocol client. SessionManager owns the registry and every lifecycle
transition; the REST routes only translate HTTP calls into manager calls.
"""

from mcp_runner.sessions.base import (
    ClientFactory,
    ProtocolClient,
    build_server_parameters,
)
from mcp_runner.sessions.manager import SessionManager
from mcp_runner.sessions.models import (
    BatchStartResult,
    CallToolRequest,
    SessionConfig,
    SessionInfo,
    StartRequest,
)
from mcp_runner.sessions.registry import SessionEntry, SessionRegistry

__all__ = [
    "ClientFactory",
    "ProtocolClient",
    "build_server_parameters",
    "SessionManager",
    "BatchStartResult",
    "CallToolRequest",
    "SessionConfig",
    "SessionInfo",
    "StartRequest",
    "SessionEntry",
    "SessionRegistry",
]
