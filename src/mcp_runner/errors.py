"""
Error taxonomy for session lifecycle operations.

Every SessionManager operation either returns a value or raises exactly one
of these. The REST layer maps each class to a status code.
"""

from typing import Any


def describe_error(error: BaseException) -> str:
    """Message of an exception, or its class name when the message is empty."""
    return str(error) or type(error).__name__


class SessionError(Exception):
    """Base class for lifecycle failures."""

    summary = "Session operation failed"

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "error": self.summary,
            "details": self.message,
            "kind": self.kind,
        }
        if self.session_id is not None:
            data["id"] = self.session_id
        return data


class ConfigurationError(SessionError):
    """Missing or invalid session configuration. Caller fault, not retried."""

    summary = "Invalid configuration"


class ValidationError(ConfigurationError):
    """Invalid request input, such as an empty tool name."""

    summary = "Invalid request"


class NotFoundError(SessionError):
    """No session is registered under the requested id."""

    summary = "Client not found"

    def __init__(self, session_id: str):
        super().__init__(f"Client not found: {session_id}", session_id)


class _ConnectError(SessionError):
    def __init__(
        self,
        message: str,
        session_id: str,
        command: str,
        args: list[str],
        elapsed: float,
    ):
        super().__init__(message, session_id)
        self.command = command
        self.command_args = list(args)
        self.elapsed = elapsed

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "command": self.command,
                "args": self.command_args,
                "elapsed_ms": int(self.elapsed * 1000),
            }
        )
        return data


class ConnectionTimeoutError(_ConnectError):
    """Connect did not settle within the configured bound. Safe to retry."""

    summary = "Connection timeout"

    def __init__(
        self, session_id: str, command: str, args: list[str], elapsed: float
    ):
        message = (
            f"Connection timeout after {int(elapsed * 1000)}ms. "
            f"Client: {session_id}, Command: {' '.join([command, *args])}"
        )
        super().__init__(message, session_id, command, args, elapsed)


class ConnectionFailedError(_ConnectError):
    """The subprocess could not be spawned or failed the MCP handshake."""

    summary = "Failed to initialize"


class ToolInvocationError(SessionError):
    """The protocol client surfaced a failure while listing or calling tools."""

    summary = "Failed to call tool"


class ShutdownError(SessionError):
    """Closing a client failed. The registry entry is removed regardless."""

    summary = "Failed to delete client"
