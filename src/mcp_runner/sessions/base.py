"""
Base classes for the session system.

A session binds a caller-chosen id to a protocol client that talks to one
tool server subprocess. The manager only depends on the ProtocolClient
interface below, so any transport can be plugged in through a factory.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable

from mcp import StdioServerParameters
from mcp.client.stdio import get_default_environment

from mcp_runner.sessions.models import SessionConfig


class ProtocolClient(ABC):
    """
    Capability object bound to one tool server process.

    Implementations own the subprocess for their whole lifetime and apply
    whatever request timeouts they need internally.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Spawn the process and complete the protocol handshake."""
        pass

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        List tools exposed by the server.

        Returns:
            Tool descriptors, each with at least a "name" key.
        """
        pass

    @abstractmethod
    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Invoke a tool and return the server's result payload."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Shut the session down and release the process."""
        pass


ClientFactory = Callable[[str, StdioServerParameters], ProtocolClient]


def build_server_parameters(config: SessionConfig) -> StdioServerParameters:
    """
    Translate a SessionConfig into stdio transport parameters.

    An empty env is passed as None so the transport falls back to the
    platform default environment; an explicit empty mapping would leave the
    child with no environment at all. A non-empty env is layered over the
    platform defaults.
    """
    env = {**get_default_environment(), **config.env} if config.env else None
    return StdioServerParameters(
        command=config.command,
        args=list(config.args),
        env=env,
    )
