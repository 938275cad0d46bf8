"""
Stdio-based protocol client built on the MCP Python SDK.

The SDK's stdio_client and ClientSession are anyio context managers whose
cancel scopes must be exited by the same task that entered them. Sessions
are opened by one HTTP request and closed by another, so each client runs
its contexts inside a dedicated owner task and talks to it through a
readiness future and a stop event.
"""

import asyncio
from datetime import timedelta
from typing import Any

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import Implementation

from mcp_runner.config import CONFIG
from mcp_runner.errors import describe_error
from mcp_runner.logger import get_logger
from mcp_runner.sessions.base import ProtocolClient

logger = get_logger(__name__)


def root_cause(error: BaseException) -> BaseException:
    """
    Unwrap the exception groups raised by anyio task groups.

    A group with a single member yields that member; a group with several
    becomes one ConnectionError listing every leaf.
    """
    while isinstance(error, BaseExceptionGroup) and len(error.exceptions) == 1:
        error = error.exceptions[0]
    if isinstance(error, BaseExceptionGroup):
        causes = [root_cause(leaf) for leaf in error.exceptions]
        return ConnectionError(
            "; ".join(f"{type(c).__name__}: {describe_error(c)}" for c in causes)
        )
    return error


class StdioProtocolClient(ProtocolClient):
    """
    A protocol client connected to a tool server over its stdin/stdout.

    Lifecycle:
        connect()  -> owner task spawns the process and runs initialize()
        list_tools() / call_tool() -> requests on the live ClientSession
        close()    -> owner task leaves its contexts, terminating the process
    """

    def __init__(
        self,
        session_id: str,
        params: StdioServerParameters,
        request_timeout: float | None = None,
    ):
        self.session_id = session_id
        self.params = params
        self.request_timeout = (
            request_timeout if request_timeout is not None else CONFIG.request_timeout
        )
        self._session: ClientSession | None = None
        self._ready: asyncio.Future | None = None
        self._stop = asyncio.Event()
        self._runner: asyncio.Task | None = None
        self._teardown_error: BaseException | None = None

    @property
    def connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        if self._runner is not None:
            raise RuntimeError(f"Client '{self.session_id}' already connected")

        self._ready = asyncio.get_running_loop().create_future()
        self._runner = asyncio.create_task(
            self._run(), name=f"mcp-session-{self.session_id}"
        )
        await asyncio.shield(self._ready)

    async def _run(self) -> None:
        client_info = Implementation(
            name=f"{CONFIG.CLIENT_NAME_PREFIX}-{self.session_id}",
            version=CONFIG.CLIENT_VERSION,
        )
        try:
            async with stdio_client(self.params) as (read_stream, write_stream):
                async with ClientSession(
                    read_stream,
                    write_stream,
                    read_timeout_seconds=timedelta(seconds=self.request_timeout),
                    client_info=client_info,
                ) as session:
                    await session.initialize()
                    self._session = session
                    if not self._ready.done():
                        self._ready.set_result(None)
                    await self._stop.wait()
        except Exception as e:
            error = root_cause(e)
            if not self._ready.done():
                self._ready.set_exception(error)
            else:
                logger.warning(f"Session '{self.session_id}' ended with error: {error}")
                self._teardown_error = error
        finally:
            self._session = None
            if not self._ready.done():
                self._ready.set_exception(
                    ConnectionError(f"Session '{self.session_id}' was cancelled")
                )

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise ConnectionError(f"Client '{self.session_id}' is not connected")
        return self._session

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self._require_session().list_tools()
        return [tool.model_dump(mode="json", exclude_none=True) for tool in result.tools]

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        result = await self._require_session().call_tool(name, arguments or {})
        return result.model_dump(mode="json", exclude_none=True)

    async def close(self) -> None:
        if self._runner is None:
            return

        self._stop.set()
        runner, self._runner = self._runner, None
        await runner

        if self._teardown_error is not None:
            error, self._teardown_error = self._teardown_error, None
            raise error
        logger.debug(f"Session '{self.session_id}' closed")


def create_stdio_client(
    session_id: str, params: StdioServerParameters
) -> StdioProtocolClient:
    """Default client factory used by the server."""
    return StdioProtocolClient(session_id, params)
