"""
Session lifecycle manager.

Owns the session registry and every transition of a session id:
start (spawn, skip or replace), restart, stop and process shutdown.
Lifecycle calls for the same id are serialized with a per-id lock;
different ids proceed concurrently.
"""

import asyncio
import contextlib
import time
from collections import Counter
from typing import Any, AsyncIterator, Mapping

from mcp_runner.config import CONFIG
from mcp_runner.errors import (
    ConfigurationError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    NotFoundError,
    SessionError,
    ShutdownError,
    ToolInvocationError,
    ValidationError,
    describe_error,
)
from mcp_runner.logger import get_logger
from mcp_runner.sessions.base import ClientFactory, ProtocolClient, build_server_parameters
from mcp_runner.sessions.models import (
    BatchStartResult,
    SessionConfig,
    SessionInfo,
    StartError,
    StartResult,
)
from mcp_runner.sessions.registry import SessionEntry, SessionRegistry

logger = get_logger(__name__)

STARTED_MESSAGE = "MCP client started successfully"
UNCHANGED_MESSAGE = "MCP client already running with identical configuration"

_SECRET_MARKERS = ("key", "token")


def _redact_env(env: Mapping[str, str]) -> dict[str, str]:
    return {
        key: "[REDACTED]" if any(m in key.lower() for m in _SECRET_MARKERS) else value
        for key, value in env.items()
    }


class SessionManager:
    """
    Central coordinator for all tool server sessions.

    Args:
        client_factory: Builds a ProtocolClient for (session_id, parameters).
        registry: Registry to manage; a fresh one is created when omitted.
        connect_timeout: Upper bound in seconds for a single connect.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        registry: SessionRegistry | None = None,
        connect_timeout: float | None = None,
    ):
        self.client_factory = client_factory
        self.registry = registry if registry is not None else SessionRegistry()
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else CONFIG.connect_timeout
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()
        self._abandoned: set[asyncio.Task] = set()

    # ─── Start ───────────────────────────────────────────────────────

    async def start_session(self, session_id: str, config: Any) -> dict[str, str]:
        """
        Start a session, reuse an identical one, or replace a changed one.

        Returns:
            {"id": ..., "message": ...}

        Raises:
            ConfigurationError, ConnectionTimeoutError, ConnectionFailedError
        """
        session_config = self._validate(session_id, config)

        async with self._session_lock(session_id):
            existing = self.registry.get(session_id)
            if existing is not None:
                if existing.config.matches(session_config):
                    logger.debug(f"Client {session_id} unchanged, skipping start")
                    return {"id": session_id, "message": UNCHANGED_MESSAGE}

                logger.info(f"Restarting client with new config: {session_id}")
                await self._close_quietly(existing)
                self.registry.remove(session_id)

            return await self._spawn(session_id, session_config)

    async def start_batch(self, configs: Mapping[str, Any]) -> BatchStartResult:
        """
        Start every configured session concurrently.

        One id's failure never affects another id; failures are collected
        in the result rather than raised.
        """
        result = BatchStartResult()

        async def _start_one(session_id: str, config: Any) -> None:
            try:
                started = await self.start_session(session_id, config)
                result.success.append(StartResult(**started))
            except SessionError as e:
                logger.error(f"Failed to initialize client {session_id}: {e}")
                result.errors.append(
                    StartError(
                        id=session_id,
                        error=f"Failed to initialize: {e.message}",
                        kind=e.kind,
                    )
                )
            except Exception as e:
                logger.exception(f"Unexpected error initializing client {session_id}")
                result.errors.append(
                    StartError(
                        id=session_id,
                        error=f"Failed to initialize: {describe_error(e)}",
                        kind=type(e).__name__,
                    )
                )

        await asyncio.gather(
            *(_start_one(sid, cfg) for sid, cfg in configs.items())
        )
        return result

    def _validate(self, session_id: str, config: Any) -> SessionConfig:
        session_config = SessionConfig.parse(config, session_id)
        if not session_config.command.strip():
            raise ConfigurationError("Command is required", session_id)
        return session_config

    async def _spawn(self, session_id: str, config: SessionConfig) -> dict[str, str]:
        """Create, connect and register a client. Caller holds the id lock."""
        start_time = time.monotonic()
        logger.info(f"Starting MCP client: {session_id}")
        logger.info(f"Command: {config.command}")
        logger.info(f"Args: {config.args}")
        if config.env:
            logger.info(f"Environment: {_redact_env(config.env)}")

        try:
            params = build_server_parameters(config)
            client = self.client_factory(session_id, params)
        except Exception as e:
            raise ConnectionFailedError(
                f"Failed to create client: {describe_error(e)}",
                session_id,
                config.command,
                config.args,
                time.monotonic() - start_time,
            ) from e

        await self._connect_with_timeout(session_id, client, config, start_time)

        entry = SessionEntry(id=session_id, client=client, config=config)
        self.registry.put(session_id, entry)

        elapsed_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Client {session_id} fully initialized in {elapsed_ms}ms")
        return {"id": session_id, "message": STARTED_MESSAGE}

    async def _connect_with_timeout(
        self,
        session_id: str,
        client: ProtocolClient,
        config: SessionConfig,
        start_time: float,
    ) -> None:
        connect_task = asyncio.ensure_future(client.connect())
        try:
            done, _ = await asyncio.wait({connect_task}, timeout=self.connect_timeout)
        except asyncio.CancelledError:
            self._abandon(session_id, client, connect_task)
            raise

        elapsed = time.monotonic() - start_time
        if not done:
            logger.error(
                f"Connection to {session_id} timed out after {int(elapsed * 1000)}ms"
            )
            self._abandon(session_id, client, connect_task)
            raise ConnectionTimeoutError(
                session_id, config.command, config.args, elapsed
            )

        if connect_task.cancelled():
            raise ConnectionFailedError(
                "Connect was cancelled",
                session_id,
                config.command,
                config.args,
                elapsed,
            )

        error = connect_task.exception()
        if error is not None:
            logger.error(
                f"Connection failed after {int(elapsed * 1000)}ms. "
                f"Client: {session_id}, Command: {' '.join([config.command, *config.args])}, "
                f"Error: {describe_error(error)}"
            )
            raise ConnectionFailedError(
                f"Failed to connect: {describe_error(error)}",
                session_id,
                config.command,
                config.args,
                elapsed,
            ) from error

        logger.info(f"Client {session_id} connected in {int(elapsed * 1000)}ms")

    def _abandon(
        self, session_id: str, client: ProtocolClient, connect_task: asyncio.Future
    ) -> None:
        """
        Stop waiting on a connect without killing it.

        If the connect later succeeds, the orphaned client is closed so its
        process does not outlive the failed start.
        """

        def _reap(task: asyncio.Future) -> None:
            if task.cancelled() or task.exception() is not None:
                return
            logger.warning(f"Closing late connection for abandoned client {session_id}")
            closer = asyncio.ensure_future(self._close_client_quietly(session_id, client))
            self._abandoned.add(closer)
            closer.add_done_callback(self._abandoned.discard)

        self._abandoned.add(connect_task)
        connect_task.add_done_callback(self._abandoned.discard)
        connect_task.add_done_callback(_reap)

    # ─── Restart / Stop ──────────────────────────────────────────────

    async def restart_session(self, session_id: str) -> dict[str, str]:
        """
        Tear down a session and start it again with its stored config.

        Raises:
            NotFoundError, ConnectionTimeoutError, ConnectionFailedError
        """
        async with self._session_lock(session_id):
            entry = self._require(session_id)
            await self._close_quietly(entry)
            self.registry.remove(session_id)
            await self._spawn(session_id, entry.config)

        return {"id": session_id, "message": f"Client {session_id} restarted successfully"}

    async def stop_session(self, session_id: str) -> dict[str, str]:
        """
        Close a session and remove it from the registry.

        The entry is removed even when close fails.

        Raises:
            NotFoundError, ShutdownError
        """
        async with self._session_lock(session_id):
            entry = self._require(session_id)
            try:
                await entry.client.close()
            except Exception as e:
                logger.error(f"Error deleting client {session_id}: {e}")
                raise ShutdownError(
                    f"Failed to close client {session_id}: {describe_error(e)}",
                    session_id,
                ) from e
            finally:
                self.registry.remove(session_id)

        logger.info(f"Stopped client {session_id}")
        return {"id": session_id, "message": "Client deleted successfully"}

    async def shutdown(self) -> int:
        """
        Close every registered session, isolating failures.

        Returns:
            Number of sessions that closed cleanly.
        """
        entries = self.registry.values()
        if not entries:
            return 0

        logger.info(f"Shutting down {len(entries)} MCP clients...")
        results = await asyncio.gather(
            *(entry.client.close() for entry in entries), return_exceptions=True
        )

        closed = 0
        for entry, outcome in zip(entries, results):
            self.registry.remove(entry.id)
            if isinstance(outcome, BaseException):
                logger.error(f"Error closing client {entry.id}: {outcome}")
            else:
                closed += 1
                logger.info(f"Closed client {entry.id}")
        return closed

    # ─── Queries / Tools ─────────────────────────────────────────────

    async def list_session(self, session_id: str) -> dict[str, Any]:
        """Describe one session, including a best-effort tool listing."""
        return await self._describe(self._require(session_id))

    async def list_all_sessions(self) -> list[dict[str, Any]]:
        """Describe every session; per-entry tool failures are reported inline."""
        return list(
            await asyncio.gather(
                *(self._describe(entry) for entry in self.registry.values())
            )
        )

    async def _describe(self, entry: SessionEntry) -> dict[str, Any]:
        info = entry.to_dict()
        try:
            tools = await entry.client.list_tools()
            info["tools"] = [tool["name"] for tool in tools]
        except Exception as e:
            logger.error(f"Error getting tools for client {entry.id}: {e}")
            info["tools"] = []
            info["toolError"] = describe_error(e)
        return SessionInfo(**info).model_dump(exclude_none=True)

    async def list_tools(self, session_id: str) -> list[dict[str, Any]]:
        """
        Full tool descriptors for a session.

        Raises:
            NotFoundError, ToolInvocationError
        """
        entry = self._require(session_id)
        try:
            return await entry.client.list_tools()
        except Exception as e:
            logger.error(f"Error getting tools for client {session_id}: {e}")
            raise ToolInvocationError(
                f"Failed to get tools: {describe_error(e)}", session_id
            ) from e

    async def invoke_tool(
        self,
        session_id: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Call a tool on a session and return its result verbatim.

        Raises:
            ValidationError, NotFoundError, ToolInvocationError
        """
        if not tool_name:
            raise ValidationError("Tool name is required", session_id)

        entry = self._require(session_id)
        logger.info(f"Invoking tool '{tool_name}' on client {session_id}")
        try:
            return await entry.client.call_tool(tool_name, arguments or {})
        except Exception as e:
            logger.error(f"Error calling tool for client {session_id}: {e}")
            raise ToolInvocationError(describe_error(e), session_id) from e

    # ─── Helpers ─────────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        """
        Serialize lifecycle calls for one id.

        A lock only exists while some call holds or awaits it, so unknown
        or stopped ids leave nothing behind.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] <= 0:
                del self._lock_users[session_id]
                self._locks.pop(session_id, None)

    def _require(self, session_id: str) -> SessionEntry:
        entry = self.registry.get(session_id)
        if entry is None:
            raise NotFoundError(session_id)
        return entry

    async def _close_quietly(self, entry: SessionEntry) -> None:
        await self._close_client_quietly(entry.id, entry.client)

    async def _close_client_quietly(
        self, session_id: str, client: ProtocolClient
    ) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Ignoring close error for client {session_id}: {e}")

    @property
    def session_count(self) -> int:
        return len(self.registry)
