"""
Tests for the SessionManager lifecycle.
"""

import asyncio
import time

import pytest
from mcp.client.stdio import get_default_environment

from mcp_runner.errors import (
    ConfigurationError,
    ConnectionFailedError,
    ConnectionTimeoutError,
    NotFoundError,
    ShutdownError,
    ToolInvocationError,
    ValidationError,
)
from mcp_runner.sessions.manager import STARTED_MESSAGE, UNCHANGED_MESSAGE, SessionManager


class TestStartSession:
    @pytest.mark.asyncio
    async def test_start_registers_session(self, manager, factory, echo_config):
        result = await manager.start_session("echo", echo_config)

        assert result == {"id": "echo", "message": STARTED_MESSAGE}
        assert "echo" in manager.registry
        assert manager.session_count == 1
        assert len(factory.created) == 1
        assert factory.created[0].connect_calls == 1

    @pytest.mark.asyncio
    async def test_identical_config_is_noop(self, manager, factory, echo_config):
        await manager.start_session("echo", echo_config)
        first_entry = manager.registry.get("echo")

        result = await manager.start_session("echo", dict(echo_config))

        assert result["message"] == UNCHANGED_MESSAGE
        assert len(factory.created) == 1
        assert factory.created[0].close_calls == 0
        assert manager.registry.get("echo") is first_entry

    @pytest.mark.asyncio
    async def test_env_key_order_does_not_count_as_change(self, manager, factory):
        await manager.start_session(
            "svc", {"command": "node", "args": ["s.js"], "env": {"A": "1", "B": "2"}}
        )
        result = await manager.start_session(
            "svc", {"command": "node", "args": ["s.js"], "env": {"B": "2", "A": "1"}}
        )

        assert result["message"] == UNCHANGED_MESSAGE
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_args_order_counts_as_change(self, manager, factory):
        await manager.start_session("svc", {"command": "node", "args": ["a", "b"]})
        result = await manager.start_session("svc", {"command": "node", "args": ["b", "a"]})

        assert result["message"] == STARTED_MESSAGE
        assert len(factory.created) == 2

    @pytest.mark.asyncio
    async def test_changed_config_replaces_client(self, manager, factory):
        await manager.start_session("svc", {"command": "node", "args": ["v1.js"]})
        await manager.start_session("svc", {"command": "node", "args": ["v2.js"]})

        old, new = factory.clients_for("svc")
        assert old.close_calls == 1
        assert new.close_calls == 0
        entry = manager.registry.get("svc")
        assert entry.client is new
        assert entry.args == ["v2.js"]

    @pytest.mark.asyncio
    async def test_replace_proceeds_when_old_close_fails(self, manager, factory):
        factory.behaviors["svc"] = {"close_error": RuntimeError("already dead")}
        await manager.start_session("svc", {"command": "node", "args": ["v1.js"]})

        factory.behaviors["svc"] = {}
        result = await manager.start_session("svc", {"command": "node", "args": ["v2.js"]})

        assert result["message"] == STARTED_MESSAGE
        assert manager.registry.get("svc").client is factory.created[-1]

    @pytest.mark.asyncio
    async def test_failed_replacement_leaves_id_absent(self, manager, factory):
        await manager.start_session("svc", {"command": "node", "args": ["v1.js"]})
        factory.behaviors["svc"] = {"connect_error": OSError("spawn ENOENT")}

        with pytest.raises(ConnectionFailedError):
            await manager.start_session("svc", {"command": "node", "args": ["v2.js"]})

        assert "svc" not in manager.registry
        assert factory.created[0].close_calls == 1

    @pytest.mark.asyncio
    async def test_empty_command_is_configuration_error(self, manager, factory):
        with pytest.raises(ConfigurationError) as exc_info:
            await manager.start_session("bad", {"command": "", "args": []})

        assert exc_info.value.session_id == "bad"
        assert factory.created == []
        assert len(manager.registry) == 0

    @pytest.mark.asyncio
    async def test_non_mapping_config_is_configuration_error(self, manager):
        with pytest.raises(ConfigurationError):
            await manager.start_session("bad", "node server.js")

    @pytest.mark.asyncio
    async def test_invalid_config_does_not_touch_running_session(
        self, manager, factory, echo_config
    ):
        await manager.start_session("echo", echo_config)

        with pytest.raises(ConfigurationError):
            await manager.start_session("echo", {"command": "   "})

        assert factory.created[0].close_calls == 0
        assert manager.registry.get("echo").client is factory.created[0]

    @pytest.mark.asyncio
    async def test_connect_failure_is_wrapped(self, manager, factory):
        factory.behaviors["svc"] = {"connect_error": OSError("spawn ENOENT")}

        with pytest.raises(ConnectionFailedError) as exc_info:
            await manager.start_session("svc", {"command": "missing-binary"})

        assert "spawn ENOENT" in exc_info.value.message
        assert exc_info.value.command == "missing-binary"
        assert "svc" not in manager.registry

    @pytest.mark.asyncio
    async def test_factory_failure_is_wrapped(self, registry):
        def broken_factory(session_id, params):
            raise ValueError("no transport")

        manager = SessionManager(client_factory=broken_factory, registry=registry)

        with pytest.raises(ConnectionFailedError) as exc_info:
            await manager.start_session("svc", {"command": "node"})

        assert "no transport" in exc_info.value.message
        assert len(registry) == 0


class TestConnectTimeout:
    @pytest.mark.asyncio
    async def test_hanging_connect_times_out(self, factory, registry):
        manager = SessionManager(client_factory=factory, registry=registry, connect_timeout=0.05)
        factory.behaviors["slow"] = {"hang": True}

        started = time.monotonic()
        with pytest.raises(ConnectionTimeoutError) as exc_info:
            await manager.start_session("slow", {"command": "node", "args": ["slow.js"]})
        elapsed = time.monotonic() - started

        error = exc_info.value
        assert elapsed >= 0.045
        assert elapsed < 2
        assert error.elapsed >= 0.045
        assert error.session_id == "slow"
        assert error.command_args == ["slow.js"]
        assert "Connection timeout after" in error.message
        assert "node slow.js" in error.message
        assert "slow" not in registry

    @pytest.mark.asyncio
    async def test_late_connect_is_closed(self, factory, registry):
        manager = SessionManager(client_factory=factory, registry=registry, connect_timeout=0.05)
        factory.behaviors["late"] = {"connect_delay": 0.2}

        with pytest.raises(ConnectionTimeoutError):
            await manager.start_session("late", {"command": "node"})

        await asyncio.sleep(0.4)

        client = factory.created[0]
        assert client.connect_calls == 1
        assert client.close_calls == 1
        assert "late" not in registry

    @pytest.mark.asyncio
    async def test_late_connect_failure_is_not_closed(self, factory, registry):
        manager = SessionManager(client_factory=factory, registry=registry, connect_timeout=0.05)
        factory.behaviors["late"] = {
            "connect_delay": 0.1,
            "connect_error": OSError("handshake failed"),
        }

        with pytest.raises(ConnectionTimeoutError):
            await manager.start_session("late", {"command": "node"})

        await asyncio.sleep(0.3)
        assert factory.created[0].close_calls == 0

    @pytest.mark.asyncio
    async def test_timeout_in_batch_does_not_block_others(self, factory, registry):
        manager = SessionManager(client_factory=factory, registry=registry, connect_timeout=0.05)
        factory.behaviors["slow"] = {"hang": True}

        result = await manager.start_batch(
            {"slow": {"command": "node"}, "fast": {"command": "node"}}
        )

        assert [s.id for s in result.success] == ["fast"]
        assert [e.id for e in result.errors] == ["slow"]
        assert result.errors[0].kind == "ConnectionTimeoutError"


class TestStartBatch:
    @pytest.mark.asyncio
    async def test_all_succeed(self, manager):
        result = await manager.start_batch(
            {
                "a": {"command": "node", "args": ["a.js"]},
                "b": {"command": "node", "args": ["b.js"]},
            }
        )

        assert result.ok
        assert sorted(s.id for s in result.success) == ["a", "b"]
        assert sorted(e.id for e in manager.registry.values()) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, manager):
        result = await manager.start_batch(
            {
                "a": {"command": "node"},
                "broken": {"command": ""},
                "c": {"command": "python"},
            }
        )

        assert not result.ok
        assert sorted(s.id for s in result.success) == ["a", "c"]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.id == "broken"
        assert error.kind == "ConfigurationError"
        assert error.error.startswith("Failed to initialize: ")
        assert sorted(e.id for e in manager.registry.values()) == ["a", "c"]

    @pytest.mark.asyncio
    async def test_connect_failure_collected(self, manager, factory):
        factory.behaviors["b"] = {"connect_error": OSError("boom")}

        result = await manager.start_batch({"a": {"command": "node"}, "b": {"command": "node"}})

        assert [e.id for e in result.errors] == ["b"]
        assert result.errors[0].kind == "ConnectionFailedError"
        assert "boom" in result.errors[0].error

    @pytest.mark.asyncio
    async def test_unchanged_session_reported_as_success(self, manager):
        await manager.start_session("a", {"command": "node"})

        result = await manager.start_batch({"a": {"command": "node"}})

        assert result.ok
        assert result.success[0].message == UNCHANGED_MESSAGE

    @pytest.mark.asyncio
    async def test_empty_batch(self, manager):
        result = await manager.start_batch({})

        assert result.ok
        assert result.success == []


class TestRestartAndStop:
    @pytest.mark.asyncio
    async def test_restart_reuses_stored_config(self, manager, factory):
        config = {"command": "node", "args": ["s.js"], "env": {"A": "1"}}
        await manager.start_session("svc", config)

        result = await manager.restart_session("svc")

        assert result["message"] == "Client svc restarted successfully"
        old, new = factory.clients_for("svc")
        assert old.close_calls == 1
        assert new.connect_calls == 1
        assert new.params.args == ["s.js"]
        assert new.params.env["A"] == "1"
        assert manager.registry.get("svc").client is new

    @pytest.mark.asyncio
    async def test_restart_ignores_close_failure(self, manager, factory):
        factory.behaviors["svc"] = {"close_error": RuntimeError("broken pipe")}
        await manager.start_session("svc", {"command": "node"})
        factory.behaviors["svc"] = {}

        await manager.restart_session("svc")

        assert manager.registry.get("svc").client is factory.created[-1]

    @pytest.mark.asyncio
    async def test_restart_failure_leaves_id_absent(self, manager, factory):
        await manager.start_session("svc", {"command": "node"})
        factory.behaviors["svc"] = {"connect_error": OSError("crashed")}

        with pytest.raises(ConnectionFailedError):
            await manager.restart_session("svc")

        assert "svc" not in manager.registry

    @pytest.mark.asyncio
    async def test_stop_closes_and_removes(self, manager, factory):
        await manager.start_session("svc", {"command": "node"})

        result = await manager.stop_session("svc")

        assert result["message"] == "Client deleted successfully"
        assert factory.created[0].close_calls == 1
        assert "svc" not in manager.registry

    @pytest.mark.asyncio
    async def test_stop_removes_entry_even_when_close_fails(self, manager, factory):
        factory.behaviors["svc"] = {"close_error": RuntimeError("broken pipe")}
        await manager.start_session("svc", {"command": "node"})

        with pytest.raises(ShutdownError) as exc_info:
            await manager.stop_session("svc")

        assert "broken pipe" in exc_info.value.message
        assert manager.registry.get("svc") is None

    @pytest.mark.asyncio
    async def test_unknown_id_raises_not_found(self, manager):
        await manager.start_session("known", {"command": "node"})

        with pytest.raises(NotFoundError):
            await manager.restart_session("ghost")
        with pytest.raises(NotFoundError):
            await manager.stop_session("ghost")
        with pytest.raises(NotFoundError):
            await manager.invoke_tool("ghost", "echo", {})
        with pytest.raises(NotFoundError):
            await manager.list_session("ghost")
        with pytest.raises(NotFoundError):
            await manager.list_tools("ghost")

        assert [e.id for e in manager.registry.values()] == ["known"]


class TestTools:
    @pytest.mark.asyncio
    async def test_invoke_returns_result_verbatim(self, manager, factory):
        payload = {"content": [{"type": "text", "text": "3"}], "isError": False, "extra": 1}
        factory.behaviors["calc"] = {"call_result": payload}
        await manager.start_session("calc", {"command": "node"})

        result = await manager.invoke_tool("calc", "add", {"a": 1, "b": 2})

        assert result == payload
        assert factory.created[0].calls == [("add", {"a": 1, "b": 2})]

    @pytest.mark.asyncio
    async def test_invoke_defaults_arguments(self, manager, factory):
        await manager.start_session("calc", {"command": "node"})

        await manager.invoke_tool("calc", "ping")

        assert factory.created[0].calls == [("ping", {})]

    @pytest.mark.asyncio
    async def test_invoke_without_tool_name(self, manager, factory):
        await manager.start_session("calc", {"command": "node"})

        with pytest.raises(ValidationError):
            await manager.invoke_tool("calc", "", {})

        assert factory.created[0].calls == []

    @pytest.mark.asyncio
    async def test_invoke_error_is_wrapped(self, manager, factory):
        factory.behaviors["calc"] = {"call_error": RuntimeError("Unknown tool: nope")}
        await manager.start_session("calc", {"command": "node"})

        with pytest.raises(ToolInvocationError) as exc_info:
            await manager.invoke_tool("calc", "nope", {})

        assert exc_info.value.message == "Unknown tool: nope"
        assert "calc" in manager.registry

    @pytest.mark.asyncio
    async def test_list_tools_returns_descriptors(self, manager, factory):
        tools = [{"name": "echo", "description": "Echo text", "inputSchema": {}}]
        factory.behaviors["svc"] = {"tools": tools}
        await manager.start_session("svc", {"command": "node"})

        assert await manager.list_tools("svc") == tools

    @pytest.mark.asyncio
    async def test_list_tools_error_is_wrapped(self, manager, factory):
        factory.behaviors["svc"] = {"list_error": RuntimeError("pipe closed")}
        await manager.start_session("svc", {"command": "node"})

        with pytest.raises(ToolInvocationError) as exc_info:
            await manager.list_tools("svc")

        assert "pipe closed" in exc_info.value.message


class TestListing:
    @pytest.mark.asyncio
    async def test_list_session_includes_tool_names(self, manager):
        await manager.start_session("svc", {"command": "node", "args": ["s.js"]})

        info = await manager.list_session("svc")

        assert info["id"] == "svc"
        assert info["command"] == "node"
        assert info["args"] == ["s.js"]
        assert info["tools"] == ["echo", "add"]
        assert "toolError" not in info
        assert info["createdAt"]

    @pytest.mark.asyncio
    async def test_list_all_reports_tool_errors_inline(self, manager, factory):
        factory.behaviors["bad"] = {"list_error": RuntimeError("server crashed")}
        await manager.start_batch({"good": {"command": "node"}, "bad": {"command": "node"}})

        infos = {info["id"]: info for info in await manager.list_all_sessions()}

        assert infos["good"]["tools"] == ["echo", "add"]
        assert infos["bad"]["tools"] == []
        assert infos["bad"]["toolError"] == "server crashed"

    @pytest.mark.asyncio
    async def test_list_all_empty(self, manager):
        assert await manager.list_all_sessions() == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_closes_everything(self, manager, factory):
        await manager.start_batch({"a": {"command": "node"}, "b": {"command": "node"}})

        closed = await manager.shutdown()

        assert closed == 2
        assert all(c.close_calls == 1 for c in factory.created)
        assert len(manager.registry) == 0

    @pytest.mark.asyncio
    async def test_shutdown_isolates_close_failures(self, manager, factory):
        factory.behaviors["a"] = {"close_error": RuntimeError("stuck")}
        await manager.start_batch({"a": {"command": "node"}, "b": {"command": "node"}})

        closed = await manager.shutdown()

        assert closed == 1
        assert all(c.close_calls == 1 for c in factory.created)
        assert len(manager.registry) == 0

    @pytest.mark.asyncio
    async def test_shutdown_with_no_sessions(self, manager):
        assert await manager.shutdown() == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_identical_starts_spawn_once(self, manager, factory):
        factory.behaviors["svc"] = {"connect_delay": 0.05}
        config = {"command": "node", "args": ["s.js"]}

        results = await asyncio.gather(
            manager.start_session("svc", config),
            manager.start_session("svc", config),
        )

        assert len(factory.created) == 1
        assert sorted(r["message"] for r in results) == sorted(
            [STARTED_MESSAGE, UNCHANGED_MESSAGE]
        )

    @pytest.mark.asyncio
    async def test_restart_and_stop_are_serialized(self, manager, factory):
        await manager.start_session("svc", {"command": "node"})
        factory.behaviors["svc"] = {"connect_delay": 0.05}

        await asyncio.gather(
            manager.restart_session("svc"),
            manager.stop_session("svc"),
        )

        assert "svc" not in manager.registry
        assert len(factory.created) == 2
        assert all(c.close_calls == 1 for c in factory.created)

    @pytest.mark.asyncio
    async def test_different_ids_start_concurrently(self, factory, registry):
        manager = SessionManager(client_factory=factory, registry=registry, connect_timeout=5)
        factory.behaviors["a"] = {"connect_delay": 0.2}
        factory.behaviors["b"] = {"connect_delay": 0.2}

        started = time.monotonic()
        await manager.start_batch({"a": {"command": "node"}, "b": {"command": "node"}})

        assert time.monotonic() - started < 0.39


class TestServerParameters:
    @pytest.mark.asyncio
    async def test_empty_env_passes_none(self, manager, factory):
        await manager.start_session("svc", {"command": "node", "args": ["s.js"], "env": {}})

        params = factory.created[0].params
        assert params.command == "node"
        assert params.args == ["s.js"]
        assert params.env is None

    @pytest.mark.asyncio
    async def test_env_is_layered_over_defaults(self, manager, factory):
        await manager.start_session("svc", {"command": "node", "env": {"API_KEY": "secret"}})

        env = factory.created[0].params.env
        assert env["API_KEY"] == "secret"
        for key, value in get_default_environment().items():
            if key != "API_KEY":
                assert env[key] == value


class ClosedResource(Exception):
    """Raised without a message, like a stream closed under a dead server."""


class TestLockLifetime:
    @pytest.mark.asyncio
    async def test_unknown_ids_leave_no_locks(self, manager):
        for i in range(50):
            with pytest.raises(NotFoundError):
                await manager.stop_session(f"ghost-{i}")
            with pytest.raises(NotFoundError):
                await manager.restart_session(f"ghost-{i}")

        assert manager._locks == {}
        assert not manager._lock_users

    @pytest.mark.asyncio
    async def test_locks_released_after_lifecycle(self, manager, factory):
        await manager.start_session("svc", {"command": "node"})
        await manager.restart_session("svc")
        await manager.stop_session("svc")

        factory.behaviors["bad"] = {"connect_error": OSError("boom")}
        with pytest.raises(ConnectionFailedError):
            await manager.start_session("bad", {"command": "node"})

        assert manager._locks == {}

    @pytest.mark.asyncio
    async def test_lock_kept_while_waiters_remain(self, manager, factory):
        factory.behaviors["svc"] = {"connect_delay": 0.05}
        config = {"command": "node"}

        first = asyncio.ensure_future(manager.start_session("svc", config))
        second = asyncio.ensure_future(manager.start_session("svc", config))
        await asyncio.sleep(0.01)

        assert "svc" in manager._locks
        assert manager._lock_users["svc"] == 2

        await asyncio.gather(first, second)
        assert len(factory.created) == 1
        assert manager._locks == {}


class TestMessagelessErrors:
    @pytest.mark.asyncio
    async def test_tool_error_uses_class_name(self, manager, factory):
        factory.behaviors["svc"] = {"list_error": ClosedResource()}
        await manager.start_session("svc", {"command": "node"})

        info = await manager.list_session("svc")

        assert info["toolError"] == "ClosedResource"

    @pytest.mark.asyncio
    async def test_invoke_error_uses_class_name(self, manager, factory):
        factory.behaviors["svc"] = {"call_error": ClosedResource()}
        await manager.start_session("svc", {"command": "node"})

        with pytest.raises(ToolInvocationError) as exc_info:
            await manager.invoke_tool("svc", "echo", {})

        assert exc_info.value.message == "ClosedResource"

    @pytest.mark.asyncio
    async def test_list_tools_error_uses_class_name(self, manager, factory):
        factory.behaviors["svc"] = {"list_error": ClosedResource()}
        await manager.start_session("svc", {"command": "node"})

        with pytest.raises(ToolInvocationError) as exc_info:
            await manager.list_tools("svc")

        assert exc_info.value.message == "Failed to get tools: ClosedResource"

    @pytest.mark.asyncio
    async def test_connect_error_uses_class_name(self, manager, factory):
        factory.behaviors["svc"] = {"connect_error": ClosedResource()}

        with pytest.raises(ConnectionFailedError) as exc_info:
            await manager.start_session("svc", {"command": "node"})

        assert exc_info.value.message == "Failed to connect: ClosedResource"

    @pytest.mark.asyncio
    async def test_stop_error_uses_class_name(self, manager, factory):
        factory.behaviors["svc"] = {"close_error": ClosedResource()}
        await manager.start_session("svc", {"command": "node"})

        with pytest.raises(ShutdownError) as exc_info:
            await manager.stop_session("svc")

        assert exc_info.value.message.endswith(": ClosedResource")
