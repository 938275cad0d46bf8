"""Shared pytest fixtures and fakes."""

import asyncio

import pytest

from mcp_runner.sessions.base import ProtocolClient
from mcp_runner.sessions.manager import SessionManager
from mcp_runner.sessions.registry import SessionRegistry

class FakeClient(ProtocolClient):
    """In-memory protocol client with scriptable failures."""

    def __init__(
        self,
        session_id,
        params,
        tools=None,
        connect_delay=0.0,
        connect_error=None,
        hang=False,
        close_error=None,
        list_error=None,
        call_error=None,
        call_result=None,
    ):
        self.session_id = session_id
        self.params = params
        self.tools = tools if tools is not None else [{"name": "echo"}, {"name": "add"}]
        self.connect_delay = connect_delay
        self.connect_error = connect_error
        self.hang = hang
        self.close_error = close_error
        self.list_error = list_error
        self.call_error = call_error
        self.call_result = call_result
        self.connect_calls = 0
        self.close_calls = 0
        self.connected = False
        self.calls = []

    async def connect(self):
        self.connect_calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def list_tools(self):
        if self.list_error:
            raise self.list_error
        return self.tools

    async def call_tool(self, name, arguments=None):
        self.calls.append((name, arguments))
        if self.call_error:
            raise self.call_error
        if self.call_result is not None:
            return self.call_result
        return {"content": [{"type": "text", "text": f"{name} ok"}], "isError": False}

    async def close(self):
        self.close_calls += 1
        self.connected = False
        if self.close_error:
            raise self.close_error


class FakeClientFactory:
    """Client factory that records every client it builds."""

    def __init__(self):
        self.created = []
        self.behaviors = {}

    def __call__(self, session_id, params):
        client = FakeClient(session_id, params, **self.behaviors.get(session_id, {}))
        self.created.append(client)
        return client

    def clients_for(self, session_id):
        return [c for c in self.created if c.session_id == session_id]


@pytest.fixture
def factory():
    return FakeClientFactory()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def manager(factory, registry):
    return SessionManager(client_factory=factory, registry=registry, connect_timeout=5)


@pytest.fixture
def echo_config():
    return {"command": "python", "args": ["-m", "echo_server"], "env": {}}
