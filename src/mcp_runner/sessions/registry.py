"""
In-memory registry of active sessions.

The registry is a plain data structure. All serialization of lifecycle
transitions lives in SessionManager.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from mcp_runner.sessions.base import ProtocolClient
from mcp_runner.sessions.models import SessionConfig


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionEntry:
    """A connected session and its original spawn configuration."""

    id: str
    client: ProtocolClient
    config: SessionConfig
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def command(self) -> str:
        return self.config.command

    @property
    def args(self) -> list[str]:
        return list(self.config.args)

    def to_dict(self) -> dict[str, Any]:
        """Serialize entry identity for API responses."""
        return {
            "id": self.id,
            "command": self.command,
            "args": self.args,
            "createdAt": self.created_at.isoformat(),
        }


class SessionRegistry:
    """Mapping from session id to SessionEntry."""

    def __init__(self):
        self._entries: dict[str, SessionEntry] = {}

    def get(self, session_id: str) -> SessionEntry | None:
        return self._entries.get(session_id)

    def put(self, session_id: str, entry: SessionEntry) -> None:
        self._entries[session_id] = entry

    def remove(self, session_id: str) -> SessionEntry | None:
        return self._entries.pop(session_id, None)

    def values(self) -> list[SessionEntry]:
        return list(self._entries.values())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
