"""
Pydantic models for the session system.

Covers:
- SessionConfig, the caller-supplied spawn configuration
- REST API request/response schemas
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from mcp_runner.errors import ConfigurationError


# ─── Session Config ──────────────────────────────────────────────────


class SessionConfig(BaseModel):
    """
    Spawn configuration for one tool server.

    Only command, args and env are interpreted; any other keys are kept
    verbatim and take part in change detection.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Any, session_id: str | None = None) -> "SessionConfig":
        """
        Build a SessionConfig from a mapping, raising ConfigurationError.

        Args:
            raw: A mapping or an existing SessionConfig.
            session_id: Used for error context only.
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            raise ConfigurationError(
                "Configuration must be an object with a 'command' field",
                session_id,
            )
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(
                f"Invalid configuration: {problems}", session_id
            ) from None

    def fingerprint(self) -> str:
        """Canonical form used to decide whether two configs are equal."""
        return json.dumps(self.model_dump(), sort_keys=True, separators=(",", ":"))

    def matches(self, other: "SessionConfig") -> bool:
        return self.fingerprint() == other.fingerprint()


# ─── REST API Models ─────────────────────────────────────────────────


class StartRequest(BaseModel):
    """POST /start request body (Claude Desktop config format)."""

    mcpServers: dict[str, Any] = Field(default_factory=dict)


class CallToolRequest(BaseModel):
    """POST /clients/{id}/call_tools request body."""

    name: str = ""
    arguments: dict[str, Any] | None = None


class StartResult(BaseModel):
    """Outcome of starting a single session."""

    id: str
    message: str


class StartError(BaseModel):
    """A per-id failure inside a batch start."""

    id: str
    error: str
    kind: str


class BatchStartResult(BaseModel):
    """Aggregate outcome of a batch start."""

    success: list[StartResult] = Field(default_factory=list)
    errors: list[StartError] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class SessionInfo(BaseModel):
    """Projection of a registry entry for API responses."""

    id: str
    command: str
    args: list[str]
    createdAt: str
    tools: list[str] = Field(default_factory=list)
    toolError: str | None = None
