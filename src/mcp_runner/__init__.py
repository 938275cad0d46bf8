"""REST runner for subprocess-backed MCP tool servers."""

__version__ = "0.1.0"
