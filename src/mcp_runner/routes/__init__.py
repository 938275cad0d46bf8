"""HTTP route handlers for the MCP runner."""
