"""
MCP Runner CLI.

This package splits CLI commands into focused modules:
- main:     serve, token
- sessions: list, show, tools, start, restart, stop, call
"""

import os
from typing import Optional

import typer

from mcp_runner.cli._http import _http_delete, _http_get, _http_post  # noqa: F401 re-exported for test patching
from mcp_runner.cli.main import configure_logging, register_commands
from mcp_runner.cli.sessions import sessions_app

app = typer.Typer(help="MCP Runner - REST facade for MCP tool servers")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
    token: Optional[str] = typer.Option(
        None, "--token", "-t", help="Authentication token for server requests"
    ),
):
    """
    MCP Runner - REST facade for MCP tool servers.
    """
    if token:
        os.environ["MCP_AUTH_TOKEN"] = token
    configure_logging(verbose)


# Register top-level commands (serve, token)
register_commands(app)

# Attach subcommand groups
app.add_typer(sessions_app, name="sessions")

if __name__ == "__main__":
    app()
