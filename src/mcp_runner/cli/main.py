"""
Top-level CLI commands: serve, token.
"""

import os
from typing import Optional

import typer

from mcp_runner.config import CONFIG


def configure_logging(verbose: bool = False):
    """Configure logging for the CLI."""
    from mcp_runner.logger import setup_logging

    if verbose:
        os.environ["LOG_LEVEL"] = "DEBUG"
    CONFIG.reload()
    setup_logging(level=CONFIG.log_level, log_file=CONFIG.log_file)


def register_commands(app: typer.Typer):
    """Register top-level commands onto the app."""

    @app.command()
    def serve(
        auth_token: Optional[str] = typer.Argument(
            None, help="Authentication token (defaults to MCP_AUTH_TOKEN)"
        ),
        host: Optional[str] = typer.Option(None, help="Host to bind to (defaults to HOST)"),
        port: Optional[int] = typer.Option(None, help="Port to bind to (defaults to PORT)"),
    ):
        """Start the MCP runner server."""
        from mcp_runner.ports import find_available_port
        from mcp_runner.server import run_server

        token = auth_token or CONFIG.auth_token
        if not token:
            typer.secho("Error: Authentication token is required", fg="red", err=True)
            typer.echo("Usage: mcp-runner serve <auth-token>")
            typer.echo("       OR set MCP_AUTH_TOKEN environment variable")
            raise typer.Exit(code=1)

        if host:
            CONFIG.host = host
        if port:
            CONFIG.port = port

        selected_port = find_available_port(CONFIG)
        if not selected_port:
            typer.secho(
                "Error starting MCP server: No available ports found. "
                "Please specify a port by using the PORT environment variable.",
                fg="red",
                err=True,
            )
            raise typer.Exit(code=1)

        typer.secho(
            f"✓ MCP runner server running on "
            f"{CONFIG.protocol}://{CONFIG.host}:{selected_port}",
            fg="green",
        )
        external = CONFIG.external_url or f"{CONFIG.protocol}://localhost:{selected_port}"
        typer.secho(f"✓ External URL: {external}", fg="green")
        typer.secho(
            "Note: You must keep the server running in the background "
            "in order to use MCP tools remotely.",
            fg="yellow",
        )

        try:
            run_server(token, selected_port, CONFIG)
        except OSError as e:
            typer.secho(f"Error starting MCP server: {e}", fg="red", err=True)
            raise typer.Exit(code=1)

    @app.command()
    def token():
        """Generate a random authentication token."""
        from mcp_runner.middleware import generate_auth_token

        typer.echo(generate_auth_token())
