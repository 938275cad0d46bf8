"""
CLI subcommands for managing sessions on a running MCP runner.

Usage:
    mcp-runner sessions list
    mcp-runner sessions show <id>
    mcp-runner sessions tools <id>
    mcp-runner sessions start <config.json>
    mcp-runner sessions restart <id>
    mcp-runner sessions stop <id>
    mcp-runner sessions call <id> <tool> [--args JSON] [key=value ...]
"""

import json
from pathlib import Path
from typing import Optional

import typer

from mcp_runner.cli._http import _http_delete, _http_get, _http_post
from mcp_runner.config import CONFIG

sessions_app = typer.Typer(help="Manage MCP client sessions on a running server")


def _infer_type(value_str: str):
    """Infer a Python type from a CLI string value."""
    lower = value_str.lower()
    if lower == "true":
        return True
    if lower == "false":
        return False
    if lower in ("null", "none"):
        return None

    for converter in (int, float):
        try:
            return converter(value_str)
        except ValueError:
            pass

    if value_str.startswith(("{", "[")):
        try:
            return json.loads(value_str)
        except json.JSONDecodeError:
            pass

    return value_str


@sessions_app.command("list")
def sessions_list():
    """List all running sessions and their tools."""
    sessions = _http_get("/clients")

    if not sessions:
        typer.echo("No MCP clients running.")
        return

    typer.echo(f"🧰 Running clients ({len(sessions)}):\n")
    for session in sessions:
        status_icon = "🔴" if session.get("toolError") else "🟢"
        tools = ", ".join(session.get("tools", [])) or "none"
        typer.echo(
            f"  {status_icon} {session['id']}\n"
            f"     Command: {' '.join([session['command'], *session.get('args', [])])}\n"
            f"     Started: {session.get('createdAt', 'unknown')}\n"
            f"     Tools: {tools}\n"
        )
        if session.get("toolError"):
            typer.echo(f"     Tool error: {session['toolError']}\n")


@sessions_app.command("show")
def sessions_show(session_id: str = typer.Argument(help="Session id")):
    """Show details of a single session."""
    data = _http_get(f"/clients/{session_id}")

    typer.echo(f"🧰 Client: {data['id']}")
    typer.echo(f"   Command: {data['command']}")
    typer.echo(f"   Args: {' '.join(data.get('args', [])) or '(none)'}")
    typer.echo(f"   Started: {data.get('createdAt', 'unknown')}")
    if data.get("toolError"):
        typer.echo(f"   Tool error: {data['toolError']}")
    else:
        typer.echo(f"   Tools: {', '.join(data.get('tools', [])) or 'none'}")


@sessions_app.command("tools")
def sessions_tools(session_id: str = typer.Argument(help="Session id")):
    """List the tools exposed by a session."""
    tools = _http_get(f"/clients/{session_id}/tools")

    if not tools:
        typer.echo("No tools advertised.")
        return

    typer.echo(f"🔧 Tools on {session_id} ({len(tools)}):")
    for tool in tools:
        desc = f" — {tool['description']}" if tool.get("description") else ""
        typer.echo(f"  • {tool['name']}{desc}")


@sessions_app.command("start")
def sessions_start(
    config_file: Path = typer.Argument(
        help="JSON file with an 'mcpServers' object (Claude Desktop format)",
        exists=True,
        dir_okay=False,
        readable=True,
    ),
):
    """Start or reconfigure sessions from a config file."""
    try:
        payload = json.loads(config_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        typer.echo(f"❌ Invalid JSON in {config_file}: {e}")
        raise typer.Exit(code=1)

    if "mcpServers" not in payload:
        typer.echo("❌ Config file must contain an 'mcpServers' object.")
        raise typer.Exit(code=1)

    data = _http_post(
        "/start",
        {"mcpServers": payload["mcpServers"]},
        timeout=CONFIG.connect_timeout + 30,
        accept_statuses=(400,),
    )

    for client in data.get("clients", data.get("success", [])):
        typer.echo(f"✅ {client['id']}: {client['message']}")
    for error in data.get("errors", []):
        typer.echo(f"❌ {error['id']}: {error['error']}")

    if data.get("errors"):
        raise typer.Exit(code=1)


@sessions_app.command("restart")
def sessions_restart(session_id: str = typer.Argument(help="Session id")):
    """Restart a session with its original configuration."""
    data = _http_post(f"/restart/{session_id}", timeout=CONFIG.connect_timeout + 30)
    typer.echo(f"✅ {data['message']}")


@sessions_app.command("stop")
def sessions_stop(session_id: str = typer.Argument(help="Session id")):
    """Stop a session and release its process."""
    data = _http_delete(f"/clients/{session_id}")
    typer.echo(f"✅ {data['message']}")


@sessions_app.command("call")
def sessions_call(
    session_id: str = typer.Argument(help="Session id"),
    tool: str = typer.Argument(help="Tool name"),
    args: Optional[str] = typer.Option(
        None, "--args", "-a", help='JSON arguments (e.g., \'{"path":"/tmp"}\')'
    ),
    extra_args: list[str] = typer.Argument(
        None, help="Arguments as key=value pairs (e.g., path=/tmp depth=2)"
    ),
):
    """Call a tool on a session."""
    arguments = {}
    if args:
        try:
            arguments = json.loads(args)
        except json.JSONDecodeError as e:
            typer.echo(f"❌ Invalid JSON arguments: {e}")
            raise typer.Exit(code=1)

    for pair in extra_args or []:
        if "=" not in pair:
            typer.echo(f"❌ Expected key=value, got '{pair}'")
            raise typer.Exit(code=1)
        key, value = pair.split("=", 1)
        arguments[key] = _infer_type(value)

    result = _http_post(
        f"/clients/{session_id}/call_tools",
        {"name": tool, "arguments": arguments},
        timeout=CONFIG.request_timeout + 30,
    )

    if result.get("isError"):
        typer.echo("⚠️  Tool reported an error:")
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))
