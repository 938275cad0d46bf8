"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os

import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    explicit = os.getenv("MCP_RUNNER_URL")
    if explicit:
        return explicit.rstrip("/")

    host = os.getenv("MCP_RUNNER_HOST", "localhost")
    port = os.getenv("PORT") or "50880"
    return f"http://{host}:{port}"


def _auth_headers() -> dict:
    token = os.getenv("MCP_AUTH_TOKEN")
    if not token:
        typer.echo("❌ MCP_AUTH_TOKEN is not set. Pass --token or export it.")
        raise typer.Exit(code=1)
    return {"Authorization": f"Bearer {token}"}


def _error_detail(response) -> str:
    try:
        data = response.json()
    except Exception:
        return str(response.status_code)
    if isinstance(data, dict):
        detail = data.get("details") or data.get("error") or data.get("message")
        if detail:
            return str(detail)
    return str(response.status_code)


def _request(
    method: str,
    path: str,
    data: dict = None,
    timeout: float = 30.0,
    accept_statuses: tuple = (),
):
    import httpx

    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.request(
            method, url, json=data, headers=_auth_headers(), timeout=timeout
        )
        if resp.status_code not in accept_statuses:
            resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("❌ Cannot connect to MCP runner. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        typer.echo(f"❌ Server error ({e.response.status_code}): {_error_detail(e.response)}")
        raise typer.Exit(code=1)


def _http_get(path: str) -> dict:
    """Make a GET request to the running server."""
    return _request("GET", path)


def _http_post(
    path: str, data: dict = None, timeout: float = 30.0, accept_statuses: tuple = ()
) -> dict:
    """Make a POST request to the running server."""
    return _request(
        "POST", path, data=data or {}, timeout=timeout, accept_statuses=accept_statuses
    )


def _http_delete(path: str) -> dict:
    """Make a DELETE request to the running server."""
    return _request("DELETE", path)
