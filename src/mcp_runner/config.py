# src/mcp_runner/config.py

import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Config:
    # Server
    TITLE = "MCP Runner"
    HOST = "0.0.0.0"
    CANDIDATE_PORTS = [50880, 50881, 3000, 8080, 8000]
    STATIC_DIR = "/tmp"

    # Session lifecycle (seconds)
    CONNECT_TIMEOUT = 300.0
    REQUEST_TIMEOUT = 300.0
    KEEPALIVE_INTERVAL = 30.0

    CLIENT_NAME_PREFIX = "mcp-http-bridge"
    CLIENT_VERSION = "1.0.0"

    def __init__(self):
        self.reload()

    def reload(self) -> None:
        """Re-read settings from the environment."""
        self.auth_token: str | None = os.getenv("MCP_AUTH_TOKEN") or None
        self.host: str = os.getenv("HOST", self.HOST)
        self.port: int | None = _env_int("PORT", None)
        self.on_render: bool = bool(os.getenv("RENDER"))
        self.external_url: str | None = os.getenv("RENDER_EXTERNAL_URL") or None
        self.certfile: str | None = os.getenv("CERTFILE") or None
        self.keyfile: str | None = os.getenv("KEYFILE") or None
        self.static_dir: str = os.getenv("STATIC_DIR") or self.STATIC_DIR
        self.connect_timeout: float = _env_float(
            "MCP_CONNECT_TIMEOUT", self.CONNECT_TIMEOUT
        )
        self.request_timeout: float = _env_float(
            "MCP_REQUEST_TIMEOUT", self.REQUEST_TIMEOUT
        )
        self.keepalive_interval: float = _env_float(
            "KEEPALIVE_INTERVAL", self.KEEPALIVE_INTERVAL
        )
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.log_file: str | None = os.getenv("LOG_FILE") or None

    @property
    def use_https(self) -> bool:
        return bool(self.certfile and self.keyfile)

    @property
    def protocol(self) -> str:
        return "https" if self.use_https else "http"


CONFIG = Config()
