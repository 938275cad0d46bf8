"""
Logging setup for the MCP runner, built on loguru.
"""

import sys

from loguru import logger as _logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_logger.configure(extra={"name": "mcp_runner"})


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level for the stderr sink.
        log_file: Optional path for an additional rotating file sink.
    """
    _logger.remove()
    _logger.add(sys.stderr, level=level.upper(), format=_FORMAT)

    if log_file:
        _logger.add(
            log_file,
            level="DEBUG",
            format=_FORMAT,
            rotation="10 MB",
            retention=2,
            encoding="utf-8",
        )


def get_logger(name: str):
    """Return a logger bound to the given module name."""
    return _logger.bind(name=name)
