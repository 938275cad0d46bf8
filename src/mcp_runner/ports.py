"""
Selection of a free port for the listening socket.
"""

import socket

from mcp_runner.config import CONFIG, Config
from mcp_runner.logger import get_logger

logger = get_logger(__name__)


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """Check whether a TCP socket can bind to host:port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            logger.info(f"Port {port} is not available: {e}")
            return False
    logger.info(f"Port {port} is available")
    return True


def find_available_port(config: Config = CONFIG) -> int | None:
    """
    Pick the port to listen on.

    The PORT setting wins when it is free; on Render it is trusted without a
    check. Otherwise the first free candidate port is used.

    Returns:
        A port number, or None when every candidate is taken.
    """
    if config.port:
        logger.info(f"Checking environment-provided port: {config.port}")
        if config.on_render:
            logger.info(f"Running on Render, using provided port: {config.port}")
            return config.port
        if is_port_available(config.port):
            return config.port
        logger.info(
            f"Environment-provided port {config.port} is not available, "
            "trying fallback ports"
        )

    for port in config.CANDIDATE_PORTS:
        if is_port_available(port):
            return port

    logger.warning("No available ports found from the predefined list")
    return None
