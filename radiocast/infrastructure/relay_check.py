import logging
import socket

logger = logging.getLogger(__name__)


def is_relay_running(host: str, port: int, timeout: float = 3.0) -> bool:
    """Returns True if a TCP connection to the relay can be opened."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.warning(f"Relay {host}:{port} is not reachable: {e}")
        return False
