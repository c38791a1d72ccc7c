"""Utility functions for aioroomcast."""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable

_LOGGER = logging.getLogger(__name__)


def get_local_ip() -> str | None:
    """Get a local IP address that can be used for mDNS advertising.

    Returns the IP address of the interface that would be used to connect
    to an external address, or None if no network is available.
    """
    try:
        # Create a UDP socket and connect to an external address
        # This doesn't send any data, just determines which interface would be used
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            result: str = s.getsockname()[0]
            return result
    except OSError:
        return None


def release(
    what: str,
    close: Callable[[], object],
    log: logging.Logger | None = None,
) -> bool:
    """
    Release a resource on a best-effort basis.

    Failures are logged and swallowed so that the cleanup of one resource never
    prevents the cleanup of the next one.

    Args:
        what: Human readable description used in the log message.
        close: Callable performing the release (e.g. ``transport.close``).
        log: Logger to report failures to, defaults to this module's logger.

    Returns:
        True if the release did not raise.
    """
    try:
        close()
    except Exception:  # noqa: BLE001
        (log or _LOGGER).warning("Failed to release %s", what, exc_info=True)
        return False
    return True
