"""Host port allocation.

Ports are probed by binding and immediately releasing a TCP socket. The
port is not reserved afterwards: another process can take it before the
container engine binds it. That window is accepted, not handled.
"""

import logging
import socket
from collections.abc import Callable

from spindb.errors import PortRangeExhaustedError, ValidationError
from spindb.logging_schema import LogEvent

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_RANGE = 100


def is_port_available(port: int) -> bool:
    """Return True if a TCP socket can bind ``port`` on all interfaces."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind(("", port))
        except OSError:
            return False
    return True


class PortAllocator:
    """Finds a free host port at or above a requested base port."""

    def __init__(
        self,
        search_range: int = DEFAULT_SEARCH_RANGE,
        is_available: Callable[[int], bool] = is_port_available,
    ) -> None:
        self._range = search_range
        self._is_available = is_available

    def find_available_port(self, base_port: int) -> int:
        """Return the first bindable port in [base_port, base_port + range).

        Raises:
            ValidationError: base_port outside the TCP port space
            PortRangeExhaustedError: Every probed port is taken
        """
        if not 0 < base_port <= 65535:
            raise ValidationError(f"invalid base port {base_port}")

        upper = min(base_port + self._range, 65536)
        for port in range(base_port, upper):
            if self._is_available(port):
                logger.debug(
                    "Allocated host port",
                    extra={"event": LogEvent.PORT_ALLOCATED, "port": port, "base_port": base_port},
                )
                return port

        raise PortRangeExhaustedError(
            f"no available port found in range {base_port}-{upper - 1}"
        )
