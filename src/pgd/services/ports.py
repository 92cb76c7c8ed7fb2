"""Local TCP port allocation for new projects."""

import socket

from pgd.constants import DEFAULT_POSTGRES_PORT, LOCALHOST, PORT_SEARCH_RANGE
from pgd.errors import PortExhaustedError
from pgd.errors_catalog import actionable_error


def _can_bind(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((LOCALHOST, port))
        except OSError:
            return False
    return True


def find_available_port(
    ledger,
    default_port: int = DEFAULT_POSTGRES_PORT,
    search_range: int = PORT_SEARCH_RANGE,
) -> int:
    """Returns the first bindable port at or above the highest one pgd handed out.

    Only guards against ports recorded in the ledger; another process may
    still grab the port before the container binds it.
    """
    highest = ledger.get_highest_used_port()
    start = max(highest, default_port) if highest is not None else default_port
    recorded = ledger.used_ports()
    last = min(start + search_range - 1, 65535)

    for port in range(start, last + 1):
        if port in recorded:
            continue
        if _can_bind(port):
            return port

    raise PortExhaustedError(actionable_error("port_exhausted", first=str(start), last=str(last)))
