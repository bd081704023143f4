"""Host port bookkeeping for managed projects."""

from __future__ import annotations

import logging
import socket
from threading import Lock

logger = logging.getLogger("dockpilot.network")

PORT_RANGE_START = 3000
PORT_RANGE_END = 9000
MIN_PORT = 1
MAX_PORT = 65535


def check_port(port: int) -> bool:
    """Best-effort probe: can *port* be bound right now?

    The socket is released immediately, so another process may take the
    port before the caller uses it. Nothing is held.
    """
    if port < MIN_PORT or port > MAX_PORT:
        return False
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind(("0.0.0.0", port))
            return True
    except OSError:
        return False


def _ephemeral_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("0.0.0.0", 0))
        return s.getsockname()[1]


class PortAllocator:
    """Tracks the ports claimed by managed projects.

    The claimed set lives in memory for the life of the allocator. Ports
    used by other processes are only detected by the bind probe, never
    locked out in advance.
    """

    def __init__(self, start_port: int = PORT_RANGE_START, end_port: int = PORT_RANGE_END):
        if start_port < MIN_PORT:
            start_port = MIN_PORT
        if end_port > MAX_PORT:
            end_port = MAX_PORT

        self.start_port = start_port
        self.end_port = end_port
        self._claimed: set[int] = set()
        self._lock = Lock()

    def is_available(self, port: int) -> bool:
        """OS-level availability only; see :func:`check_port`."""
        return check_port(port)

    def is_claimed(self, port: int) -> bool:
        with self._lock:
            return port in self._claimed

    def claimed(self) -> set[int]:
        with self._lock:
            return set(self._claimed)

    def _free_locked(self, port: int, span: int) -> bool:
        return all(p not in self._claimed and check_port(p) for p in range(port, port + span))

    def find_available(self, preferred: int | None = None, span: int = 1) -> int:
        """
        Claim and return a free port.

        Tries *preferred* first, then scans ``start_port..end_port``
        inclusive, then falls back to an OS-assigned ephemeral port. With
        *span* > 1 the ports ``port .. port + span - 1`` are all claimed
        together and the returned value is the first of them.
        """
        with self._lock:
            if preferred and self._free_locked(preferred, span):
                self._claimed.update(range(preferred, preferred + span))
                logger.info("Assigned preferred port: %d", preferred)
                return preferred

            for port in range(self.start_port, self.end_port - span + 2):
                if self._free_locked(port, span):
                    self._claimed.update(range(port, port + span))
                    logger.info("Assigned port: %d", port)
                    return port

            while True:
                port = _ephemeral_port()
                if self._free_locked(port, span):
                    self._claimed.update(range(port, port + span))
                    logger.info("Assigned ephemeral port: %d", port)
                    return port

    def reserve(self, port: int, span: int = 1) -> bool:
        """Claim a specific port. False if it is claimed or cannot be bound."""
        with self._lock:
            return self._reserve_locked(port, span)

    def _reserve_locked(self, port: int, span: int = 1) -> bool:
        for p in range(port, port + span):
            if p in self._claimed:
                logger.warning("Port %d is already assigned", p)
                return False
            if not check_port(p):
                logger.warning("Port %d is not available", p)
                return False
        self._claimed.update(range(port, port + span))
        logger.info("Reserved port: %d", port)
        return True

    def release(self, port: int, span: int = 1) -> None:
        with self._lock:
            for p in range(port, port + span):
                if p in self._claimed:
                    self._claimed.discard(p)
                    logger.info("Released port: %d", p)

    def update_assignment(self, old_port: int, new_port: int, span: int = 1) -> bool:
        """
        Move a claim from *old_port* to *new_port*.

        On failure nothing changes: *old_port* stays claimed and *new_port*
        is not.
        """
        if old_port == new_port:
            return True

        with self._lock:
            old = set(range(old_port, old_port + span)) & self._claimed
            self._claimed.difference_update(old)
            if self._reserve_locked(new_port, span):
                return True
            self._claimed.update(old)
            logger.warning("New port %d is not available", new_port)
            return False

    def release_all(self) -> None:
        with self._lock:
            self._claimed.clear()
            logger.info("Cleared all port assignments")
