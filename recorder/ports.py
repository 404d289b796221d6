"""
Port pool for plain RTP transports.

PortAllocator leases port numbers from a fixed inclusive range. Every
recording start leases one RTP port per producer (plus one RTCP port when
rtcp-mux is disabled) and the ports go back to the pool when the recording
stops or the session closes.
"""

from __future__ import annotations

import logging
import threading
from typing import Set

from recorder.errors import PortExhaustedError, PortNotLeasedError

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    Thread-safe allocator over an inclusive port range.

    acquire() always returns the lowest free port so allocation order is
    deterministic. A released port is eligible for the very next acquire().

    Releasing a port that is not leased raises PortNotLeasedError. The
    session layer releases each leased port exactly once, so a double
    release always indicates a bookkeeping bug and is surfaced as such.
    """

    def __init__(self, min_port: int = 20000, max_port: int = 30000) -> None:
        if min_port < 1 or max_port > 65535:
            raise ValueError(f"Port range must be within 1-65535, got {min_port}-{max_port}")
        if min_port > max_port:
            raise ValueError(f"Invalid port range: {min_port}-{max_port}")

        self._min_port = min_port
        self._max_port = max_port
        self._leased: Set[int] = set()
        self._lock = threading.Lock()
        # Lowest port that might be free; everything below it is leased
        self._next_hint = min_port

    @property
    def capacity(self) -> int:
        return self._max_port - self._min_port + 1

    @property
    def leased_count(self) -> int:
        with self._lock:
            return len(self._leased)

    @property
    def free_count(self) -> int:
        with self._lock:
            return self.capacity - len(self._leased)

    def is_leased(self, port: int) -> bool:
        with self._lock:
            return port in self._leased

    def acquire(self) -> int:
        """
        Lease the lowest free port.

        Returns:
            Leased port number

        Raises:
            PortExhaustedError: If every port in the range is leased
        """
        with self._lock:
            port = self._next_hint
            while port <= self._max_port and port in self._leased:
                port += 1

            if port > self._max_port:
                raise PortExhaustedError(
                    f"No free port in range {self._min_port}-{self._max_port} "
                    f"({len(self._leased)} leased)"
                )

            self._leased.add(port)
            self._next_hint = port + 1

        logger.debug(f"Leased port {port}")
        return port

    def release(self, port: int) -> None:
        """
        Return a leased port to the pool.

        Raises:
            PortNotLeasedError: If the port is not currently leased
        """
        with self._lock:
            if port not in self._leased:
                raise PortNotLeasedError(f"Port {port} is not leased")
            self._leased.remove(port)
            if port < self._next_hint:
                self._next_hint = port

        logger.debug(f"Released port {port}")
