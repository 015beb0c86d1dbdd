"""Whole-request deadline enforced by a watchdog timer.

Socket timeouts bound each individual connect or read; they do not stop a
peer that keeps trickling bytes. The watchdog here shuts down every socket
dialed for the request once the deadline passes, which unblocks whatever
read or handshake is pending.
"""

from __future__ import annotations

import logging
import socket
import threading

logger = logging.getLogger(__name__)


class Deadline:
    """Watchdog that severs a request's connections after ``seconds``.

    Sockets are registered through :meth:`track`. urllib3 detaches the
    dialed socket when it wraps it for TLS, so a duplicate descriptor is
    kept; shutting it down ends the connection for every descriptor.
    """

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self._lock = threading.Lock()
        self._expired = False
        self._cancelled = False
        self._sockets: list[socket.socket] = []
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True

    @property
    def expired(self) -> bool:
        with self._lock:
            return self._expired

    @property
    def message(self) -> str:
        return f"request exceeded timeout of {self.seconds}s"

    def start(self) -> None:
        self._timer.start()

    def track(self, sock: socket.socket) -> None:
        """Register a freshly dialed socket."""
        dup = sock.dup()
        with self._lock:
            if not self._expired and not self._cancelled:
                self._sockets.append(dup)
                return
        # Dialed after the watchdog fired or was cancelled.
        if self.expired:
            _shutdown(dup)
        dup.close()

    def cancel(self) -> None:
        """Stop the watchdog and release the duplicate descriptors."""
        self._timer.cancel()
        with self._lock:
            self._cancelled = True
            sockets, self._sockets = self._sockets, []
        for dup in sockets:
            dup.close()

    def _expire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._expired = True
            sockets, self._sockets = self._sockets, []
        logger.debug(
            "Deadline of %ss reached; closing %d connection(s)",
            self.seconds,
            len(sockets),
        )
        for dup in sockets:
            _shutdown(dup)
            dup.close()


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        # Already disconnected by the peer.
        logger.debug("Shutdown after deadline failed: %s", exc)
