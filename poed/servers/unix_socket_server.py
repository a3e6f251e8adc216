"""
Unix socket IPC server.

- Listens on a local stream socket (backlog 1).
- Serves ONE client at a time: receive a request, send a response, repeat
  until the client disconnects, a receive fails or the client stays silent
  longer than ``recv_timeout_s``.  Then back to accept().
- Each recv() is one request (clients send a single JSON document and wait
  for the answer before sending the next one).
- The accept and receive loops wake up every ``poll_interval_s`` to
  check the shared stop event.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from typing import Callable, Optional

from poed import protocol

log = logging.getLogger(__name__)

RECV_BUFSIZE = 65536


class UnixSocketServer:
    def __init__(
        self,
        socket_path: str,
        snapshot: Callable[[], object],
        *,
        recv_timeout_s: float = 30.0,
        poll_interval_s: float = 0.5,
        stop_event: Optional[threading.Event] = None,
    ):
        self.socket_path = socket_path
        self.snapshot = snapshot
        self.recv_timeout_s = recv_timeout_s
        self.poll_interval_s = poll_interval_s
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self._sock: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self.ready = threading.Event()

    # ------------------------------------------------------------------
    # Socket lifecycle
    # ------------------------------------------------------------------

    def bind(self) -> None:
        """Create and bind the listening socket.  Raises OSError on failure."""
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(self.socket_path)
            sock.listen(1)
        except OSError:
            sock.close()
            raise
        sock.settimeout(self.poll_interval_s)
        self._sock = sock
        log.info(f"Listening on UNIX socket: {self.socket_path}")

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def handle_client(self, conn: socket.socket) -> None:
        # wakes up every poll interval to check the stop event
        conn.settimeout(min(self.poll_interval_s, self.recv_timeout_s))
        last_seen = time.monotonic()
        while not self.stop_event.is_set():
            try:
                data = conn.recv(RECV_BUFSIZE)
            except socket.timeout:
                if time.monotonic() - last_seen >= self.recv_timeout_s:
                    log.info(f"[TIMEOUT] client silent for {self.recv_timeout_s}s, dropping it")
                    return
                continue
            except OSError as ex:
                log.error(f"[OSERR] failed to receive data: {ex}")
                return
            if not data:
                log.info("[CLOSE] client disconnected")
                return

            text = data.decode("utf-8", errors="replace")
            log.debug(f"[RECV] {text!r}")
            response = protocol.handle_message(text, self.snapshot)
            try:
                conn.sendall(response.encode("utf-8"))
            except OSError as ex:
                log.error(f"[OSERR] failed to send response: {ex}")
                return
            last_seen = time.monotonic()

    def serve_forever(self) -> None:
        if self._sock is None:
            self.bind()
        self.ready.set()
        try:
            while not self.stop_event.is_set():
                try:
                    conn, _ = self._sock.accept()
                except socket.timeout:
                    continue
                except OSError as ex:
                    if self.stop_event.is_set():
                        break
                    log.error(f"Failed to accept connection: {ex}")
                    raise
                log.info("[ACCEPT] new client")
                with conn:
                    self.handle_client(conn)
        finally:
            self.close()
            log.info("IPC server stopped")

    def start(self) -> threading.Thread:
        """Bind in the caller's thread (errors surface here), serve in a worker."""
        if self._thread is not None:
            return self._thread
        self.bind()
        self._thread = threading.Thread(target=self.serve_forever, name="ipc-server", daemon=True)
        self._thread.start()
        return self._thread
