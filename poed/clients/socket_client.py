"""
IPC client: asks a running daemon for its state over the unix socket.

Never raises for transport problems: like the daemon's own `--get-all`
output, a failure is reported as a fixed diagnostic string in place of the
response, so the caller can print whatever comes back.

Usage:
  python -m poed.clients.socket_client --socket /var/run/poed.sock
"""

from __future__ import annotations

import argparse
import json
import socket
import time

from poed import protocol

DEFAULT_TIMEOUT_MS = 2000
RECV_BUFSIZE = 8192

FAILED_CREATE = "Failed to create socket"
FAILED_CONNECT = "Failed to connect to socket"
FAILED_SEND = "Failed to send message"
TIMEOUT = "Timeout waiting for response"
FAILED_WAIT = "Error while waiting for response"
FAILED_RECEIVE = "Failed to receive response"


def _is_complete(buf: bytes) -> bool:
    try:
        json.loads(buf.decode("utf-8"))
    except ValueError:
        return False
    return True


def request_from_socket(socket_path: str, message: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
    """Send one message and return the raw response text (or a diagnostic)."""
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError:
        return FAILED_CREATE

    with sock:
        try:
            sock.connect(socket_path)
        except OSError:
            return FAILED_CONNECT
        try:
            sock.sendall(message.encode("utf-8"))
        except OSError:
            return FAILED_SEND

        # The response may span several recv() calls; keep reading until it
        # parses as one JSON document or the deadline passes.
        deadline = time.monotonic() + timeout_ms / 1000.0
        buf = b""
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return TIMEOUT if not buf else FAILED_RECEIVE
            sock.settimeout(remaining)
            try:
                chunk = sock.recv(RECV_BUFSIZE)
            except socket.timeout:
                return TIMEOUT if not buf else FAILED_RECEIVE
            except OSError:
                return FAILED_WAIT
            if not chunk:
                return FAILED_RECEIVE if not buf else buf.decode("utf-8", errors="replace")
            buf += chunk
            if _is_complete(buf):
                return buf.decode("utf-8")


def get_all(socket_path: str, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> str:
    return request_from_socket(socket_path, protocol.build_request(protocol.CMD_GET_ALL), timeout_ms)


def main() -> None:
    parser = argparse.ArgumentParser(description="Query a running poed daemon")
    parser.add_argument("--socket", default="/var/run/poed.sock", help="Daemon unix socket path")
    parser.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    parser.add_argument("--command", default=protocol.CMD_GET_ALL,
                        help="Request 'data' field (only get_all is understood)")
    args = parser.parse_args()

    print(request_from_socket(args.socket, protocol.build_request(args.command), args.timeout_ms))


if __name__ == "__main__":
    main()
