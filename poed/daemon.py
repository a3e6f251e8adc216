"""
poed daemon entry point.

Usage:
    poed --config /etc/poed/poed.yaml              # run the daemon
    poed --config /etc/poed/poed.yaml --test       # simulated PoE telemetry
    poed --config /etc/poed/poed.yaml --get-all    # ask the running daemon

Workers (threads of one process):
  - budget loop : refresh telemetry and enforce budgets every monitor period
  - IPC server  : answers snapshot requests on the unix socket

Both share the port records behind one RLock and one stop Event.  The stop
event is set by SIGINT/SIGTERM (exit 0) or by a fatal budget-loop error
(exit 1; a supervisor is expected to restart the daemon).
"""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import os
import signal
import sys
import threading
from functools import partial
from typing import List, Optional, Sequence

import psutil

from poed import __version__
from poed.clients.socket_client import get_all
from poed.config import (
    DEFAULT_CONFIG_PATH,
    DaemonConfig,
    build_controllers,
    load_config,
    parse_config,
    validate_hardware,
)
from poed.controllers.admission import BudgetLoop
from poed.errors import PoedError
from poed.hardware import SysfsHardware
from poed.port import PoeController
from poed.servers.unix_socket_server import UnixSocketServer
from poed.status import locked_snapshot

PROGRAM = "poed"
LOG_FORMAT = "%(asctime)s | POED | %(levelname)s | %(message)s"

NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

# syslog level names as used in the config file
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": NOTICE,
    "warning": logging.WARNING,
    "err": logging.ERROR,
    "crit": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emerg": logging.CRITICAL,
}

log = logging.getLogger("poed")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def log_level(name: str) -> int:
    return LOG_LEVELS.get(str(name).strip().lower(), logging.INFO)


def setup_logging(level_name: str = "info", use_syslog: bool = False) -> None:
    logging.basicConfig(level=log_level(level_name), format=LOG_FORMAT, force=True)
    if use_syslog:
        try:
            handler = logging.handlers.SysLogHandler(
                address="/dev/log",
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
        except OSError as ex:
            log.warning(f"Syslog is not available: {ex}")
            return
        handler.setFormatter(logging.Formatter(f"{PROGRAM}[%(process)d]: %(levelname)s %(message)s"))
        logging.getLogger().addHandler(handler)


# ---------------------------------------------------------------------------
# Running instance detection
# ---------------------------------------------------------------------------

def _is_poed_process(name: str, cmdline: Sequence[str]) -> bool:
    """A running daemon; ``--get-all`` queries are not daemons."""
    args = list(cmdline or [])
    if any(arg in ("-g", "--get-all") for arg in args):
        return False
    if name == PROGRAM:
        return True
    if args and os.path.basename(args[0]) == PROGRAM:
        return True
    interpreter = os.path.basename(args[0]) if args else ""
    if not interpreter.startswith("python"):
        return False
    if len(args) > 1 and os.path.basename(args[1]) == PROGRAM:
        return True
    return any(a == "-m" and b == PROGRAM for a, b in zip(args, args[1:]))


def find_running_instances() -> List[int]:
    """PIDs of other poed processes."""
    own_pid = os.getpid()
    found = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            info = proc.info
            if info["pid"] == own_pid:
                continue
            if _is_poed_process(info.get("name") or "", info.get("cmdline") or []):
                found.append(info["pid"])
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return found


# ---------------------------------------------------------------------------
# Daemon
# ---------------------------------------------------------------------------

class Daemon:
    """Owns both workers and the shared lock / stop event."""

    def __init__(self, config: DaemonConfig, controllers: List[PoeController],
                 monitor_period_s: Optional[float] = None):
        self.config = config
        self.controllers = controllers
        self.lock = threading.RLock()
        self.stop_event = threading.Event()
        period = monitor_period_s if monitor_period_s is not None else config.general.monitor_period_s
        self.loop = BudgetLoop(controllers, self.lock, period, self.stop_event)
        self.server: Optional[UnixSocketServer] = None
        if config.general.unix_socket_enable:
            self.server = UnixSocketServer(
                config.general.unix_socket_path,
                partial(locked_snapshot, controllers, self.lock),
                recv_timeout_s=config.general.socket_timeout_s,
                stop_event=self.stop_event,
            )
        self.threads: List[threading.Thread] = []

    def start(self) -> None:
        if self.server is not None:
            self.threads.append(self.server.start())
        self.threads.append(self.loop.start())
        log.info(f"Daemon started, monitor period {self.loop.interval_s}s")

    def stop(self) -> None:
        self.stop_event.set()
        for t in self.threads:
            t.join(timeout=5)

    def wait(self) -> int:
        """Block until the stop event is set; return the process exit code."""
        try:
            while not self.stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:
            log.info("Ctrl-C received, shutting down.")
        self.stop()
        if self.loop.error is not None:
            log.error("Daemon is shutting down after a fatal error")
            return 1
        log.info("Daemon is shutting down")
        return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog=PROGRAM, description="PoE port budget control daemon")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH,
                        help=f"Path to the YAML config file (default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("-p", "--monitor-period", type=float, default=None, metavar="SECONDS",
                        help="PoE ports monitoring period in seconds (overrides config)")
    parser.add_argument("-t", "--test", action="store_true",
                        help="Enable test mode that emulates PoE ports data")
    parser.add_argument("-g", "--get-all", action="store_true",
                        help="Print all PoE data of the running daemon in JSON format")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)
    if args.monitor_period is not None and args.monitor_period <= 0:
        parser.error("--monitor-period must be positive")
    return args


def _query_running_daemon(config: DaemonConfig, running: List[int]) -> int:
    if not config.general.unix_socket_enable:
        log.error("Using of unix socket server is disabled in config file, exiting")
        print("Using of unix socket server is disabled in config file, exiting", file=sys.stderr)
        return 1
    if not running:
        log.error("Running instance of daemon was not found")
        print("Running instance of daemon was not found, start it before request PoE data",
              file=sys.stderr)
        return 1
    response = get_all(config.general.unix_socket_path)
    log.debug(f"Requested data result: {response}")
    print(response)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("info")

    try:
        config = parse_config(load_config(args.config))
    except PoedError as ex:
        log.error(f"Configuration is not valid: {ex}")
        return 1

    setup_logging(config.general.log_level, config.general.syslog)
    running = find_running_instances()

    if args.get_all:
        return _query_running_daemon(config, running)

    if running:
        log.error(f"Attempt to start the daemon while it's already working (pids {running})")
        print("Attempt to start the instance of the daemon while it's already working", file=sys.stderr)
        return 1

    hardware = SysfsHardware()
    try:
        if args.test:
            log.info("PoE daemon working in test mode, skip hardware validation")
        else:
            validate_hardware(config, hardware)
        controllers = build_controllers(config, hardware, test_mode=args.test)
    except PoedError as ex:
        log.error(f"Startup failed: {ex}")
        return 1

    daemon = Daemon(config, controllers, args.monitor_period)
    signal.signal(signal.SIGTERM, lambda signum, frame: daemon.stop_event.set())
    try:
        daemon.start()
    except OSError as ex:
        log.error(f"Failed to start IPC server on {config.general.unix_socket_path}: {ex}")
        daemon.stop()
        return 1
    return daemon.wait()


if __name__ == "__main__":
    sys.exit(main())
