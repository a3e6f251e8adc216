"""
Hardware Reader/Writer for PSE controllers exposed through sysfs.

Each controller is a directory (e.g. /sys/bus/i2c/devices/i2c-8/8-002c)
holding one text file per function:

    port_info       read,  one line per port:  "0 eth14 auto 47.9 0.105"
    port_status     read,  one line per port:  "0 eth14 4(DET_OK) 6(0)"
    port_power_on   write, port index:         "2"
    port_power_off  write, port index:         "2"
    port_mode       write, index + directive:  "2auto" / "2manual"

Lines starting with '#' are comments and do not count as ports.  Tokens are
separated by one or more spaces.
"""

from __future__ import annotations

import logging
from pathlib import Path

from poed.errors import ControlError, TelemetryError

log = logging.getLogger(__name__)

PORT_INFO = "port_info"
PORT_STATUS = "port_status"
PORT_POWER_ON = "port_power_on"
PORT_POWER_OFF = "port_power_off"
PORT_MODE = "port_mode"

COMMENT_CHAR = "#"

# port_info tokens
INFO_MODE = 2
INFO_VOLTAGE = 3
INFO_CURRENT = 4

# port_status tokens
STATUS_STATE = 2
STATUS_LOAD_CLASS = 3


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def _is_data_line(line: str) -> bool:
    stripped = line.lstrip(" \t")
    return bool(stripped) and not stripped.startswith(COMMENT_CHAR)


def data_lines(content: str) -> list[str]:
    """Lines of a blob that describe ports (comments and blanks skipped)."""
    return [line for line in content.splitlines() if _is_data_line(line)]


def count_ports(content: str) -> int:
    return len(data_lines(content))


def line_by_index(content: str, index: int) -> str:
    """Return the index-th data line, or "" when there are fewer lines."""
    lines = data_lines(content)
    if 0 <= index < len(lines):
        return lines[index]
    return ""


def token_by_index(line: str, index: int) -> str:
    """Return the index-th space separated token, or "" if out of range."""
    tokens = line.split()
    if 0 <= index < len(tokens):
        return tokens[index]
    return ""


# ---------------------------------------------------------------------------
# Reader / writer
# ---------------------------------------------------------------------------

class SysfsHardware:
    """Reads telemetry blobs and writes control files under a controller path."""

    def read(self, controller_path: str, name: str) -> str:
        path = Path(controller_path) / name
        try:
            return path.read_text()
        except (OSError, UnicodeDecodeError) as ex:
            raise TelemetryError(f"Path {path} can not be opened: {ex}") from ex

    def write(self, controller_path: str, name: str, value: str) -> None:
        path = Path(controller_path) / name
        try:
            path.write_text(value)
        except OSError as ex:
            raise ControlError(f"Path {path} can not be opened: {ex}") from ex
        log.debug(f"[WRITE] {path} <- {value!r}")
