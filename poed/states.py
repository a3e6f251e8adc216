"""
PoE port states and modes.

Detection states mirror the negotiation states reported by the PSE chip in
its port_status file, e.g. "0 eth14 6(OPEN) 0(Unknown)".  The enum values
ARE the wire labels, so label -> member is ``DetectionState(label)`` and
member -> label is ``member.value``.  Same for PortMode and the labels used
in the config file and in the IPC snapshot.
"""

from __future__ import annotations

from enum import Enum

# Deadband below the controller budget in which nothing is re-admitted.
HYSTERESIS_W = 5.0


class DetectionState(Enum):
    NONE = "0(NONE)"
    DCP = "1(DCP)"
    HIGH_CAP = "2(HIGH_CAP)"
    RLOW = "3(RLOW)"
    DET_OK = "4(DET_OK)"
    RHIGH = "5(RHIGH)"
    OPEN = "6(OPEN)"
    DCN = "7(DCN)"

    @classmethod
    def from_label(cls, label: str) -> "DetectionState":
        """Exact-match lookup; raises ValueError for anything unknown."""
        return cls(label)


class PortMode(Enum):
    OFF = "OFF"
    AUTO = "AUTO"
    MANUAL_48V = "48V"
    MANUAL_24V = "24V"

    @classmethod
    def from_label(cls, label: str) -> "PortMode":
        return cls(label.strip().upper())

    @property
    def is_manual(self) -> bool:
        return self in (PortMode.MANUAL_48V, PortMode.MANUAL_24V)


def _check_labels(enum_cls, expected_count: int) -> None:
    labels = [member.value for member in enum_cls]
    if len(labels) != expected_count or len(set(labels)) != len(labels):
        raise RuntimeError(f"{enum_cls.__name__} label table is inconsistent: {labels}")


_check_labels(DetectionState, 8)
_check_labels(PortMode, 4)
