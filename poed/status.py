"""
Read-only snapshot of the records for the IPC server.

The caller must hold the record lock; nothing here mutates a record.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from poed.port import PoeController, PoePort


def port_status(port: PoePort) -> Dict[str, Any]:
    return {
        "name": port.name,
        "index": port.index,
        "priority": port.priority,
        "voltage": port.voltage,
        "current": port.current,
        "power": port.power,
        "budget": port.budget,
        "state": port.state.value,
        "mode": port.mode.value,
        "load_class": port.load_class,
        "enable_flag": port.enable_flag,
        "overbudget_flag": port.overbudget_flag,
    }


def controller_status(controller: PoeController) -> Dict[str, Any]:
    ports = [port_status(port) for port in controller.ports]
    return {
        "total_budget": controller.total_budget,
        "total_power": sum(p["power"] for p in ports),
        "ports": ports,
    }


def build_snapshot(controllers: Sequence[PoeController]) -> List[Dict[str, Any]]:
    return [controller_status(controller) for controller in controllers]


def locked_snapshot(controllers: Sequence[PoeController], lock) -> List[Dict[str, Any]]:
    """Snapshot taken while holding the record lock (used by the IPC worker)."""
    with lock:
        return build_snapshot(controllers)
