"""
Budget admission controller.

Every cycle, per controller, in configuration order:
1. Refresh telemetry of every port.
2. Per-port cap: a port drawing more than its own budget is marked
   overbudget and switched off; its power is left out of the total.
3. Controller cap on the remaining total:
     total > budget                  -> evict ONE port (largest priority
                                        value among enabled ports)
     total + HYSTERESIS_W <= budget  -> re-admission pass (at most one port)
     otherwise                       -> stable band, nothing to do
4. Manual-mode workaround: enabled 48V/24V ports get power_on() again,
   the PSE drops power on manual ports that have no load.

Failure policy:
    No retries.  Any telemetry or control error propagates out of
    control_budgets(); BudgetLoop treats it, or any other exception, as
    fatal and sets the shared stop event so the whole daemon goes down.

Threading:
    BudgetLoop holds the shared record lock for a full cycle.  The IPC
    server takes the same lock to build a snapshot, so it never sees a
    half-updated controller.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from poed.errors import PoedError
from poed.port import PoeController, PoePort
from poed.states import HYSTERESIS_W, DetectionState

log = logging.getLogger(__name__)


@dataclass
class CycleResult:
    controller: PoeController
    total_power: float = 0.0
    capped: List[PoePort] = field(default_factory=list)
    evicted: Optional[PoePort] = None
    permitted: List[PoePort] = field(default_factory=list)
    readmitted: Optional[PoePort] = None


# ---------------------------------------------------------------------------
# Cycle steps
# ---------------------------------------------------------------------------

def _cap_ports(controller: PoeController, result: CycleResult) -> float:
    """Switch off ports over their own budget; return the sum of the rest."""
    total_power = 0.0
    for port in controller.ports:
        if port.power > port.budget:
            log.info(f"Port {port.index} of controller {controller.path} has overbudget: "
                     f"{port.power:.2f} W, while {port.budget:.2f} W is max. Turn off.")
            port.overbudget_flag = True
            port.power_off()
            result.capped.append(port)
            continue
        total_power += port.power
    return total_power


def _evict(controller: PoeController, result: CycleResult) -> None:
    port = controller.lowest_priority_port()
    if port is None:
        log.warning(f"Controller {controller.path} is over budget but has no enabled port to turn off")
        return
    log.info(f"Port {port.index} of controller {controller.path} has the lowest priority, turn it off")
    port.enable_perm = False
    port.overbudget_flag = True
    port.power_off()
    result.evicted = port


def readmit(controller: PoeController, result: CycleResult) -> Optional[PoePort]:
    """
    Two-stage re-admission.  An evicted port first has to be seen unplugged
    (OPEN) to earn enable_perm; it is switched back on only in a later
    cycle once something is attached again.  One port per cycle, best
    (smallest) priority value first.
    """
    candidate = None
    for port in controller.ports:
        if not port.overbudget_flag:
            continue
        if port.state == DetectionState.OPEN:
            if not port.enable_perm:
                result.permitted.append(port)
            port.enable_perm = True
        elif port.enable_perm:
            if candidate is None or port.priority < candidate.priority:
                candidate = port

    if candidate is not None:
        log.info(f"Enable {candidate.index} port of controller {controller.path}")
        candidate.power_on()
        candidate.overbudget_flag = False
        result.readmitted = candidate
    return candidate


def _reassert_manual_ports(controller: PoeController) -> None:
    for port in controller.ports:
        if port.enable_flag and port.mode.is_manual:
            port.power_on()


def control_controller(controller: PoeController) -> CycleResult:
    result = CycleResult(controller)
    controller.refresh()

    total_power = _cap_ports(controller, result)
    result.total_power = total_power

    if total_power > controller.total_budget:
        log.info(f"Ports of controller {controller.path} has overbudget: "
                 f"{total_power:.2f}, while {controller.total_budget:.2f} is max")
        _evict(controller, result)
    elif total_power + HYSTERESIS_W <= controller.total_budget:
        readmit(controller, result)

    _reassert_manual_ports(controller)
    return result


def control_budgets(controllers: Sequence[PoeController]) -> List[CycleResult]:
    """One monitoring cycle over every controller.  Raises PoedError on failure."""
    return [control_controller(controller) for controller in controllers]


# ---------------------------------------------------------------------------
# Background worker
# ---------------------------------------------------------------------------

class BudgetLoop:
    """Runs control_budgets() every ``interval_s`` until stopped or failed."""

    def __init__(
        self,
        controllers: Sequence[PoeController],
        lock: threading.RLock,
        interval_s: float,
        stop_event: Optional[threading.Event] = None,
    ):
        self.controllers = controllers
        self.lock = lock
        self.interval_s = interval_s
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.error: Optional[BaseException] = None
        self.cycles = 0
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> List[CycleResult]:
        with self.lock:
            results = control_budgets(self.controllers)
        self.cycles += 1
        return results

    def run(self) -> None:
        log.info(f"Budget loop running, interval={self.interval_s}s")
        while not self.stop_event.is_set():
            try:
                self.run_once()
            except PoedError as ex:
                log.critical(f"Budget control failed, shutting down: {ex}", exc_info=True)
                self.error = ex
                self.stop_event.set()
                return
            except Exception as ex:
                log.exception("Budget loop crashed, shutting down")
                self.error = ex
                self.stop_event.set()
                return
            self.stop_event.wait(self.interval_s)
        log.info("Budget loop stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None:
            return self._thread
        self._thread = threading.Thread(target=self.run, name="budget-loop", daemon=True)
        self._thread.start()
        return self._thread
