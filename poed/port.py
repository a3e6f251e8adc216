"""
Port and controller records.

A PoeController owns a fixed, index-addressed list of PoePort objects.  The
records are built once at startup; afterwards only telemetry and the three
control flags change:

    enable_flag      supply is currently energized
    enable_perm      port may be re-admitted automatically after an eviction
    overbudget_flag  port was switched off for breaking its own or the
                     controller budget

Telemetry comes either from the controller's sysfs files (live mode) or
from the port's simulator (test mode).  Both produce the same two text
lines per port, parsed by the same code.
"""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional

from poed import hardware as hw
from poed.errors import ConfigError, ControlError, TelemetryError, UnknownStateError
from poed.simulator import PortSimulator
from poed.states import DetectionState, PortMode

log = logging.getLogger(__name__)


class PoePort:
    def __init__(
        self,
        controller_path: str,
        name: str,
        index: int,
        budget: float,
        priority: int,
        *,
        test_mode: bool = False,
        hardware: Optional[hw.SysfsHardware] = None,
        simulator: Optional[PortSimulator] = None,
    ):
        self.controller_path = controller_path
        self.name = name
        self.index = index
        self._budget = float(budget)
        self._priority = int(priority)
        self.test_mode = test_mode
        self.hardware = hardware if hardware is not None else hw.SysfsHardware()
        self.simulator = simulator if simulator is not None else PortSimulator()

        self.mode = PortMode.OFF
        self.voltage = 0.0
        self.current = 0.0
        self.power = 0.0
        self.state = DetectionState.NONE
        self.mode_token = ""
        self.load_class = ""

        self.enable_flag = False
        self.enable_perm = False
        self.overbudget_flag = False

    @property
    def budget(self) -> float:
        return self._budget

    @property
    def priority(self) -> int:
        return self._priority

    def __repr__(self) -> str:
        return (f"PoePort({self.controller_path}#{self.index} {self.name!r} "
                f"prio={self.priority} {self.power:.2f}/{self.budget:.2f}W "
                f"enabled={self.enable_flag} overbudget={self.overbudget_flag})")

    # ------------------------------------------------------------------
    # Telemetry
    # ------------------------------------------------------------------

    def _raw_lines(self):
        if self.test_mode:
            sample = self.simulator.sample()
            if sample is None:
                raise TelemetryError(
                    f"There is no simulated data for port {self.index} "
                    f"of controller {self.controller_path}")
            return sample

        port_info = self.hardware.read(self.controller_path, hw.PORT_INFO)
        port_status = self.hardware.read(self.controller_path, hw.PORT_STATUS)
        return (hw.line_by_index(port_info, self.index),
                hw.line_by_index(port_status, self.index))

    def refresh(self) -> None:
        """Pull one sample and update voltage, current, power and state."""
        params_line, status_line = self._raw_lines()

        voltage_str = hw.token_by_index(params_line, hw.INFO_VOLTAGE)
        current_str = hw.token_by_index(params_line, hw.INFO_CURRENT)
        state_str = hw.token_by_index(status_line, hw.STATUS_STATE)
        try:
            voltage = float(voltage_str)
            current = float(current_str)
        except ValueError as ex:
            raise TelemetryError(
                f"Bad telemetry for port {self.index} of controller "
                f"{self.controller_path}: {params_line!r}") from ex
        try:
            state = DetectionState.from_label(state_str)
        except ValueError as ex:
            raise UnknownStateError(
                f"Unknown detection state {state_str!r} for port {self.index} "
                f"of controller {self.controller_path}") from ex

        self.mode_token = hw.token_by_index(params_line, hw.INFO_MODE)
        self.load_class = hw.token_by_index(status_line, hw.STATUS_LOAD_CLASS)
        self.voltage = voltage
        self.current = current
        self.power = voltage * current
        self.state = state

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def power_off(self) -> None:
        if self.test_mode:
            self.simulator.turn_off()
            log.debug(f"Simulated PoE port {self.index} power off, controller {self.controller_path}")
        else:
            self.hardware.write(self.controller_path, hw.PORT_POWER_OFF, str(self.index))
            log.debug(f"PoE port {self.index} power off, controller {self.controller_path}")
        self.enable_flag = False

    def power_on(self) -> None:
        if self.test_mode:
            self.simulator.turn_on()
            log.debug(f"Simulated PoE port {self.index} power on, controller {self.controller_path}")
        else:
            self.hardware.write(self.controller_path, hw.PORT_POWER_ON, str(self.index))
            log.debug(f"PoE port {self.index} power on, controller {self.controller_path}")
        self.enable_flag = True

    def _write_mode(self, directive: str) -> None:
        if self.test_mode:
            return
        self.hardware.write(self.controller_path, hw.PORT_MODE, f"{self.index}{directive}")

    def set_mode(self, mode: PortMode) -> None:
        """Switch the port off, program the new mode and switch it back on."""
        log.info(f"Set mode {mode.value} for PoE port {self.index}, controller {self.controller_path}")
        self.power_off()

        if mode == PortMode.OFF:
            self.mode = mode
            return
        if mode == PortMode.AUTO:
            self._write_mode("auto")
        elif mode == PortMode.MANUAL_48V:
            self._write_mode("manual")
        else:
            raise ControlError(f"Mode {mode.value} is not supported (port {self.index}, "
                               f"controller {self.controller_path})")

        self.power_on()
        self.mode = mode


class PoeController:
    def __init__(self, path: str, total_budget: float, port_count: int):
        if port_count < 1:
            raise ConfigError(f"Controller {path} must have at least one port")
        self.path = path
        self.total_budget = float(total_budget)
        self._ports: List[Optional[PoePort]] = [None] * port_count

    def __repr__(self) -> str:
        return f"PoeController({self.path!r}, budget={self.total_budget}W, ports={len(self._ports)})"

    def __len__(self) -> int:
        return len(self._ports)

    def __iter__(self) -> Iterator[PoePort]:
        return iter(self.ports)

    def __getitem__(self, index: int) -> PoePort:
        return self.ports[index]

    def add_port(self, port: PoePort) -> None:
        if not 0 <= port.index < len(self._ports):
            raise ConfigError(f"Port {port.name!r} has index {port.index}, controller "
                              f"{self.path} has {len(self._ports)} ports")
        if self._ports[port.index] is not None:
            raise ConfigError(f"Port index {port.index} of controller {self.path} "
                              f"is configured twice")
        self._ports[port.index] = port

    def validate(self) -> None:
        missing = [i for i, p in enumerate(self._ports) if p is None]
        if missing:
            raise ConfigError(f"Controller {self.path} has no configuration for ports {missing}")

    @property
    def ports(self) -> List[PoePort]:
        self.validate()
        return self._ports  # type: ignore[return-value]

    def refresh(self) -> None:
        for port in self.ports:
            port.refresh()

    def lowest_priority_port(self) -> Optional[PoePort]:
        """Enabled port with the largest priority value, first one on ties."""
        chosen = None
        for port in self.ports:
            if not port.enable_flag:
                continue
            if chosen is None or port.priority > chosen.priority:
                chosen = port
        return chosen
