"""Shared test configuration and fixtures.

No PoE hardware is available in the test environment, so ports read their
telemetry from FakeHardware: an in-memory stand-in for the controller sysfs
directories that renders port_info / port_status from per-port values and
records every control write.
"""
import shutil
import tempfile

import pytest

from poed import hardware as hw
from poed.errors import ControlError, TelemetryError
from poed.port import PoeController, PoePort
from poed.states import DetectionState, PortMode

VOLTAGE = 50.0


class FakeHardware:
    """Duck-typed replacement for SysfsHardware."""

    def __init__(self):
        self.ports = {}
        self.writes = []
        self.fail_reads = set()
        self.fail_writes = set()

    def add_controller(self, path, port_count):
        self.ports[path] = [
            {"mode": "auto", "voltage": 0.0, "current": 0.0,
             "state": DetectionState.OPEN.value, "load_class": "0(Unknown)"}
            for _ in range(port_count)
        ]

    def set_port(self, path, index, *, power=None, state=None, voltage=None, current=None):
        port = self.ports[path][index]
        if power is not None:
            port["voltage"] = VOLTAGE
            port["current"] = power / VOLTAGE
        if voltage is not None:
            port["voltage"] = voltage
        if current is not None:
            port["current"] = current
        if state is not None:
            port["state"] = state.value if isinstance(state, DetectionState) else state

    def read(self, controller_path, name):
        if (controller_path, name) in self.fail_reads or controller_path not in self.ports:
            raise TelemetryError(f"Path {controller_path}/{name} can not be opened")
        ports = self.ports[controller_path]
        if name == hw.PORT_INFO:
            lines = ["# name mode voltage current\n"]
            lines += [f"{i} eth{i} {p['mode']} {p['voltage']!r} {p['current']!r}\n"
                      for i, p in enumerate(ports)]
        elif name == hw.PORT_STATUS:
            lines = ["# name det_st class\n"]
            lines += [f"{i} eth{i} {p['state']} {p['load_class']}\n"
                      for i, p in enumerate(ports)]
        else:
            raise TelemetryError(f"Path {controller_path}/{name} is write only")
        return "".join(lines)

    def write(self, controller_path, name, value):
        if (controller_path, name) in self.fail_writes:
            raise ControlError(f"Path {controller_path}/{name} can not be opened")
        self.writes.append((controller_path, name, value))

    def writes_to(self, name):
        return [value for _, n, value in self.writes if n == name]


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------

CONTROLLER_PATH = "/sys/bus/i2c/devices/i2c-8/8-002c"


@pytest.fixture
def fake_hw():
    return FakeHardware()


@pytest.fixture
def make_controller(fake_hw):
    """
    Build a live-mode controller backed by fake_hw.

    ``ports`` is a list of (budget, priority) or (budget, priority, mode)
    tuples; every port gets its mode applied, so AUTO ports start enabled.
    """
    def _make(total_budget, ports, path=CONTROLLER_PATH):
        fake_hw.add_controller(path, len(ports))
        controller = PoeController(path, total_budget, len(ports))
        for index, spec in enumerate(ports):
            budget, priority = spec[0], spec[1]
            mode = spec[2] if len(spec) > 2 else PortMode.AUTO
            port = PoePort(path, f"eth{index}", index, budget, priority, hardware=fake_hw)
            port.set_mode(mode)
            controller.add_port(port)
        fake_hw.writes.clear()
        return controller

    return _make


@pytest.fixture
def socket_path():
    """Unix socket path short enough for AF_UNIX (pytest tmp_path can be too long)."""
    directory = tempfile.mkdtemp(prefix="poed-")
    yield f"{directory}/poed.sock"
    shutil.rmtree(directory, ignore_errors=True)
