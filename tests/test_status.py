"""Tests for the status snapshot."""
import json
import threading

import pytest

from poed.status import build_snapshot, controller_status, locked_snapshot, port_status
from poed.states import DetectionState, PortMode

from conftest import CONTROLLER_PATH

PORT_KEYS = {
    "name", "index", "priority", "voltage", "current", "power", "budget",
    "state", "mode", "load_class", "enable_flag", "overbudget_flag",
}


@pytest.fixture
def controller(fake_hw, make_controller):
    ctrl = make_controller(60, [(15, 1), (30, 2, PortMode.MANUAL_48V)])
    fake_hw.set_port(CONTROLLER_PATH, 0, voltage=48.0, current=0.25, state=DetectionState.DET_OK)
    fake_hw.set_port(CONTROLLER_PATH, 1, voltage=50.0, current=0.5, state=DetectionState.OPEN)
    ctrl.refresh()
    return ctrl


class TestSnapshot:

    def test_port_fields(self, controller):
        status = port_status(controller[0])
        assert set(status) == PORT_KEYS
        assert status["name"] == "eth0"
        assert status["index"] == 0
        assert status["priority"] == 1
        assert status["budget"] == 15.0
        assert status["power"] == 12.0
        assert status["state"] == "4(DET_OK)"
        assert status["mode"] == "AUTO"
        assert status["enable_flag"] is True
        assert status["overbudget_flag"] is False

    def test_manual_mode_label(self, controller):
        assert port_status(controller[1])["mode"] == "48V"
        assert port_status(controller[1])["state"] == "6(OPEN)"

    def test_controller_totals(self, controller):
        status = controller_status(controller)
        assert status["total_budget"] == 60.0
        assert status["total_power"] == pytest.approx(37.0)
        assert [p["index"] for p in status["ports"]] == [0, 1]

    def test_snapshot_is_json_serializable(self, controller):
        snapshot = build_snapshot([controller])
        assert json.loads(json.dumps(snapshot)) == snapshot

    def test_snapshot_does_not_mutate_records(self, fake_hw, controller):
        before = [(p.enable_flag, p.overbudget_flag, p.power) for p in controller]
        build_snapshot([controller])
        assert [(p.enable_flag, p.overbudget_flag, p.power) for p in controller] == before
        assert fake_hw.writes == []

    def test_locked_snapshot_waits_for_the_lock(self, controller):
        lock = threading.RLock()
        result = []
        lock.acquire()
        reader = threading.Thread(target=lambda: result.append(locked_snapshot([controller], lock)))
        reader.start()
        reader.join(timeout=0.2)
        assert result == []
        lock.release()
        reader.join(timeout=2)
        assert len(result) == 1
