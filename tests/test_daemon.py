"""Tests for the daemon entry point: CLI, instance detection, lifecycle."""
import logging
import random
import threading
import time

import psutil
import pytest
import yaml

from poed import daemon
from poed import hardware as hw
from poed.config import build_controllers, default_config, parse_config
from poed.errors import TelemetryError


class _FakeProc:
    def __init__(self, pid, name, cmdline):
        self.info = {"pid": pid, "name": name, "cmdline": cmdline}


class _VanishedProc:
    @property
    def info(self):
        raise psutil.NoSuchProcess(4242)


@pytest.fixture
def quiet_logging(monkeypatch):
    monkeypatch.setattr(daemon, "setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def config_file(tmp_path, socket_path):
    raw = default_config()
    raw["general"]["unix_socket_path"] = socket_path
    path = tmp_path / "poed.yaml"
    path.write_text(yaml.safe_dump(raw))
    return str(path)


class TestLogging:

    @pytest.mark.parametrize("name,level", [
        ("debug", logging.DEBUG),
        ("info", logging.INFO),
        ("notice", daemon.NOTICE),
        ("NOTICE", daemon.NOTICE),
        ("warning", logging.WARNING),
        ("err", logging.ERROR),
        ("crit", logging.CRITICAL),
        ("emerg", logging.CRITICAL),
        ("chatty", logging.INFO),
    ])
    def test_syslog_level_names(self, name, level):
        assert daemon.log_level(name) == level

    def test_notice_level_name(self):
        assert logging.getLevelName(daemon.NOTICE) == "NOTICE"


# ---------------------------------------------------------------------------
# Instance detection
# ---------------------------------------------------------------------------

class TestInstanceDetection:

    @pytest.mark.parametrize("name,cmdline,expected", [
        ("poed", ["poed"], True),
        ("python3", ["/usr/bin/python3", "/usr/local/bin/poed", "--test"], True),
        ("python3", ["python3", "-m", "poed", "-c", "/etc/poed.yaml"], True),
        ("python3", ["python3", "-m", "pytest"], False),
        ("bash", ["bash", "-c", "echo poed"], False),
        ("poedit", ["poedit"], False),
        ("", [], False),
        ("less", ["less", "poed"], False),
        ("vim", ["vim", "/etc/poed/poed"], False),
        ("poed", ["poed", "-g"], False),
        ("python3", ["/usr/bin/python3", "/usr/local/bin/poed", "--get-all"], False),
        ("python3", ["python3", "-m", "poed", "-c", "x.yaml", "-g"], False),
    ])
    def test_is_poed_process(self, name, cmdline, expected):
        assert daemon._is_poed_process(name, cmdline) is expected

    def test_find_running_instances_skips_own_pid(self, monkeypatch):
        procs = [
            _FakeProc(100, "poed", ["poed"]),
            _FakeProc(daemon.os.getpid(), "poed", ["poed"]),
            _FakeProc(101, "sshd", ["sshd"]),
            _VanishedProc(),
            _FakeProc(102, "python3", ["python3", "-m", "poed"]),
        ]
        monkeypatch.setattr(daemon.psutil, "process_iter", lambda attrs: iter(procs))
        assert daemon.find_running_instances() == [100, 102]

    def test_concurrent_query_is_not_a_running_daemon(self, monkeypatch):
        procs = [
            _FakeProc(100, "python3", ["/usr/bin/python3", "/usr/local/bin/poed", "--get-all"]),
            _FakeProc(101, "less", ["less", "poed"]),
        ]
        monkeypatch.setattr(daemon.psutil, "process_iter", lambda attrs: iter(procs))
        assert daemon.find_running_instances() == []


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestParseArgs:

    def test_defaults(self):
        args = daemon.parse_args([])
        assert args.config == "/etc/poed/poed.yaml"
        assert args.monitor_period is None
        assert not args.test
        assert not args.get_all

    def test_short_flags(self):
        args = daemon.parse_args(["-c", "x.yaml", "-p", "0.5", "-t", "-g"])
        assert (args.config, args.monitor_period, args.test, args.get_all) == ("x.yaml", 0.5, True, True)

    def test_period_must_be_positive(self):
        with pytest.raises(SystemExit):
            daemon.parse_args(["-p", "0"])


class TestMain:

    def test_invalid_config(self, tmp_path, quiet_logging):
        path = tmp_path / "poed.yaml"
        path.write_text("controllers: []\nports: []\n")
        assert daemon.main(["-c", str(path)]) == 1

    def test_second_instance_is_refused(self, config_file, quiet_logging, monkeypatch, capsys):
        monkeypatch.setattr(daemon, "find_running_instances", lambda: [100])
        assert daemon.main(["-c", config_file, "-t"]) == 1
        assert "already working" in capsys.readouterr().err

    def test_get_all_without_running_daemon(self, config_file, quiet_logging, monkeypatch, capsys):
        monkeypatch.setattr(daemon, "find_running_instances", lambda: [])
        assert daemon.main(["-c", config_file, "-g"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_get_all_with_socket_disabled(self, tmp_path, quiet_logging, monkeypatch, capsys):
        raw = default_config()
        raw["general"]["unix_socket_enable"] = False
        path = tmp_path / "poed.yaml"
        path.write_text(yaml.safe_dump(raw))
        monkeypatch.setattr(daemon, "find_running_instances", lambda: [100])
        assert daemon.main(["-c", str(path), "-g"]) == 1
        assert "disabled" in capsys.readouterr().err

    def test_get_all_prints_the_response(self, config_file, quiet_logging, monkeypatch, capsys):
        monkeypatch.setattr(daemon, "find_running_instances", lambda: [100])
        monkeypatch.setattr(daemon, "get_all", lambda path: '{"msg_type": "response"}')
        assert daemon.main(["-c", config_file, "-g"]) == 0
        assert capsys.readouterr().out.strip() == '{"msg_type": "response"}'

    def test_live_start_checks_the_hardware(self, config_file, quiet_logging, monkeypatch):
        monkeypatch.setattr(daemon, "find_running_instances", lambda: [])
        # /sys/bus/i2c/... of the default config does not exist here
        assert daemon.main(["-c", config_file]) == 1


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class TestDaemon:

    def test_simulated_run_and_signal_shutdown(self, socket_path):
        raw = default_config()
        raw["general"]["unix_socket_path"] = socket_path
        config = parse_config(raw)
        controllers = build_controllers(config, test_mode=True, rng=random.Random(9))

        d = daemon.Daemon(config, controllers, monitor_period_s=0.01)
        d.start()
        assert _wait_for(lambda: d.loop.cycles >= 3)
        assert daemon.os.path.exists(socket_path)

        threading.Timer(0.05, d.stop_event.set).start()
        assert d.wait() == 0
        assert not daemon.os.path.exists(socket_path)
        assert all(not t.is_alive() for t in d.threads)

    def test_fatal_error_exit_code(self, fake_hw):
        raw = default_config()
        raw["general"]["unix_socket_enable"] = False
        config = parse_config(raw)
        controllers = build_controllers(config, fake_hw)
        fake_hw.add_controller(config.controllers[0].path, 4)
        fake_hw.fail_reads.add((config.controllers[0].path, hw.PORT_INFO))

        d = daemon.Daemon(config, controllers, monitor_period_s=0.01)
        assert d.server is None
        d.start()
        assert d.wait() == 1
        assert isinstance(d.loop.error, TelemetryError)

    def test_unexpected_exception_exit_code(self, fake_hw, monkeypatch):
        raw = default_config()
        raw["general"]["unix_socket_enable"] = False
        config = parse_config(raw)
        controllers = build_controllers(config, fake_hw)

        def broken_read(controller_path, name):
            raise RuntimeError("boom")

        monkeypatch.setattr(fake_hw, "read", broken_read)
        d = daemon.Daemon(config, controllers, monitor_period_s=0.01)
        d.start()
        assert d.wait() == 1
        assert isinstance(d.loop.error, RuntimeError)

    def test_monitor_period_override(self):
        config = parse_config(default_config())
        d = daemon.Daemon(config, [], monitor_period_s=0.25)
        assert d.loop.interval_s == 0.25
        assert daemon.Daemon(config, []).loop.interval_s == config.general.monitor_period_s
