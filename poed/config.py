"""
Daemon configuration (YAML).

    general:
      log_level: debug
      syslog: false
      unix_socket_enable: true
      unix_socket_path: /var/run/poed.sock
      monitor_period_s: 1.0
      socket_timeout_s: 30.0
    controllers:
      - {path: /sys/bus/i2c/devices/i2c-8/8-002c, ports: 4, total_power_budget: 120}
    ports:
      - {name: eth9, controller: 0, port_number: 0, power_budget: 15, mode: AUTO, priority: 1}

Ports reference their controller by position in ``controllers``.  Loading
is split in three steps so each can be tested on its own:

    load_config()        file -> raw dict (writes the default file if missing)
    parse_config()       raw dict -> DaemonConfig, ConfigError on any problem
    build_controllers()  DaemonConfig -> PoeController records, modes applied
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from poed import hardware as hw
from poed.errors import ConfigError, TelemetryError
from poed.port import PoeController, PoePort
from poed.simulator import default_port_simulator
from poed.states import PortMode

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/poed/poed.yaml"

CONTROLLER_KEYS = ("path", "ports", "total_power_budget")
PORT_KEYS = ("name", "controller", "port_number", "power_budget", "mode", "priority")


@dataclass
class GeneralConfig:
    log_level: str = "info"
    syslog: bool = False
    unix_socket_enable: bool = True
    unix_socket_path: str = "/var/run/poed.sock"
    monitor_period_s: float = 1.0
    socket_timeout_s: float = 30.0


@dataclass(frozen=True)
class ControllerConfig:
    path: str
    ports: int
    total_power_budget: float


@dataclass(frozen=True)
class PortConfig:
    name: str
    controller: int
    port_number: int
    power_budget: float
    mode: PortMode
    priority: int


@dataclass
class DaemonConfig:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    controllers: List[ControllerConfig] = field(default_factory=list)
    ports: List[PortConfig] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Default file
# ---------------------------------------------------------------------------

def default_config() -> Dict[str, Any]:
    """Two 4-port controllers, 120 W each, 15 W AUTO ports."""
    controllers = [
        {"path": "/sys/bus/i2c/devices/i2c-8/8-002c", "ports": 4, "total_power_budget": 120},
        {"path": "/sys/bus/i2c/devices/i2c-8/8-000c", "ports": 4, "total_power_budget": 120},
    ]
    ports = []
    for i in range(8):
        ports.append({
            "name": f"eth{9 + i}",
            "controller": i // 4,
            "port_number": i % 4,
            "power_budget": 15,
            "mode": "AUTO",
            "priority": 1 if i == 0 else 2,
        })
    return {
        "general": {
            "log_level": "debug",
            "syslog": False,
            "unix_socket_enable": True,
            "unix_socket_path": "/var/run/poed.sock",
            "monitor_period_s": 1.0,
            "socket_timeout_s": 30.0,
        },
        "controllers": controllers,
        "ports": ports,
    }


def write_default_config(path: str) -> Dict[str, Any]:
    data = default_config()
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        f.write("# System settings for poed\n")
        yaml.safe_dump(data, f, sort_keys=False)
    log.info(f"Default config generated at {path}")
    return data


def load_config(path: str, create_default: bool = True) -> Dict[str, Any]:
    if not Path(path).exists():
        if not create_default:
            raise ConfigError(f"Configuration file {path} doesn't exist")
        log.error(f"Configuration {path} doesn't exist, create default one")
        try:
            return write_default_config(path)
        except OSError as ex:
            raise ConfigError(f"Failed to create default config at {path}: {ex}") from ex
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as ex:
        raise ConfigError(f"Configuration import error ({path}): {ex}") from ex
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {path} must be a mapping")
    return data


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _require(section: Dict[str, Any], keys, where: str) -> None:
    if not isinstance(section, dict):
        raise ConfigError(f"{where} must be a mapping")
    for key in keys:
        value = section.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ConfigError(f"Missing or empty option '{key}' in {where}")


def _number(value: Any, kind, where: str, key: str):
    if isinstance(value, bool):
        raise ConfigError(f"Option '{key}' in {where} must be a number, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as ex:
        raise ConfigError(f"Option '{key}' in {where} must be a number, got {value!r}") from ex


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return value is True or value == 1


def _parse_general(raw: Any) -> GeneralConfig:
    if raw is None:
        return GeneralConfig()
    if not isinstance(raw, dict):
        raise ConfigError("Section 'general' must be a mapping")
    general = GeneralConfig()
    if "log_level" in raw:
        general.log_level = str(raw["log_level"])
    if "syslog" in raw:
        general.syslog = _flag(raw["syslog"])
    if "unix_socket_enable" in raw:
        general.unix_socket_enable = _flag(raw["unix_socket_enable"])
    if "unix_socket_path" in raw:
        general.unix_socket_path = str(raw["unix_socket_path"])
    if "monitor_period_s" in raw:
        general.monitor_period_s = _number(raw["monitor_period_s"], float, "general", "monitor_period_s")
    if "socket_timeout_s" in raw:
        general.socket_timeout_s = _number(raw["socket_timeout_s"], float, "general", "socket_timeout_s")
    if general.monitor_period_s <= 0:
        raise ConfigError("Option 'monitor_period_s' in general must be positive")
    return general


def parse_config(raw: Dict[str, Any]) -> DaemonConfig:
    config = DaemonConfig(general=_parse_general(raw.get("general")))

    raw_controllers = raw.get("controllers")
    if not raw_controllers or not isinstance(raw_controllers, list):
        raise ConfigError("Section 'controllers' is required but not found")
    for i, item in enumerate(raw_controllers):
        where = f"controller {i}"
        _require(item, CONTROLLER_KEYS, where)
        ctrl = ControllerConfig(
            path=str(item["path"]),
            ports=_number(item["ports"], int, where, "ports"),
            total_power_budget=_number(item["total_power_budget"], float, where, "total_power_budget"),
        )
        if ctrl.ports < 1:
            raise ConfigError(f"Controller {i} must have at least one port")
        if ctrl.total_power_budget < 0:
            raise ConfigError(f"Controller {i} has a negative power budget")
        config.controllers.append(ctrl)

    raw_ports = raw.get("ports")
    if not raw_ports or not isinstance(raw_ports, list):
        raise ConfigError("Section 'ports' is required but not found")
    seen = set()
    for i, item in enumerate(raw_ports):
        where = f"port {i}"
        _require(item, PORT_KEYS, where)
        # YAML 1.1 reads a bare OFF as false
        label = "OFF" if item["mode"] is False else str(item["mode"])
        try:
            mode = PortMode.from_label(label)
        except ValueError as ex:
            raise ConfigError(f"Invalid PoE mode {item['mode']!r} in {where}") from ex
        port = PortConfig(
            name=str(item["name"]),
            controller=_number(item["controller"], int, where, "controller"),
            port_number=_number(item["port_number"], int, where, "port_number"),
            power_budget=_number(item["power_budget"], float, where, "power_budget"),
            mode=mode,
            priority=_number(item["priority"], int, where, "priority"),
        )
        if not 0 <= port.controller < len(config.controllers):
            raise ConfigError(f"Port {i} has wrong controller index {port.controller}")
        if not 0 <= port.port_number < config.controllers[port.controller].ports:
            raise ConfigError(f"Port {i} has wrong index {port.port_number} in controller {port.controller}")
        if port.power_budget < 0:
            raise ConfigError(f"Port {i} has a negative power budget")
        key = (port.controller, port.port_number)
        if key in seen:
            raise ConfigError(f"Port {port.port_number} of controller {port.controller} is configured twice")
        seen.add(key)
        config.ports.append(port)

    for i, ctrl in enumerate(config.controllers):
        missing = [n for n in range(ctrl.ports) if (i, n) not in seen]
        if missing:
            raise ConfigError(f"Controller {i} has no configuration for ports {missing}")

    return config


def validate_hardware(config: DaemonConfig, hardware: hw.SysfsHardware) -> None:
    """Each controller must expose exactly as many ports as configured."""
    for ctrl in config.controllers:
        log.debug(f"Check PoE controller path {ctrl.path}")
        try:
            port_info = hardware.read(ctrl.path, hw.PORT_INFO)
        except TelemetryError as ex:
            raise ConfigError(str(ex)) from ex
        found = hw.count_ports(port_info)
        if found != ctrl.ports:
            raise ConfigError(f"Controller {ctrl.path} has wrong ports number, "
                              f"in config: {ctrl.ports}, in fact: {found}")
    log.info("Configuration is valid")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

def build_controllers(
    config: DaemonConfig,
    hardware: Optional[hw.SysfsHardware] = None,
    test_mode: bool = False,
    rng: Optional[random.Random] = None,
) -> List[PoeController]:
    """Create the records and program every port's configured mode."""
    hardware = hardware if hardware is not None else hw.SysfsHardware()
    controllers = [PoeController(c.path, c.total_power_budget, c.ports) for c in config.controllers]

    for pc in config.ports:
        controller = controllers[pc.controller]
        port = PoePort(
            controller.path, pc.name, pc.port_number, pc.power_budget, pc.priority,
            test_mode=test_mode,
            hardware=hardware,
            simulator=default_port_simulator(pc.mode, rng),
        )
        port.set_mode(pc.mode)
        controller.add_port(port)

    for controller in controllers:
        controller.validate()
    return controllers
