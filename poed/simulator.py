"""
Port simulator: scripted telemetry for running the daemon without PoE
hardware (test mode).

A port's simulated life is a list of profiles played back in order.  Each
profile produces a fixed number of samples and then reports exhaustion
(``None``); the port simulator moves on to the next profile and, after the
last one, restarts the whole script.  Samples are the two raw lines the
hardware prints for a port, so the parsing path is the same for live and
simulated ports:

    port_info:   "N ethX mode 47.6 0.153 \\n"
    port_status: "N ethX 4(DET_OK) 6(0) \\n"

Randomness:
- voltage is drawn uniformly within +-jitter of the profile's nominal value
- current is drawn uniformly within +-jitter of a running value, and the
  running value grows by ``current_step`` every sample (load ramps up)
"""

from __future__ import annotations

import random
from typing import List, Optional, Sequence, Tuple

from poed.states import DetectionState, PortMode

Sample = Tuple[str, str]

EPISODE_STEPS_MIN = 10
EPISODE_STEPS_MAX = 30


class SimProfile:
    def __init__(
        self,
        steps: int,
        voltage: float,
        voltage_jitter: float,
        current_init: float,
        current_jitter: float,
        current_step: float,
        state_label: str,
        load_class_label: str,
        enabled: bool = True,
        rng: Optional[random.Random] = None,
    ):
        self.steps = steps
        self.voltage = voltage
        self.voltage_jitter = voltage_jitter
        self.current_init = current_init
        self.current_jitter = current_jitter
        self.current_step = current_step
        self.state_label = state_label
        self.load_class_label = load_class_label
        self.enabled = enabled
        self._rng = rng if rng is not None else random.Random()

        self.step = 0
        self._current = current_init

    @property
    def exhausted(self) -> bool:
        return self.step >= self.steps

    def port_info_line(self) -> str:
        if self.enabled:
            v = self._rng.uniform(self.voltage - self.voltage_jitter,
                                  self.voltage + self.voltage_jitter)
            c = self._rng.uniform(self._current - self.current_jitter,
                                  self._current + self.current_jitter)
            self._current += self.current_step
        else:
            v = 0.0
            c = 0.0
        return f"N ethX mode {v:.1f} {c:.3f} \n"

    def port_status_line(self) -> str:
        return f"N ethX {self.state_label} {self.load_class_label} \n"

    def next_sample(self) -> Optional[Sample]:
        """Next (port_info, port_status) pair, or None once exhausted."""
        if self.exhausted:
            return None
        sample = (self.port_info_line(), self.port_status_line())
        self.step += 1
        return sample

    def restart(self) -> None:
        self.step = 0
        self._current = self.current_init

    def turn_on(self) -> None:
        self.enabled = True

    def turn_off(self) -> None:
        self.enabled = False


class PortSimulator:
    """Endless, restartable playback of a list of profiles."""

    def __init__(self, profiles: Sequence[SimProfile] = ()):
        self.profiles: List[SimProfile] = list(profiles)
        self.position = 0

    def add_profile(self, profile: SimProfile) -> None:
        self.profiles.append(profile)

    def sample(self) -> Optional[Sample]:
        """
        Next sample of the script.  Returns None only when no profile can
        produce anything (empty script or every profile has zero steps).
        """
        # Every profile is visited at most twice: once to drain it, once
        # more after a restart.
        for _ in range(2 * len(self.profiles) + 1):
            if not self.profiles:
                break
            result = self.profiles[self.position].next_sample()
            if result is not None:
                return result
            self.position += 1
            if self.position >= len(self.profiles):
                self.restart()
        return None

    def restart(self) -> None:
        self.position = 0
        for profile in self.profiles:
            profile.restart()

    def turn_on(self) -> None:
        for profile in self.profiles:
            profile.turn_on()
        self.restart()

    def turn_off(self) -> None:
        for profile in self.profiles:
            profile.turn_off()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def default_port_simulator(mode: PortMode, rng: Optional[random.Random] = None) -> PortSimulator:
    """
    Standard script: device attached and drawing a rising load, unplugged
    (OPEN, no voltage), attached again.  Episode lengths are drawn once.
    """
    rng = rng if rng is not None else random.Random()

    if mode in (PortMode.AUTO, PortMode.MANUAL_48V):
        working_voltage = 48.0
    else:
        working_voltage = 24.0
    voltage_jitter = rng.uniform(0.0, 1.5)
    current_init = rng.uniform(0.1, 0.2)
    current_jitter = rng.uniform(0.0, 0.1)
    current_step = rng.uniform(0.0, 0.04)

    def on_episode() -> SimProfile:
        return SimProfile(rng.randint(EPISODE_STEPS_MIN, EPISODE_STEPS_MAX),
                          working_voltage, voltage_jitter,
                          current_init, current_jitter, current_step,
                          DetectionState.DET_OK.value, "6(0)", rng=rng)

    def off_episode() -> SimProfile:
        return SimProfile(rng.randint(EPISODE_STEPS_MIN, EPISODE_STEPS_MAX),
                          0.0, 0.0, 0.0, 0.0, 0.0,
                          DetectionState.OPEN.value, "0(Unknown)", rng=rng)

    sim = PortSimulator()
    for episode in (on_episode, off_episode, on_episode):
        sim.add_profile(episode())
    if mode == PortMode.OFF:
        sim.turn_off()
    return sim

