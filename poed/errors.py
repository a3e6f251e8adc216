"""
Exception taxonomy for the daemon.

Everything the budget loop can fail on derives from PoedError so the loop
has one thing to catch before shutting the process down.
"""


class PoedError(Exception):
    """Base class for daemon errors."""


class ConfigError(PoedError):
    """Topology / configuration is malformed or incomplete."""


class TelemetryError(PoedError):
    """Port telemetry could not be read or parsed."""


class UnknownStateError(TelemetryError):
    """Hardware reported a detection-state label we do not know."""


class ControlError(PoedError):
    """A power or mode write to the controller failed."""
