# errors.py


class SimulationError(Exception):
    """Base class for every error raised by the simulator."""


class ConfigurationError(SimulationError, ValueError):
    """Bad parameters or policy names, raised before the run starts."""


class InvariantViolation(SimulationError, RuntimeError):
    """Resource accounting went wrong; the run cannot continue."""


class ProtocolError(SimulationError):
    """An event arrived with a payload of the wrong shape."""
