# config.py
import os


def _flag(name, default):
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# ====================
# Simulation clock
# ====================
SCHEDULING_INTERVAL = float(os.getenv("SCHEDULING_INTERVAL", "300"))
MIN_TIME_BETWEEN_EVENTS = float(os.getenv("MIN_TIME_BETWEEN_EVENTS", "0.01"))
VM_STARTUP_DELAY = float(os.getenv("VM_STARTUP_DELAY", "0"))
CONTAINER_STARTUP_DELAY = float(os.getenv("CONTAINER_STARTUP_DELAY", "0"))

# ====================
# Migration planning
# ====================
DISABLE_MIGRATIONS = _flag("DISABLE_MIGRATIONS", "false")
OVERLOAD_DETECTOR = os.getenv("OVERLOAD_DETECTOR", "static_threshold")
STATIC_THRESHOLD = float(os.getenv("STATIC_THRESHOLD", "0.8"))
SAFETY_PARAMETER = float(os.getenv("SAFETY_PARAMETER", "1.2"))
VM_SELECTION_POLICY = os.getenv("VM_SELECTION_POLICY", "maximum_usage")
CONTAINER_SELECTION_POLICY = os.getenv("CONTAINER_SELECTION_POLICY", "maximum_usage")

# ====================
# Utilization history
# ====================
HISTORY_LENGTH = int(os.getenv("HISTORY_LENGTH", "30"))
LOESS_LENGTH = int(os.getenv("LOESS_LENGTH", "10"))
MIN_HISTORY_FOR_STATS = int(os.getenv("MIN_HISTORY_FOR_STATS", "12"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
