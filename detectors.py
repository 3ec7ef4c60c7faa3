# detectors.py
import logging
import math

from config import (LOESS_LENGTH, MIN_HISTORY_FOR_STATS, SAFETY_PARAMETER,
                    SCHEDULING_INTERVAL, STATIC_THRESHOLD)
from errors import ConfigurationError
from history import PolicyHistory
from stats import (count_nonzero_beginning, iqr, loess_parameter_estimates, mad,
                   robust_loess_parameter_estimates)

logger = logging.getLogger(__name__)


def requested_utilization(host):
    """Current requested / total MIPS ratio of a host."""
    return sum(vm.current_requested_total_mips() for vm in host.vms) / host.total_mips


class OverloadDetector:
    """Decides whether a host is over-utilized."""
    name = "detector"

    def __init__(self, fallback=None, history=None):
        self.history = history if history is not None else PolicyHistory()
        self.clock = lambda: 0.0
        self.fallback = None
        self.set_fallback(fallback)

    def set_fallback(self, fallback):
        node = fallback
        while node is not None:
            if node is self:
                raise ConfigurationError(f"Fallback chain of detector '{self.name}' cycles back to itself")
            node = node.fallback
        self.fallback = fallback
        if fallback is not None:
            fallback.set_clock(self.clock)

    def set_clock(self, clock):
        """:param clock: callable returning the current simulated time"""
        self.clock = clock
        if self.fallback is not None:
            self.fallback.set_clock(clock)

    def add_history_entry(self, host, metric):
        self.history.add(host.host_id, self.clock(), host.cpu_utilization(), metric)

    def is_host_overutilized(self, host):
        raise NotImplementedError


class StaticThresholdDetector(OverloadDetector):
    name = "static_threshold"

    def __init__(self, threshold=STATIC_THRESHOLD, fallback=None, history=None):
        if not 0 < threshold < 1:
            raise ConfigurationError(f"Utilization threshold must be between 0 and 1, got {threshold}")
        self.threshold = threshold
        super().__init__(fallback, history)

    def is_host_overutilized(self, host):
        self.add_history_entry(host, self.threshold)
        return requested_utilization(host) > self.threshold


class StatisticalDetector(OverloadDetector):
    """
    Threshold derived from the host's utilization history. Hosts without
    enough history are judged by the fallback detector.
    """

    def __init__(self, fallback, safety_parameter=SAFETY_PARAMETER, history=None):
        if safety_parameter < 0:
            raise ConfigurationError("The safety parameter cannot be negative")
        if fallback is None:
            raise ConfigurationError(f"Detector '{self.name}' needs a fallback detector")
        self.safety_parameter = safety_parameter
        super().__init__(fallback, history)

    def dispersion(self, data):
        raise NotImplementedError

    def host_utilization_threshold(self, host):
        """:return: the threshold, or None when the history is too short"""
        data = host.utilization_history()
        if count_nonzero_beginning(data) < MIN_HISTORY_FOR_STATS:
            return None
        return 1 - self.safety_parameter * self.dispersion(data)

    def is_host_overutilized(self, host):
        threshold = self.host_utilization_threshold(host)
        if threshold is None:
            logger.debug("Host #%s: not enough history for '%s', using '%s'",
                         host.host_id, self.name, self.fallback.name)
            return self.fallback.is_host_overutilized(host)
        self.add_history_entry(host, threshold)
        return requested_utilization(host) > threshold


class MadDetector(StatisticalDetector):
    name = "mad"

    def dispersion(self, data):
        return mad(data)


class IqrDetector(StatisticalDetector):
    name = "iqr"

    def dispersion(self, data):
        return iqr(data)


class LocalRegressionDetector(OverloadDetector):
    """
    Extrapolates a LOESS trend of the last samples over the time the
    largest VM would need to migrate away.
    """
    name = "lr"

    def __init__(self, fallback, scheduling_interval=SCHEDULING_INTERVAL,
                 safety_parameter=SAFETY_PARAMETER, history=None):
        if safety_parameter < 0:
            raise ConfigurationError("The safety parameter cannot be negative")
        if fallback is None:
            raise ConfigurationError(f"Detector '{self.name}' needs a fallback detector")
        self.scheduling_interval = scheduling_interval
        self.safety_parameter = safety_parameter
        super().__init__(fallback, history)

    def parameter_estimates(self, data):
        return loess_parameter_estimates(data)

    def maximum_vm_migration_time(self, host):
        max_ram = max((vm.ram for vm in host.vms), default=0)
        return max_ram / (host.bw / (2 * 8000))

    def is_host_overutilized(self, host):
        history = host.utilization_history()
        length = LOESS_LENGTH
        if len(history) < length:
            return self.fallback.is_host_overutilized(host)
        reversed_history = history[:length][::-1]
        intercept, slope = self.parameter_estimates(reversed_history)
        migration_intervals = math.ceil(self.maximum_vm_migration_time(host) / self.scheduling_interval)
        predicted = (intercept + slope * (length + migration_intervals)) * self.safety_parameter
        self.add_history_entry(host, predicted)
        return predicted >= 1


class RobustLocalRegressionDetector(LocalRegressionDetector):
    name = "lrr"

    def parameter_estimates(self, data):
        return robust_loess_parameter_estimates(data)


def make_detector(name, threshold=STATIC_THRESHOLD, safety_parameter=SAFETY_PARAMETER,
                  scheduling_interval=SCHEDULING_INTERVAL, fallback=None):
    """
    Build an overload detector by name. Statistical detectors fall back to a
    static threshold detector unless ``fallback`` is given.
    """
    if name == "static_threshold":
        return StaticThresholdDetector(threshold)
    if fallback is None:
        fallback = StaticThresholdDetector(threshold)
    if name == "mad":
        return MadDetector(fallback, safety_parameter)
    elif name == "iqr":
        return IqrDetector(fallback, safety_parameter)
    elif name == "lr":
        return LocalRegressionDetector(fallback, scheduling_interval, safety_parameter)
    elif name == "lrr":
        return RobustLocalRegressionDetector(fallback, scheduling_interval, safety_parameter)
    else:
        raise ConfigurationError(f"Unknown overload detector: {name}")
