# selection.py
import logging
import random

import numpy as np

from errors import ConfigurationError
from stats import correlation, correlation_coefficients

logger = logging.getLogger(__name__)

VM_LEVEL = "vm"
CONTAINER_LEVEL = "container"


def migratable_vms(host):
    return [vm for vm in host.vms if not vm.in_migration]


def migratable_containers(host):
    containers = []
    for vm in host.vms:
        if vm.in_migration:
            continue
        for container in vm.containers:
            if not container.in_migration and container not in vm.containers_migrating_in:
                containers.append(container)
    return containers


class SelectionPolicy:
    def __init__(self, level=VM_LEVEL, fallback=None):
        """
        Picks one workload to evict from an over-utilized host.

        :param level: "vm" to pick VMs, "container" to pick containers
        :param fallback: policy used when this one cannot decide
        """
        if level not in (VM_LEVEL, CONTAINER_LEVEL):
            raise ConfigurationError(f"Unknown selection level: {level}")
        self.level = level
        self.fallback = fallback

    def migratable(self, host):
        if self.level == VM_LEVEL:
            return migratable_vms(host)
        return migratable_containers(host)

    def get_to_migrate(self, host):
        """:return: a workload that is not in migration, or None"""
        raise NotImplementedError

    def _fall_back(self, host):
        if self.fallback is None:
            return None
        return self.fallback.get_to_migrate(host)


class MaximumUsageSelection(SelectionPolicy):
    name = "maximum_usage"

    def get_to_migrate(self, host):
        selected = None
        max_metric = np.finfo(float).tiny
        for workload in self.migratable(host):
            metric = workload.current_requested_total_mips()
            if metric > max_metric:
                max_metric = metric
                selected = workload
        return selected


class MinimumMigrationTimeSelection(SelectionPolicy):
    name = "minimum_migration_time"

    def get_to_migrate(self, host):
        selected = None
        min_metric = float("inf")
        for workload in self.migratable(host):
            metric = workload.ram
            if metric < min_metric:
                min_metric = metric
                selected = workload
        return selected


class RandomSelection(SelectionPolicy):
    name = "random"

    def __init__(self, level=VM_LEVEL, fallback=None, rng=random):
        super().__init__(level, fallback)
        self.rng = rng

    def get_to_migrate(self, host):
        candidates = self.migratable(host)
        if not candidates:
            return None
        return self.rng.choice(candidates)


class MaximumCorrelationSelection(SelectionPolicy):
    """
    Evicts the workload whose utilization is best explained by the other
    workloads on the host (highest multiple-regression R²).
    """
    name = "maximum_correlation"

    def get_to_migrate(self, host):
        candidates = self.migratable(host)
        if not candidates:
            return None
        histories = [w.utilization_history.to_array() for w in candidates]
        length = min(len(h) for h in histories)
        coefficients = None
        if length:
            coefficients = correlation_coefficients([h[:length] for h in histories])
        if coefficients is None:
            return self._fall_back(host)
        selected = None
        max_metric = -float("inf")
        for workload, metric in zip(candidates, coefficients):
            if metric > max_metric:
                max_metric = metric
                selected = workload
        if selected is None:
            return self._fall_back(host)
        return selected


class CorrelationSelection(SelectionPolicy):
    """Evicts the workload whose history correlates most with the host's."""
    name = "correlation"

    def get_to_migrate(self, host):
        candidates = self.migratable(host)
        host_history = host.utilization_history()
        if not candidates or len(host_history) < 2:
            return self._fall_back(host)
        selected = None
        max_metric = -float("inf")
        for workload in candidates:
            metric = correlation(host_history, workload.utilization_history.to_array())
            if np.isnan(metric):
                metric = -3
            if metric > max_metric:
                max_metric = metric
                selected = workload
        if selected is None:
            return self._fall_back(host)
        return selected


def make_selection_policy(name, level=VM_LEVEL):
    if name == "maximum_usage":
        return MaximumUsageSelection(level)
    elif name == "minimum_migration_time":
        return MinimumMigrationTimeSelection(level)
    elif name == "random":
        return RandomSelection(level)
    elif name == "maximum_correlation":
        return MaximumCorrelationSelection(level, fallback=MinimumMigrationTimeSelection(level))
    elif name == "correlation":
        return CorrelationSelection(level, fallback=MinimumMigrationTimeSelection(level))
    else:
        raise ConfigurationError(f"Unknown selection policy: {name}")
