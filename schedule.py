# schedule.py
import logging
import random

from errors import ConfigurationError
from schedulers import MIGRATION_IN_SHARE, MIGRATION_OUT_SHARE
from stats import correlation

logger = logging.getLogger(__name__)

VM_POLICIES = ("first_fit", "random", "least_utilized", "most_utilized", "best_fit",
               "worst_fit", "most_free_ram", "energy_aware")
CONTAINER_POLICIES = ("first_fit", "least_full", "most_full", "random")
HOST_SELECTION_POLICIES = ("first_fit", "least_full", "most_full", "random", "minimum_correlation")


def utilization_of_cpu_mips(host):
    """
    MIPS allocated on ``host``. VMs migrating in count with their full
    request rather than the 10% share they hold while the transfer runs.
    """
    total = 0.0
    for vm in host.vms:
        allocated = host.vm_scheduler.total_allocated_mips_for(vm)
        if vm in host.vms_migrating_in:
            total += allocated * MIGRATION_OUT_SHARE / MIGRATION_IN_SHARE
        total += allocated
    return total


class SchedulerVM:
    def __init__(self, hosts, policy="first_fit", detector=None, rng=random):
        """
        Scheduler to assign VMs to Hosts based on a given policy.

        :param hosts: list of Host objects
        :param policy: scheduling strategy ("first_fit", "least_utilized", etc.)
        :param detector: overload detector consulted by "energy_aware"
        """
        self.hosts = hosts
        self.detector = detector
        self.rng = rng
        self.boot_energy_total = 0.0  # Track total boot energy
        self.set_policy(policy)

    def set_policy(self, policy):
        if policy not in VM_POLICIES:
            raise ConfigurationError(f"Unknown scheduling policy: {policy}")
        self.policy = policy

    def schedule_vm(self, vm):
        """
        Assigns a VM to a suitable host based on selected policy.
        Returns True if scheduling succeeded, False otherwise.
        """
        candidate_host = self._select_host(vm)

        if candidate_host and candidate_host.vm_create(vm):
            if not candidate_host.active:
                candidate_host.power_on()
                self.boot_energy_total += candidate_host.boot_energy_joules
            logger.info("Scheduler: VM #%s assigned to Host #%s using '%s'",
                        vm.vm_id, candidate_host.host_id, self.policy)
            return True
        logger.warning("Scheduler: No suitable host found for VM #%s with policy '%s'", vm.vm_id, self.policy)
        return False

    def _select_host(self, vm, excluded=()):
        if self.policy == "energy_aware":
            return self.find_host_for_vm(vm, excluded)
        candidates = [h for h in self.hosts
                      if h not in excluded and not h.failed and h.is_suitable_for_vm(vm)]
        if not candidates:
            return None
        if self.policy == "first_fit":
            return candidates[0]
        elif self.policy == "random":
            return self.rng.choice(candidates)
        elif self.policy == "least_utilized":
            return min(candidates, key=lambda h: utilization_of_cpu_mips(h) / h.total_mips)
        elif self.policy == "most_utilized":
            return max(candidates, key=lambda h: utilization_of_cpu_mips(h) / h.total_mips)
        elif self.policy == "best_fit":
            return min(candidates, key=lambda h: h.available_mips - vm.current_requested_total_mips())
        elif self.policy == "worst_fit":
            return max(candidates, key=lambda h: h.available_mips - vm.current_requested_total_mips())
        else:
            return max(candidates, key=lambda h: h.ram_provisioner.available)

    def is_overutilized_after_allocation(self, host, vm):
        """Speculatively place ``vm`` on ``host`` and ask the detector."""
        if self.detector is None:
            return False
        ok, release = host.try_reserve_vm(vm)
        if not ok:
            return True
        try:
            return self.detector.is_host_overutilized(host)
        finally:
            release()

    def max_utilization_after_allocation(self, host, vm):
        requested = vm.current_requested_total_mips()
        return (utilization_of_cpu_mips(host) + requested) / host.total_mips

    def find_host_for_vm(self, vm, excluded=()):
        """
        Power-aware placement: the suitable host, not over-utilized after
        taking ``vm``, whose power draw grows the least. Ties go to the
        first host in list order.
        """
        min_power = float("inf")
        allocated_host = None
        for host in self.hosts:
            if host in excluded or host.failed:
                continue
            if not host.is_suitable_for_vm(vm):
                continue
            if utilization_of_cpu_mips(host) != 0 and self.is_overutilized_after_allocation(host, vm):
                continue
            utilization = self.max_utilization_after_allocation(host, vm)
            if utilization > 1:
                continue
            power_diff = host.power_at(utilization) - host.power_consumption()
            if power_diff < min_power:
                min_power = power_diff
                allocated_host = host
        return allocated_host

    def get_total_boot_energy(self):
        return self.boot_energy_total


class SchedulerContainer:
    def __init__(self, vms, policy="first_fit", rng=random):
        """
        Places new containers on VMs.

        :param vms: list of VMs, usually the datacenter's live VM list
        :param policy: "first_fit", "least_full", "most_full" or "random"
        """
        if policy not in CONTAINER_POLICIES:
            raise ConfigurationError(f"Unknown container placement policy: {policy}")
        self.vms = vms
        self.policy = policy
        self.rng = rng

    def schedule_container(self, container):
        """
        :return: the VM now running ``container``, or None
        """
        excluded = set()
        while True:
            vm = self._select_vm(excluded)
            if vm is None:
                logger.warning("No VM can take Container #%s with policy '%s'",
                               container.container_id, self.policy)
                return None
            if vm.is_suitable_for_container(container) and vm.container_create(container):
                logger.info("Container #%s placed on VM #%s using '%s'",
                            container.container_id, vm.vm_id, self.policy)
                return vm
            excluded.add(vm)

    def _select_vm(self, excluded):
        candidates = [vm for vm in self.vms if vm not in excluded]
        if not candidates:
            return None
        if self.policy == "first_fit":
            return candidates[0]
        elif self.policy == "least_full":
            return max(candidates, key=lambda vm: vm.available_mips)
        elif self.policy == "most_full":
            return min(candidates, key=lambda vm: vm.available_mips)
        else:
            return self.rng.choice(candidates)


class HostSelector:
    def __init__(self, hosts, policy="first_fit", fallback=None, clock=None, rng=random):
        """
        Picks a candidate host for a migrating container; the caller then
        looks for a VM on it.

        :param fallback: HostSelector used by "minimum_correlation" when the
                         histories are too short
        :param clock: callable returning simulated time, used by "most_full"
        """
        if policy not in HOST_SELECTION_POLICIES:
            raise ConfigurationError(f"Unknown host selection policy: {policy}")
        self.hosts = hosts
        self.policy = policy
        self.fallback = fallback
        self.clock = clock or (lambda: 0.0)
        self.rng = rng

    def select(self, container, excluded):
        candidates = [h for h in self.hosts if h not in excluded and not h.failed]
        if not candidates:
            return None
        if self.policy == "first_fit":
            return candidates[0]
        elif self.policy == "least_full":
            return min(candidates, key=lambda h: h.cpu_utilization())
        elif self.policy == "most_full":
            if self.clock() <= 1:
                return candidates[0]
            return max(candidates, key=lambda h: h.cpu_utilization())
        elif self.policy == "random":
            return self.rng.choice(candidates)
        else:
            return self._minimum_correlation(container, candidates, excluded)

    def _minimum_correlation(self, container, candidates, excluded):
        history = container.utilization_history.to_array()
        selected = None
        min_metric = float("inf")
        for host in candidates:
            host_history = host.utilization_history()
            if len(host_history) <= 5:
                continue
            metric = correlation(host_history, history)
            if metric < min_metric:
                min_metric = metric
                selected = host
        if selected is None and self.fallback is not None:
            return self.fallback.select(container, excluded)
        return selected
