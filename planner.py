# planner.py
import logging
import random

from errors import InvariantViolation
from schedule import SchedulerVM, utilization_of_cpu_mips

logger = logging.getLogger(__name__)


class MigrationMapEntry:
    def __init__(self, workload, source_owner, destination_owner, destination_host=None,
                 requires_new_owner=False):
        """
        One planned move.

        :param workload: the VM or container to move
        :param source_owner: host (for a VM) or VM (for a container) it leaves
        :param destination_owner: host or VM it moves to
        :param destination_host: host of the destination; the destination
                                 itself for VM moves
        :param requires_new_owner: the destination VM must be created first
        """
        self.workload = workload
        self.source_owner = source_owner
        self.destination_owner = destination_owner
        self.destination_host = destination_host if destination_host is not None else destination_owner
        self.requires_new_owner = requires_new_owner

    @property
    def is_container(self):
        return hasattr(self.workload, "container_id")

    def __repr__(self):
        kind = "Container" if self.is_container else "VM"
        workload_id = self.workload.container_id if self.is_container else self.workload.vm_id
        return (f"MigrationMapEntry({kind} #{workload_id} -> "
                f"Host #{self.destination_host.host_id}, new={self.requires_new_owner})")


class MigrationPlanner:
    def __init__(self, hosts, detector, vm_selection, scheduler=None):
        """
        Plans VM migrations: evacuate over-utilized hosts, then try to empty
        the least utilized ones. All placements made while planning are
        undone before the plan is returned.

        :param hosts: list of Host objects
        :param detector: overload detector
        :param vm_selection: SelectionPolicy at VM level
        :param scheduler: SchedulerVM used for power-aware placement
        """
        self.hosts = hosts
        self.detector = detector
        self.vm_selection = vm_selection
        self.scheduler = scheduler or SchedulerVM(hosts, policy="energy_aware", detector=detector)
        self.saved_allocation = []
        self.saved_containers = []
        self._sources = {}

    def set_clock(self, clock):
        self.detector.set_clock(clock)

    # ----- detect -----

    def over_utilized_hosts(self):
        return [host for host in self.hosts if not host.failed and self.detector.is_host_overutilized(host)]

    def switched_off_hosts(self):
        return [host for host in self.hosts if host.cpu_utilization() == 0]

    # ----- snapshot / restore -----

    def save_allocation(self):
        self.saved_allocation = []
        self.saved_containers = []
        for host in self.hosts:
            for vm in host.vms:
                if vm in host.vms_migrating_in:
                    continue
                self.saved_allocation.append((host, vm))
                for container in vm.containers:
                    if container not in vm.containers_migrating_in:
                        self.saved_containers.append((vm, container))

    def restore_allocation(self):
        """Tear down every placement and rebuild the saved table."""
        for host in self.hosts:
            for vm in host.vms:
                vm.container_destroy_all()
                vm.reallocate_migrating_in_containers()
        for vm, container in self.saved_containers:
            if container in vm.containers:
                continue
            if not vm.container_create(container):
                raise InvariantViolation(
                    f"Couldn't restore Container #{container.container_id} on VM #{vm.vm_id}")
        for host in self.hosts:
            host.vm_destroy_all()
            host.reallocate_migrating_in_vms()
        for host, vm in self.saved_allocation:
            if not host.vm_create(vm):
                raise InvariantViolation(f"Couldn't restore VM #{vm.vm_id} on Host #{host.host_id}")
        self._sources = {}

    # ----- optimization pass -----

    def optimize_allocation(self):
        """:return: list of MigrationMapEntry"""
        over_utilized = self.over_utilized_hosts()
        self.save_allocation()
        vms_to_migrate = self.vms_to_migrate_from_hosts(over_utilized)
        logger.debug("Reallocation of VMs from %d over-utilized hosts", len(over_utilized))
        migration_map = self.new_vm_placement(vms_to_migrate, set(over_utilized))
        migration_map.extend(self.migration_map_from_under_utilized_hosts(over_utilized, migration_map))
        self.restore_allocation()
        return migration_map

    def vms_to_migrate_from_hosts(self, over_utilized):
        vms_to_migrate = []
        for host in over_utilized:
            while True:
                vm = self.vm_selection.get_to_migrate(host)
                if vm is None:
                    break
                vms_to_migrate.append(vm)
                self._sources[vm] = host
                host.vm_destroy(vm)
                if not self.detector.is_host_overutilized(host):
                    break
        return vms_to_migrate

    def new_vm_placement(self, vms, excluded_hosts):
        migration_map = []
        for vm in sorted(vms, key=lambda v: v.current_requested_total_mips(), reverse=True):
            host = self.scheduler.find_host_for_vm(vm, excluded_hosts)
            if host is None:
                logger.info("No destination found for VM #%s", vm.vm_id)
                continue
            source = self._sources.get(vm, vm.host)
            host.vm_create(vm)
            logger.info("VM #%s planned to move to Host #%s", vm.vm_id, host.host_id)
            migration_map.append(MigrationMapEntry(vm, source, host))
        return migration_map

    # ----- consolidation -----

    def is_consolidation_blocked(self, host):
        """True when every VM is migrating out or any VM is migrating in."""
        for vm in host.vms:
            if not vm.in_migration:
                return False
            if vm in host.vms_migrating_in:
                return True
        return True

    def under_utilized_host(self, excluded_hosts):
        min_utilization = 1.0
        selected = None
        for host in self.hosts:
            if host in excluded_hosts or host.failed:
                continue
            utilization = host.cpu_utilization()
            if 0 < utilization < min_utilization and not self.is_consolidation_blocked(host):
                min_utilization = utilization
                selected = host
        return selected

    def workloads_from_under_utilized_host(self, host):
        return [vm for vm in host.vms if not vm.in_migration]

    def placement_from_under_utilized_host(self, workloads, excluded_hosts):
        """All or nothing: either every VM finds a host or none moves."""
        migration_map = []
        for vm in sorted(workloads, key=lambda v: v.current_requested_total_mips(), reverse=True):
            source = vm.host
            host = self.scheduler.find_host_for_vm(vm, excluded_hosts)
            if host is None:
                logger.info("Not all VMs can be reallocated from Host #%s, reallocation cancelled",
                            source.host_id if source else None)
                for entry in migration_map:
                    entry.destination_owner.vm_destroy(entry.workload)
                    entry.workload.host = entry.source_owner
                return []
            host.vm_create(vm)
            migration_map.append(MigrationMapEntry(vm, source, host))
        return migration_map

    def migration_map_from_under_utilized_hosts(self, over_utilized, previous_map):
        migration_map = []
        switched_off = self.switched_off_hosts()
        excluded_for_under = set(over_utilized) | set(switched_off)
        excluded_for_under |= {entry.destination_host for entry in previous_map}
        excluded_for_placement = set(over_utilized) | set(switched_off)

        while len(excluded_for_under) < len(self.hosts):
            host = self.under_utilized_host(excluded_for_under)
            if host is None:
                break
            logger.debug("Under-utilized host: Host #%s", host.host_id)
            excluded_for_under.add(host)
            excluded_for_placement.add(host)
            workloads = self.workloads_from_under_utilized_host(host)
            if not workloads:
                continue
            placements = self.placement_from_under_utilized_host(workloads, excluded_for_placement)
            excluded_for_under |= {entry.destination_host for entry in placements}
            migration_map.extend(placements)
        return migration_map


class ContainerMigrationPlanner(MigrationPlanner):
    def __init__(self, hosts, detector, container_selection, vm_factory=None, num_vm_types=0,
                 host_selector=None, scheduler=None, rng=random):
        """
        Plans container migrations. Containers that fit no existing VM get a
        new VM, first on under-utilized hosts, then on switched-off ones.

        :param container_selection: SelectionPolicy at container level
        :param vm_factory: callable(vm_type) -> new VM, used when no VM fits
        :param num_vm_types: number of VM types tried, in order
        :param host_selector: HostSelector; None means power-aware search
        """
        super().__init__(hosts, detector, container_selection, scheduler)
        self.container_selection = container_selection
        self.vm_factory = vm_factory
        self.num_vm_types = num_vm_types
        self.host_selector = host_selector
        self.rng = rng
        self.created_vms = []
        self.clock = lambda: 0.0

    def set_clock(self, clock):
        super().set_clock(clock)
        self.clock = clock
        if self.host_selector is not None:
            self.host_selector.clock = clock

    def optimize_allocation(self):
        over_utilized = self.over_utilized_hosts()
        self.created_vms = []
        self.save_allocation()
        containers = self.containers_to_migrate_from_hosts(over_utilized)
        logger.debug("Reallocation of containers from %d over-utilized hosts", len(over_utilized))
        migration_map = self.placement_for_left_containers(containers, set(over_utilized))
        migration_map.extend(self.migration_map_from_under_utilized_hosts(over_utilized, migration_map))
        self.restore_allocation()
        return migration_map

    def containers_to_migrate_from_hosts(self, over_utilized):
        containers = []
        for host in over_utilized:
            while True:
                container = self.container_selection.get_to_migrate(host)
                if container is None:
                    break
                containers.append(container)
                self._sources[container] = container.vm
                container.vm.container_destroy(container)
                if not self.detector.is_host_overutilized(host):
                    break
        return containers

    # ----- container -> VM search -----

    def _container_utilization_mips(self, container):
        return container.total_utilization_of_cpu_mips(self.clock())

    def _vm_has_headroom(self, host, vm):
        used = sum(self._container_utilization_mips(c) for c in vm.containers)
        return used <= host.total_mips / host.num_pes * vm.num_pes

    def is_overutilized_after_container_allocation(self, host, vm, container):
        ok, release = vm.try_reserve_container(container)
        if not ok:
            return True
        try:
            return self.detector.is_host_overutilized(host)
        finally:
            release()

    def _vm_accepts(self, host, vm, container, check_for_vm):
        if check_for_vm and vm.in_waiting:
            return False
        if not vm.is_suitable_for_container(container):
            return False
        if not self._vm_has_headroom(host, vm):
            return False
        if utilization_of_cpu_mips(host) != 0 and self.is_overutilized_after_container_allocation(host, vm, container):
            return False
        return True

    def _power_after(self, host, vm, container):
        requested = min(container.current_requested_total_mips(), vm.total_mips)
        utilization = (utilization_of_cpu_mips(host) + requested) / host.total_mips
        if utilization > 1:
            return None
        return host.power_at(utilization) - host.power_consumption()

    def _power_aware_search(self, container, pairs, check_for_vm):
        min_power = float("inf")
        selected = (None, None)
        for host, vm in pairs:
            if not self._vm_accepts(host, vm, container, check_for_vm):
                continue
            power_diff = self._power_after(host, vm, container)
            if power_diff is not None and power_diff < min_power:
                min_power = power_diff
                selected = (host, vm)
        return selected

    def _host_selection_search(self, container, excluded_hosts, check_for_vm):
        excluded = set(excluded_hosts)
        while len(excluded) < len(self.hosts):
            host = self.host_selector.select(container, excluded)
            if host is None:
                break
            for vm in sorted(host.vms, key=lambda v: v.total_utilization_of_cpu_mips(self.clock())):
                if self._vm_accepts(host, vm, container, check_for_vm):
                    return host, vm
            excluded.add(host)
        return None, None

    def find_vm_for_container(self, container, excluded_hosts, check_for_vm):
        """:return: ``(host, vm)`` or ``(None, None)``"""
        if self.host_selector is not None:
            return self._host_selection_search(container, excluded_hosts, check_for_vm)
        pairs = [(host, vm) for host in self.hosts
                 if host not in excluded_hosts and not host.failed for vm in host.vms]
        return self._power_aware_search(container, pairs, check_for_vm)

    def _commit(self, container, host, vm, requires_new_owner=False):
        source = self._sources.get(container, container.vm)
        vm.container_create(container)
        logger.info("Container #%s planned to move to VM #%s on Host #%s",
                    container.container_id, vm.vm_id, host.host_id)
        return MigrationMapEntry(container, source, vm, host, requires_new_owner)

    # ----- placement of evacuated containers -----

    def placement_for_left_containers(self, containers, excluded_hosts):
        if not containers:
            return []
        excluded = set(excluded_hosts) | set(self.switched_off_hosts())
        migration_map = []
        needs_vm = []
        for container in sorted(containers, key=self._container_utilization_mips, reverse=True):
            host, vm = self.find_vm_for_container(container, excluded, check_for_vm=False)
            if vm is None:
                needs_vm.append(container)
            else:
                migration_map.append(self._commit(container, host, vm))
        if not needs_vm:
            return migration_map

        logger.info("%d containers need a new VM", len(needs_vm))
        under_utilized = self.under_utilized_host_list(excluded_hosts)
        created_map = self.find_map_in_under_utilized_hosts(under_utilized, needs_vm)
        migration_map.extend(created_map)
        placed = {entry.workload for entry in created_map}
        remaining = [c for c in needs_vm if c not in placed]
        if remaining:
            migration_map.extend(self.find_map_in_switched_off_hosts(remaining))
        return migration_map

    def under_utilized_host_list(self, excluded_hosts):
        """Hosts with 0 < utilization < 1, least utilized first."""
        hosts = [host for host in self.hosts
                 if host not in excluded_hosts and not host.failed
                 and 0 < host.cpu_utilization() < 1 and not self.is_consolidation_blocked(host)]
        return sorted(hosts, key=lambda h: h.cpu_utilization())

    def create_vm_in_host(self, host, in_waiting=True):
        """Create the first VM type that fits on ``host``, or return None."""
        if self.vm_factory is None:
            return None
        for vm_type in range(self.num_vm_types):
            vm = self.vm_factory(vm_type)
            if utilization_of_cpu_mips(host) != 0 and self.scheduler.is_overutilized_after_allocation(host, vm):
                continue
            if host.vm_create(vm):
                vm.in_waiting = in_waiting
                self.created_vms.append(vm)
                logger.info("New VM #%s planned on Host #%s", vm.vm_id, host.host_id)
                return vm
        return None

    def create_vms(self, host, in_waiting=True):
        vms = []
        while True:
            vm = self.create_vm_in_host(host, in_waiting)
            if vm is None:
                return vms
            vms.append(vm)

    def find_map_in_under_utilized_hosts(self, under_utilized, containers):
        pairs = []
        for host in under_utilized:
            pairs.extend((host, vm) for vm in self.create_vms(host))
        if not pairs:
            return []
        migration_map = []
        for container in containers:
            host, vm = self._power_aware_search(container, pairs, check_for_vm=False)
            if vm is not None:
                migration_map.append(self._commit(container, host, vm, requires_new_owner=True))
        return migration_map

    def find_map_in_switched_off_hosts(self, containers):
        """Fill new VMs on randomly chosen switched-off hosts."""
        switched_off = [h for h in self.switched_off_hosts() if not h.failed]
        containers = list(containers)
        migration_map = []
        host = vm = None
        while containers:
            if host is None:
                if not switched_off:
                    break
                host = switched_off.pop(self.rng.randrange(len(switched_off)))
                vm = None
            container = containers[0]
            if vm is None or not vm.is_suitable_for_container(container):
                vm = self.create_vm_in_host(host)
                if vm is None:
                    host = None
                    continue
                if not vm.is_suitable_for_container(container):
                    logger.warning("Container #%s does not fit a new VM", container.container_id)
                    containers.pop(0)
                    continue
            containers.pop(0)
            migration_map.append(self._commit(container, host, vm, requires_new_owner=True))
        for container in containers:
            logger.warning("No destination found for Container #%s", container.container_id)
        return migration_map

    # ----- consolidation -----

    def is_consolidation_blocked(self, host):
        """
        True when every container is migrating out or any container is
        migrating in; the VM-level condition applies as well.
        """
        if super().is_consolidation_blocked(host):
            return True
        for vm in host.vms:
            for container in vm.containers:
                if not container.in_migration:
                    return False
                if container in vm.containers_migrating_in:
                    return True
        return True

    def workloads_from_under_utilized_host(self, host):
        containers = []
        for vm in host.vms:
            if vm.in_migration:
                continue
            containers.extend(c for c in vm.containers if not c.in_migration)
        return containers

    def placement_from_under_utilized_host(self, workloads, excluded_hosts):
        migration_map = []
        for container in sorted(workloads, key=self._container_utilization_mips, reverse=True):
            host, vm = self.find_vm_for_container(container, excluded_hosts, check_for_vm=True)
            if vm is None:
                logger.info("Not all containers can be reallocated from the host, reallocation cancelled")
                for entry in migration_map:
                    entry.destination_owner.container_destroy(entry.workload)
                    entry.workload.vm = entry.source_owner
                return []
            migration_map.append(self._commit(container, host, vm))
        return migration_map
