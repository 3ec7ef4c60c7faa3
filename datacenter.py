# datacenter.py
import logging

import numpy as np

from cloudlets import CloudletScheduler
from config import HISTORY_LENGTH
from history import StateHistory, UtilizationHistory
from ids import make_uid
from power import PowerModelLinear
from provisioners import BwProvisioner, Pe, RamProvisioner
from schedulers import MIGRATION_OUT_SHARE, OverSubscriptionScheduler
from stats import trim_zero_tail

logger = logging.getLogger(__name__)


class Host:
    def __init__(self, host_id, num_pes, pe_mips, ram, bw, storage,
                 power_idle=100.0, power_max=250.0, boot_energy_joules=500.0,
                 power_model=None, scheduler_class=OverSubscriptionScheduler):
        """
        Physical machine holding VMs.

        :param host_id: Unique identifier
        :param num_pes: Number of processing elements
        :param pe_mips: MIPS of each PE
        :param ram: RAM in MB
        :param bw: Bandwidth in Mbit/s
        :param storage: Storage in MB
        :param power_model: object with get_power(u); linear idle/max model by default
        """
        self.host_id = host_id
        self.pes = [Pe(i, pe_mips) for i in range(num_pes)]
        self.ram = ram
        self.bw = bw
        self.storage_capacity = storage
        self.storage_available = storage
        self.ram_provisioner = RamProvisioner(ram)
        self.bw_provisioner = BwProvisioner(bw)
        self.vm_scheduler = scheduler_class(self.pes)
        self.power_model = power_model or PowerModelLinear(power_idle, power_max)
        self.boot_energy_joules = boot_energy_joules
        self.vms = []
        self.vms_migrating_in = []
        self.active = True
        self.failed = False
        self.utilization_mips = 0.0
        self.previous_utilization_mips = 0.0
        self.state_history = StateHistory("active")

    @property
    def num_pes(self):
        return len(self.pes)

    @property
    def total_mips(self):
        return sum(pe.mips for pe in self.pes)

    @property
    def available_mips(self):
        return self.vm_scheduler.available_mips

    # ----- VM lifecycle -----

    def is_suitable_for_vm(self, vm):
        return (self.vm_scheduler.pe_capacity >= vm.current_requested_max_mips()
                and self.vm_scheduler.available_mips >= vm.current_requested_total_mips()
                and self.ram_provisioner.is_suitable(vm, vm.current_requested_ram())
                and self.bw_provisioner.is_suitable(vm, vm.current_requested_bw()))

    def vm_create(self, vm):
        """
        Allocate storage, RAM, bandwidth and PEs for ``vm``, in that order.
        Any failure rolls back what was already allocated.
        """
        if self.storage_available < vm.size:
            logger.info("Allocation of VM #%s to Host #%s failed by storage", vm.vm_id, self.host_id)
            return False
        if not self.ram_provisioner.allocate(vm, vm.current_requested_ram()):
            logger.info("Allocation of VM #%s to Host #%s failed by RAM", vm.vm_id, self.host_id)
            return False
        if not self.bw_provisioner.allocate(vm, vm.current_requested_bw()):
            logger.info("Allocation of VM #%s to Host #%s failed by BW", vm.vm_id, self.host_id)
            self.ram_provisioner.deallocate(vm)
            return False
        if not self.vm_scheduler.allocate_pes_for(vm, vm.current_requested_mips()):
            logger.info("Allocation of VM #%s to Host #%s failed by MIPS", vm.vm_id, self.host_id)
            self.ram_provisioner.deallocate(vm)
            self.bw_provisioner.deallocate(vm)
            return False
        self.storage_available -= vm.size
        self.vms.append(vm)
        vm.host = self
        return True

    def try_reserve_vm(self, vm):
        """
        Speculatively create ``vm`` here.

        :return: ``(ok, release)``; ``release`` destroys the VM again and
                 restores its previous host link
        """
        previous_host = vm.host
        if not self.vm_create(vm):
            return False, lambda: None

        def release():
            self.vm_destroy(vm)
            vm.host = previous_host

        return True, release

    def _vm_deallocate(self, vm):
        self.ram_provisioner.deallocate(vm)
        self.bw_provisioner.deallocate(vm)
        self.vm_scheduler.deallocate_pes_for(vm)
        self.storage_available += vm.size

    def vm_destroy(self, vm):
        if vm not in self.vms:
            return
        self._vm_deallocate(vm)
        self.vms.remove(vm)
        vm.host = None

    def vm_destroy_all(self):
        self.ram_provisioner.deallocate_all()
        self.bw_provisioner.deallocate_all()
        self.vm_scheduler.deallocate_all()
        for vm in self.vms:
            vm.host = None
            self.storage_available += vm.size
        self.vms.clear()

    def add_migrating_in_vm(self, vm):
        """
        Reserve resources for a VM that is about to arrive. The VM keeps
        running on its source host; here it only takes a 10% CPU share.
        """
        vm.in_migration = True
        if vm in self.vms_migrating_in:
            return True
        if self.storage_available < vm.size:
            logger.warning("Migration of VM #%s to Host #%s failed by storage", vm.vm_id, self.host_id)
            return False
        if not self.ram_provisioner.allocate(vm, vm.current_requested_ram()):
            logger.warning("Migration of VM #%s to Host #%s failed by RAM", vm.vm_id, self.host_id)
            return False
        if not self.bw_provisioner.allocate(vm, vm.current_requested_bw()):
            logger.warning("Migration of VM #%s to Host #%s failed by BW", vm.vm_id, self.host_id)
            self.ram_provisioner.deallocate(vm)
            return False
        self.vm_scheduler.migrating_in.append(vm.uid)
        if not self.vm_scheduler.allocate_pes_for(vm, vm.current_requested_mips()):
            logger.warning("Migration of VM #%s to Host #%s failed by MIPS", vm.vm_id, self.host_id)
            self.vm_scheduler.migrating_in.remove(vm.uid)
            self.ram_provisioner.deallocate(vm)
            self.bw_provisioner.deallocate(vm)
            return False
        self.storage_available -= vm.size
        self.vms_migrating_in.append(vm)
        self.vms.append(vm)
        return True

    def remove_migrating_in_vm(self, vm):
        if vm not in self.vms_migrating_in:
            return
        self._vm_deallocate(vm)
        self.vms_migrating_in.remove(vm)
        self.vms.remove(vm)
        if vm.uid in self.vm_scheduler.migrating_in:
            self.vm_scheduler.migrating_in.remove(vm.uid)
        vm.in_migration = False

    def reallocate_migrating_in_vms(self):
        for vm in self.vms_migrating_in:
            if vm not in self.vms:
                self.vms.append(vm)
            if vm.uid not in self.vm_scheduler.migrating_in:
                self.vm_scheduler.migrating_in.append(vm.uid)
            self.ram_provisioner.allocate(vm, vm.current_requested_ram())
            self.bw_provisioner.allocate(vm, vm.current_requested_bw())
            self.vm_scheduler.allocate_pes_for(vm, vm.current_requested_mips())
            self.storage_available -= vm.size

    def completed_vms(self):
        return [vm for vm in self.vms
                if not vm.in_migration and not vm.in_waiting and not vm.containers]

    # ----- processing -----

    def update_vms_processing(self, current_time):
        """
        Run every hosted VM up to ``current_time`` and reallocate CPU shares
        from the VMs' new requests.

        :return: smallest positive predicted event time, inf if none
        """
        smaller_time = float("inf")
        for vm in self.vms:
            if vm in self.vms_migrating_in:
                continue
            time = vm.update_vm_processing(current_time, self.vm_scheduler.allocated_mips_for(vm))
            if 0 < time < smaller_time:
                smaller_time = time

        self.previous_utilization_mips = self.utilization_mips
        self.utilization_mips = 0.0
        total_requested = 0.0
        self.vm_scheduler.deallocate_all()
        for vm in self.vms:
            self.vm_scheduler.allocate_pes_for(vm, vm.current_requested_mips())

        for vm in self.vms:
            requested = vm.current_requested_total_mips()
            allocated = self.vm_scheduler.total_allocated_mips_for(vm)
            if vm in self.vms_migrating_in:
                logger.debug("%.2f: [Host #%s] VM #%s is being migrated in", current_time, self.host_id, vm.vm_id)
            else:
                if allocated + 0.1 < requested:
                    logger.debug("%.2f: [Host #%s] Under allocated MIPS for VM #%s: %.2f of %.2f",
                                 current_time, self.host_id, vm.vm_id, allocated, requested)
                vm.state_history.add(current_time, allocated, requested,
                                     vm.in_migration and vm not in self.vms_migrating_in)
                if vm.in_migration:
                    allocated /= MIGRATION_OUT_SHARE
            self.utilization_mips += allocated
            total_requested += requested

        self.state_history.add(current_time, self.utilization_mips, total_requested, self.utilization_mips > 0)
        return smaller_time

    def cpu_utilization(self):
        utilization = self.utilization_mips / self.total_mips
        if 1 < utilization < 1.01:
            utilization = 1.0
        return utilization

    def previous_cpu_utilization(self):
        utilization = self.previous_utilization_mips / self.total_mips
        if 1 < utilization < 1.01:
            utilization = 1.0
        return utilization

    def requested_utilization(self):
        return sum(vm.current_requested_total_mips() for vm in self.vms) / self.total_mips

    def utilization_history(self):
        """Host utilization derived from its VMs' histories, newest first."""
        data = np.zeros(HISTORY_LENGTH)
        host_mips = self.total_mips
        for vm in self.vms:
            history = vm.utilization_history.to_array()[:HISTORY_LENGTH]
            data[:len(history)] += history * vm.total_mips / host_mips
        return trim_zero_tail(data)

    # ----- power -----

    def power_at(self, utilization):
        if not self.active and utilization == 0:
            return 0.0
        # migration overhead can push the measured utilization past capacity
        return self.power_model.get_power(min(utilization, 1.0))

    def power_consumption(self):
        return self.power_at(self.cpu_utilization())

    def energy_linear_interpolation(self, from_utilization, to_utilization, time):
        if from_utilization == 0 and not self.active:
            return 0.0
        from_power = self.power_at(from_utilization)
        to_power = self.power_at(to_utilization)
        return (from_power + (to_power - from_power) / 2) * time

    def power_on(self):
        self.active = True
        logger.info("Host #%s is now ON.", self.host_id)

    def power_off(self):
        self.active = False
        logger.info("Host #%s is now OFF.", self.host_id)

    def __str__(self):
        return (f"Host {self.host_id} | PEs: {self.num_pes} x {self.vm_scheduler.pe_capacity} MIPS "
                f"= {self.total_mips} MIPS, RAM: {self.ram} MB, BW: {self.bw}, "
                f"Storage: {self.storage_capacity} MB")


class VM:
    def __init__(self, vm_id, user_id, mips, num_pes, ram, bw, size,
                 scheduler_class=OverSubscriptionScheduler):
        """
        VM holding containers.

        :param vm_id: Unique identifier
        :param user_id: Owner (broker) id
        :param mips: MIPS of each PE
        :param num_pes: Number of PEs
        :param ram: RAM in MB
        :param bw: Bandwidth
        :param size: Image size in MB, also the storage offered to containers
        """
        self.vm_id = vm_id
        self.user_id = user_id
        self.uid = make_uid(user_id, vm_id)
        self.mips = mips
        self.ram = ram
        self.bw = bw
        self.size = size
        self.pes = [Pe(i, mips) for i in range(num_pes)]
        self.container_scheduler = scheduler_class(self.pes)
        self.ram_provisioner = RamProvisioner(ram)
        self.bw_provisioner = BwProvisioner(bw)
        self.storage_available = size
        self.containers = []
        self.containers_migrating_in = []
        self.host = None
        self.being_instantiated = True
        self.in_migration = False
        self.in_waiting = False
        self.previous_time = 0.0
        self.utilization_mips = 0.0
        self.utilization_history = UtilizationHistory()
        self.state_history = StateHistory("in_migration")

    @property
    def num_pes(self):
        return len(self.pes)

    @property
    def total_mips(self):
        return self.mips * self.num_pes

    @property
    def available_mips(self):
        return self.container_scheduler.available_mips

    def current_requested_mips(self):
        if self.being_instantiated:
            return [self.mips] * self.num_pes
        total = sum(c.current_requested_total_mips() for c in self.containers)
        return [total / self.num_pes] * self.num_pes

    def current_requested_total_mips(self):
        return sum(self.current_requested_mips())

    def current_requested_max_mips(self):
        return max(self.current_requested_mips(), default=0.0)

    def current_requested_ram(self):
        if self.being_instantiated:
            return self.ram
        return sum(c.current_requested_ram() for c in self.containers)

    def current_requested_bw(self):
        if self.being_instantiated:
            return self.bw
        return sum(c.current_requested_bw() for c in self.containers)

    def total_utilization_of_cpu(self, time):
        return sum(c.total_utilization_of_cpu_mips(time) for c in self.containers) / self.total_mips

    def total_utilization_of_cpu_mips(self, time):
        return sum(c.total_utilization_of_cpu_mips(time) for c in self.containers)

    # ----- container lifecycle -----

    def is_suitable_for_container(self, container):
        return (self.container_scheduler.pe_capacity >= container.current_requested_max_mips()
                and self.container_scheduler.available_mips >= container.total_mips
                and self.ram_provisioner.is_suitable(container, container.current_requested_ram())
                and self.bw_provisioner.is_suitable(container, container.current_requested_bw()))

    def container_create(self, container):
        if self.storage_available < container.size:
            logger.info("Allocation of Container #%s to VM #%s failed by storage",
                        container.container_id, self.vm_id)
            return False
        if not self.ram_provisioner.allocate(container, container.current_requested_ram()):
            logger.info("Allocation of Container #%s to VM #%s failed by RAM", container.container_id, self.vm_id)
            return False
        if not self.bw_provisioner.allocate(container, container.current_requested_bw()):
            logger.info("Allocation of Container #%s to VM #%s failed by BW", container.container_id, self.vm_id)
            self.ram_provisioner.deallocate(container)
            return False
        if not self.container_scheduler.allocate_pes_for(container, container.current_requested_mips()):
            logger.info("Allocation of Container #%s to VM #%s failed by MIPS",
                        container.container_id, self.vm_id)
            self.ram_provisioner.deallocate(container)
            self.bw_provisioner.deallocate(container)
            return False
        self.storage_available -= container.size
        self.containers.append(container)
        container.vm = self
        return True

    def try_reserve_container(self, container):
        previous_vm = container.vm
        if not self.container_create(container):
            return False, lambda: None

        def release():
            self.container_destroy(container)
            container.vm = previous_vm

        return True, release

    def _container_deallocate(self, container):
        self.ram_provisioner.deallocate(container)
        self.bw_provisioner.deallocate(container)
        self.container_scheduler.deallocate_pes_for(container)
        self.storage_available += container.size

    def container_destroy(self, container):
        if container not in self.containers:
            return
        self._container_deallocate(container)
        self.containers.remove(container)
        container.vm = None

    def container_destroy_all(self):
        self.ram_provisioner.deallocate_all()
        self.bw_provisioner.deallocate_all()
        self.container_scheduler.deallocate_all()
        for container in self.containers:
            container.vm = None
            self.storage_available += container.size
        self.containers.clear()

    def add_migrating_in_container(self, container):
        container.in_migration = True
        if container in self.containers_migrating_in:
            return True
        if self.storage_available < container.size:
            logger.warning("Migration of Container #%s to VM #%s failed by storage",
                           container.container_id, self.vm_id)
            return False
        if not self.ram_provisioner.allocate(container, container.current_requested_ram()):
            logger.warning("Migration of Container #%s to VM #%s failed by RAM",
                           container.container_id, self.vm_id)
            return False
        if not self.bw_provisioner.allocate(container, container.current_requested_bw()):
            logger.warning("Migration of Container #%s to VM #%s failed by BW",
                           container.container_id, self.vm_id)
            self.ram_provisioner.deallocate(container)
            return False
        self.container_scheduler.migrating_in.append(container.uid)
        if not self.container_scheduler.allocate_pes_for(container, container.current_requested_mips()):
            logger.warning("Migration of Container #%s to VM #%s failed by MIPS",
                           container.container_id, self.vm_id)
            self.container_scheduler.migrating_in.remove(container.uid)
            self.ram_provisioner.deallocate(container)
            self.bw_provisioner.deallocate(container)
            return False
        self.storage_available -= container.size
        self.containers_migrating_in.append(container)
        self.containers.append(container)
        return True

    def remove_migrating_in_container(self, container):
        if container not in self.containers_migrating_in:
            return
        self._container_deallocate(container)
        self.containers_migrating_in.remove(container)
        self.containers.remove(container)
        if container.uid in self.container_scheduler.migrating_in:
            self.container_scheduler.migrating_in.remove(container.uid)
        container.in_migration = False

    def reallocate_migrating_in_containers(self):
        for container in self.containers_migrating_in:
            if container not in self.containers:
                self.containers.append(container)
            if container.uid not in self.container_scheduler.migrating_in:
                self.container_scheduler.migrating_in.append(container.uid)
            self.ram_provisioner.allocate(container, container.current_requested_ram())
            self.bw_provisioner.allocate(container, container.current_requested_bw())
            self.container_scheduler.allocate_pes_for(container, container.current_requested_mips())
            self.storage_available -= container.size

    # ----- processing -----

    def update_vm_processing(self, current_time, mips_share):
        """
        Run the containers up to ``current_time`` and reallocate the VM's
        CPU among them.

        :param mips_share: MIPS the host currently gives this VM, one entry per PE
        :return: smallest positive predicted event time, 0.0 if none
        """
        smaller_time = float("inf")
        if mips_share and self.containers:
            for container in self.containers:
                if container in self.containers_migrating_in:
                    continue
                time = container.update_container_processing(
                    current_time, self.container_scheduler.allocated_mips_for(container))
                if 0 < time < smaller_time:
                    smaller_time = time
        self._update_container_shares(current_time)

        if current_time > self.previous_time:
            utilization = self.total_utilization_of_cpu(current_time)
            if current_time != 0 or utilization != 0:
                self.utilization_history.add(utilization)
            self.previous_time = current_time
        return 0.0 if smaller_time == float("inf") else smaller_time

    def _update_container_shares(self, current_time):
        self.utilization_mips = 0.0
        self.container_scheduler.deallocate_all()
        for container in self.containers:
            self.container_scheduler.allocate_pes_for(container, container.current_requested_mips())
        for container in self.containers:
            allocated = self.container_scheduler.total_allocated_mips_for(container)
            if container not in self.containers_migrating_in:
                container.state_history.add(current_time, allocated, container.current_requested_total_mips(),
                                            container.in_migration)
                if container.in_migration:
                    allocated /= MIGRATION_OUT_SHARE
            self.utilization_mips += allocated

    def __str__(self):
        return (f"VM {self.vm_id} | PEs: {self.num_pes} x {self.mips} MIPS, RAM: {self.ram} MB, "
                f"Size: {self.size} MB, Containers: {len(self.containers)}")


class Container:
    def __init__(self, container_id, user_id, mips, num_pes, ram, bw, size,
                 cloudlet_scheduler=None):
        """
        Leaf workload running cloudlets.

        :param container_id: Unique identifier
        :param user_id: Owner (broker) id
        :param mips: MIPS of each PE
        :param num_pes: Number of PEs
        :param ram: RAM in MB
        :param bw: Bandwidth
        :param size: Storage in MB
        :param cloudlet_scheduler: CloudletScheduler running the container's jobs
        """
        self.container_id = container_id
        self.user_id = user_id
        self.uid = make_uid(user_id, container_id)
        self.mips = mips
        self.num_pes = num_pes
        self.ram = ram
        self.bw = bw
        self.size = size
        self.cloudlet_scheduler = cloudlet_scheduler or CloudletScheduler(mips, num_pes)
        self.vm = None
        self.being_instantiated = True
        self.in_migration = False
        self.previous_time = 0.0
        self.utilization_history = UtilizationHistory()
        self.state_history = StateHistory("in_migration")

    @property
    def total_mips(self):
        return self.mips * self.num_pes

    def submit_cloudlet(self, cloudlet, current_time=0.0):
        return self.cloudlet_scheduler.submit(cloudlet, current_time)

    def current_requested_mips(self):
        if self.being_instantiated:
            return [self.mips] * self.num_pes
        return self.cloudlet_scheduler.current_requested_mips()

    def current_requested_total_mips(self):
        return sum(self.current_requested_mips())

    def current_requested_max_mips(self):
        return max(self.current_requested_mips(), default=0.0)

    def current_requested_ram(self):
        return self.cloudlet_scheduler.current_requested_utilization_of_ram() * self.ram

    def current_requested_bw(self):
        return self.cloudlet_scheduler.current_requested_utilization_of_bw() * self.bw

    def total_utilization_of_cpu(self, time):
        return self.cloudlet_scheduler.total_utilization_of_cpu(time)

    def total_utilization_of_cpu_mips(self, time):
        return self.total_utilization_of_cpu(time) * self.total_mips

    def update_container_processing(self, current_time, mips_share):
        next_event = self.cloudlet_scheduler.update_processing(current_time, mips_share)
        if current_time > self.previous_time:
            utilization = self.total_utilization_of_cpu(current_time)
            if current_time != 0 or utilization != 0:
                self.utilization_history.add(utilization)
            self.previous_time = current_time
        return next_event

    def is_finished(self):
        return self.cloudlet_scheduler.is_finished()

    def __str__(self):
        return (f"Container {self.container_id} | PEs: {self.num_pes} x {self.mips} MIPS, "
                f"RAM: {self.ram} MB, Size: {self.size} MB")
