# controller.py
import logging

import kernel
from config import (CONTAINER_STARTUP_DELAY, DISABLE_MIGRATIONS, SCHEDULING_INTERVAL,
                    VM_STARTUP_DELAY)
from errors import InvariantViolation, ProtocolError
from schedule import SchedulerContainer, SchedulerVM

logger = logging.getLogger(__name__)


class MigrationAttempt:
    PLANNED = "Planned"
    VM_PENDING = "VmPending"
    CONTAINER_PENDING = "ContainerPending"
    COMMITTED = "Committed"
    ABORTED = "Aborted"

    def __init__(self, entry, started_at):
        """
        Progress of one migration-map entry. VM moves go Planned -> VmPending
        -> Committed; container moves that need a new VM go Planned ->
        VmPending -> ContainerPending -> Committed, others skip VmPending.
        """
        self.entry = entry
        self.started_at = started_at
        self.state = self.PLANNED
        self.finished_at = None

    def advance(self, state, time=None):
        logger.debug("%s: %s -> %s", self.entry, self.state, state)
        self.state = state
        if state in (self.COMMITTED, self.ABORTED):
            self.finished_at = time


def _payload(event, *keys):
    if not isinstance(event.payload, dict):
        raise ProtocolError(f"{event.tag} payload must be a dict, got {type(event.payload).__name__}")
    missing = [key for key in keys if key not in event.payload]
    if missing:
        raise ProtocolError(f"{event.tag} payload is missing {', '.join(missing)}")
    return event.payload


class PowerDatacenter:
    def __init__(self, name, hosts, planner=None, vm_scheduler=None, container_policy="first_fit",
                 scheduling_interval=SCHEDULING_INTERVAL, vm_startup_delay=VM_STARTUP_DELAY,
                 container_startup_delay=CONTAINER_STARTUP_DELAY, disable_migrations=DISABLE_MIGRATIONS):
        """
        Datacenter entity running the periodic control loop.

        :param hosts: list of Host objects
        :param planner: MigrationPlanner or ContainerMigrationPlanner
        :param vm_scheduler: SchedulerVM for VMs submitted by brokers
        :param container_policy: placement policy for submitted containers
        """
        self.name = name
        self.hosts = hosts
        self.planner = planner
        self.vm_scheduler = vm_scheduler or SchedulerVM(hosts, "first_fit")
        self.vms = []
        self.containers = []
        self.container_scheduler = SchedulerContainer(self.vms, container_policy)
        self.scheduling_interval = scheduling_interval
        self.vm_startup_delay = vm_startup_delay
        self.container_startup_delay = container_startup_delay
        self.disable_migrations = disable_migrations
        self.entity_id = None
        self.sim = None
        self.last_process_time = 0.0
        self.workload_submitted_at = -1
        self.total_energy_joules = 0.0
        self.energy_history = []
        self.active_host_history = []
        self.migrations = []
        self.vm_migration_count = 0
        self.container_migration_count = 0
        self.new_vm_count = 0

    def start(self):
        if self.planner is not None:
            self.planner.set_clock(self.sim.now)
        self._schedule_tick(0)

    def process_event(self, event):
        handlers = {
            kernel.VM_DATACENTER_EVENT: self.update_processing,
            kernel.VM_CREATE: self.process_vm_create,
            kernel.VM_MIGRATE: self.process_vm_migrate,
            kernel.CONTAINER_SUBMIT: self.process_container_submit,
            kernel.CONTAINER_MIGRATE: self.process_container_migrate,
        }
        handler = handlers.get(event.tag)
        try:
            if handler is None:
                raise ProtocolError(f"unknown tag {event.tag}")
            handler(event)
        except ProtocolError as e:
            logger.warning("%.2f: %s dropped an event: %s", self.sim.now(), self.name, e)

    # ----- tick -----

    def _schedule_tick(self, delay):
        """At most one tick is ever pending for this datacenter."""
        self.sim.cancel_pending(self.entity_id, lambda ev: ev.tag == kernel.VM_DATACENTER_EVENT)
        self.sim.schedule(self.entity_id, delay, kernel.VM_DATACENTER_EVENT, source=self.entity_id)

    def update_processing(self, event=None):
        now = self.sim.now()
        if self.workload_submitted_at == -1 or self.workload_submitted_at == now:
            self._schedule_tick(self.scheduling_interval)
            return
        if now <= self.last_process_time:
            self._schedule_tick(self.scheduling_interval)
            return

        min_time = self.update_processing_force()
        if not self.disable_migrations and self.planner is not None:
            migration_map = self.planner.optimize_allocation()
            self.start_migrations(migration_map)
        if min_time != float("inf"):
            self._schedule_tick(max(self.scheduling_interval, min_time - now))
        self.last_process_time = now

    def update_processing_force(self):
        """
        Process every host up to now, account energy and reclaim finished
        work.

        :return: earliest predicted event time, inf if none
        """
        now = self.sim.now()
        time_diff = now - self.last_process_time
        min_time = float("inf")
        for host in self.hosts:
            time = host.update_vms_processing(now)
            if time < min_time:
                min_time = time
            logger.debug("%.2f: [Host #%s] utilization is %.2f%%", now, host.host_id,
                         host.cpu_utilization() * 100)

        if time_diff > 0:
            frame_energy = 0.0
            for host in self.hosts:
                frame_energy += host.energy_linear_interpolation(
                    host.previous_cpu_utilization(), host.cpu_utilization(), time_diff)
            self.total_energy_joules += frame_energy
            self.energy_history.append((now, frame_energy))
            logger.debug("%.2f: Energy consumed in the last %.2f s: %.2f J", now, time_diff, frame_energy)

        self._return_finished_containers(now)
        for host in self.hosts:
            for vm in host.completed_vms():
                host.vm_destroy(vm)
                if vm in self.vms:
                    self.vms.remove(vm)
                logger.info("%.2f: VM #%s has been deallocated from Host #%s", now, vm.vm_id, host.host_id)
            if host.active and not host.vms:
                host.power_off()
        self.active_host_history.append((now, sum(1 for h in self.hosts if h.vms)))
        self.last_process_time = now
        return min_time

    def _return_finished_containers(self, now):
        for container in list(self.containers):
            if container.in_migration or not container.is_finished():
                continue
            if container.vm is not None:
                container.vm.container_destroy(container)
            self.containers.remove(container)
            self.sim.schedule(container.user_id, 0, kernel.CLOUDLET_RETURN,
                              {"container_id": container.container_id}, source=self.entity_id)

    # ----- migration start -----

    def start_migrations(self, migration_map):
        now = self.sim.now()
        pending_vms = {}
        for entry in migration_map:
            attempt = MigrationAttempt(entry, now)
            self.migrations.append(attempt)
            if entry.is_container:
                self._start_container_migration(attempt, pending_vms)
            else:
                self._start_vm_migration(attempt)

    def _start_vm_migration(self, attempt):
        vm = attempt.entry.workload
        target = attempt.entry.destination_owner
        if not target.add_migrating_in_vm(vm):
            vm.in_migration = False
            attempt.advance(MigrationAttempt.ABORTED, self.sim.now())
            logger.warning("%.2f: Migration of VM #%s to Host #%s aborted", self.sim.now(), vm.vm_id, target.host_id)
            return
        target.update_vms_processing(self.sim.now())
        if vm.host is not None:
            vm.host.update_vms_processing(self.sim.now())
        self.vm_migration_count += 1
        attempt.advance(MigrationAttempt.VM_PENDING)
        # half of the link is left to regular traffic
        delay = vm.ram / (target.bw / (2 * 8000))
        logger.info("%.2f: Migration of VM #%s from Host #%s to Host #%s started", self.sim.now(), vm.vm_id,
                    vm.host.host_id if vm.host else None, target.host_id)
        self.sim.schedule(self.entity_id, delay, kernel.VM_MIGRATE, {"attempt": attempt}, source=self.entity_id)

    def _start_container_migration(self, attempt, pending_vms):
        entry = attempt.entry
        container = entry.workload
        target_vm = entry.destination_owner
        self.container_migration_count += 1
        if entry.requires_new_owner:
            container.in_migration = True
            if target_vm not in pending_vms:
                pending_vms[target_vm] = []
                self.sim.schedule(self.entity_id, self.vm_startup_delay, kernel.VM_CREATE,
                                  {"vm": target_vm, "host": entry.destination_host,
                                   "attempts": pending_vms[target_vm]}, source=self.entity_id)
            pending_vms[target_vm].append(attempt)
            attempt.advance(MigrationAttempt.VM_PENDING)
            delay = self.vm_startup_delay + self.container_startup_delay
        else:
            if not target_vm.add_migrating_in_container(container):
                container.in_migration = False
                attempt.advance(MigrationAttempt.ABORTED, self.sim.now())
                logger.warning("%.2f: Migration of Container #%s to VM #%s aborted", self.sim.now(),
                               container.container_id, target_vm.vm_id)
                return
            attempt.advance(MigrationAttempt.CONTAINER_PENDING)
            delay = self.container_startup_delay
        logger.info("%.2f: Migration of Container #%s to VM #%s on Host #%s started", self.sim.now(),
                    container.container_id, target_vm.vm_id, entry.destination_host.host_id)
        self.sim.schedule(self.entity_id, delay, kernel.CONTAINER_MIGRATE, {"attempt": attempt},
                          source=self.entity_id)

    # ----- event handlers -----

    def process_vm_create(self, event):
        payload = _payload(event, "vm")
        vm = payload["vm"]
        now = self.sim.now()
        if "host" in payload:
            self._create_planned_vm(vm, payload["host"], payload.get("attempts", []))
            return
        result = self.vm_scheduler.schedule_vm(vm)
        self.sim.schedule(event.source, 0, kernel.VM_CREATE_ACK,
                          {"datacenter_id": self.entity_id, "vm_id": vm.vm_id, "result": result},
                          source=self.entity_id)
        if result:
            self.vms.append(vm)
            vm.being_instantiated = False
            vm.update_vm_processing(now, vm.host.vm_scheduler.allocated_mips_for(vm))

    def _create_planned_vm(self, vm, host, attempts):
        now = self.sim.now()
        result = host.vm_create(vm)
        vm.in_waiting = True
        self.sim.schedule(vm.user_id, 0, kernel.VM_NEW_CREATE,
                          {"datacenter_id": self.entity_id, "vm_id": vm.vm_id, "result": result},
                          source=self.entity_id)
        if not result:
            logger.warning("%.2f: New VM #%s could not be created on Host #%s", now, vm.vm_id, host.host_id)
            for attempt in attempts:
                attempt.entry.workload.in_migration = False
                attempt.advance(MigrationAttempt.ABORTED, now)
            return
        if not host.active:
            host.power_on()
            self.vm_scheduler.boot_energy_total += host.boot_energy_joules
        self.vms.append(vm)
        self.new_vm_count += 1
        vm.being_instantiated = False
        vm.update_vm_processing(now, host.vm_scheduler.allocated_mips_for(vm))
        logger.info("%.2f: New VM #%s created on Host #%s", now, vm.vm_id, host.host_id)
        for attempt in attempts:
            container = attempt.entry.workload
            if vm.add_migrating_in_container(container):
                attempt.advance(MigrationAttempt.CONTAINER_PENDING)
            else:
                container.in_migration = False
                attempt.advance(MigrationAttempt.ABORTED, now)

    def process_vm_migrate(self, event):
        attempt = _payload(event, "attempt")["attempt"]
        if attempt.state != MigrationAttempt.VM_PENDING:
            raise ProtocolError(f"VM_MIGRATE for an attempt in state {attempt.state}")
        now = self.sim.now()
        self.update_processing_force()
        vm = attempt.entry.workload
        target = attempt.entry.destination_owner
        if vm.host is not None:
            vm.host.vm_destroy(vm)
        target.remove_migrating_in_vm(vm)
        if not target.vm_create(vm):
            logger.error("%.2f: Couldn't allocate VM #%s to the new Host #%s", now, vm.vm_id, target.host_id)
            raise InvariantViolation(f"Couldn't allocate VM #{vm.vm_id} to the new Host #{target.host_id}")
        vm.in_migration = False
        if not target.active:
            target.power_on()
            self.vm_scheduler.boot_energy_total += target.boot_energy_joules
        attempt.advance(MigrationAttempt.COMMITTED, now)
        logger.info("%.2f: Migration of VM #%s to Host #%s is completed", now, vm.vm_id, target.host_id)
        self.update_processing_force()

    def process_container_migrate(self, event):
        attempt = _payload(event, "attempt")["attempt"]
        if attempt.state != MigrationAttempt.CONTAINER_PENDING:
            if attempt.state == MigrationAttempt.ABORTED:
                return
            raise ProtocolError(f"CONTAINER_MIGRATE for an attempt in state {attempt.state}")
        now = self.sim.now()
        self.update_processing_force()
        container = attempt.entry.workload
        target_vm = attempt.entry.destination_owner
        if container.vm is not None:
            container.vm.container_destroy(container)
        target_vm.remove_migrating_in_container(container)
        if not target_vm.container_create(container):
            logger.error("%.2f: Couldn't allocate Container #%s to VM #%s", now, container.container_id,
                         target_vm.vm_id)
            raise InvariantViolation(
                f"Couldn't allocate Container #{container.container_id} to VM #{target_vm.vm_id}")
        target_vm.in_waiting = False
        container.in_migration = False
        attempt.advance(MigrationAttempt.COMMITTED, now)
        logger.info("%.2f: Migration of Container #%s to VM #%s is completed", now, container.container_id,
                    target_vm.vm_id)
        self.update_processing_force()

    def process_container_submit(self, event):
        containers = _payload(event, "containers")["containers"]
        if not isinstance(containers, (list, tuple)):
            raise ProtocolError("CONTAINER_SUBMIT containers must be a list")
        now = self.sim.now()
        self.workload_submitted_at = now
        for container in containers:
            vm = self.container_scheduler.schedule_container(container)
            result = vm is not None
            self.sim.schedule(event.source, 0, kernel.CONTAINER_CREATE_ACK,
                              {"host_id": vm.host.host_id if result and vm.host else -1,
                               "vm_id": vm.vm_id if result else -1,
                               "container_id": container.container_id, "result": result},
                              source=self.entity_id)
            if result:
                self.containers.append(container)
                container.being_instantiated = False
                container.update_container_processing(now, vm.container_scheduler.allocated_mips_for(container))

    # ----- results -----

    def summary(self):
        return {
            "energy_joules": self.total_energy_joules,
            "vm_migrations": self.vm_migration_count,
            "container_migrations": self.container_migration_count,
            "new_vms": self.new_vm_count,
            "boot_energy_joules": self.vm_scheduler.get_total_boot_energy(),
        }
