import random

import pytest

from datacenter import VM
from detectors import StaticThresholdDetector
from planner import ContainerMigrationPlanner, MigrationPlanner
from selection import CONTAINER_LEVEL, MaximumUsageSelection


def assignments(hosts):
    """(host, vm) and (vm, container) table plus storage left on each host."""
    return [(host.host_id,
             sorted(vm.uid for vm in host.vms),
             sorted((vm.uid, c.uid) for vm in host.vms for c in vm.containers),
             host.storage_available)
            for host in hosts]


def ledger(hosts):
    return [(dict(host.ram_provisioner.allocations),
             dict(host.bw_provisioner.allocations),
             {uid: list(shares) for uid, shares in host.vm_scheduler.mips_map.items()})
            for host in hosts]


def snapshot(hosts):
    return assignments(hosts), ledger(hosts)


def vm_planner(hosts, threshold=0.8):
    return MigrationPlanner(hosts, StaticThresholdDetector(threshold), MaximumUsageSelection())


def test_overloaded_host_is_evacuated(make_host, make_vm):
    a, b = make_host(0), make_host(1)
    vm0, vm1 = make_vm(0, mips=2100), make_vm(1, mips=2100)
    a.vm_create(vm0)
    a.vm_create(vm1)
    before = snapshot([a, b])

    migration_map = vm_planner([a, b]).optimize_allocation()

    assert len(migration_map) == 1
    entry = migration_map[0]
    assert entry.workload is vm0
    assert entry.source_owner is a
    assert entry.destination_owner is b
    assert not entry.is_container
    moved = {e.workload for e in migration_map}
    remaining = sum(vm.current_requested_total_mips() for vm in a.vms if vm not in moved)
    assert remaining / a.total_mips <= 0.8
    # planning leaves the datacenter as it found it
    assert snapshot([a, b]) == before
    assert vm0.host is a and vm1.host is a


def test_no_destination_is_over_utilized(make_host, make_vm):
    a, b, c = make_host(0), make_host(1), make_host(2, num_pes=2)
    for i, host in enumerate([a, b]):
        host.vm_create(make_vm(2 * i, mips=2100))
        host.vm_create(make_vm(2 * i + 1, mips=2100))

    migration_map = vm_planner([a, b, c]).optimize_allocation()

    assert len(migration_map) == 2
    assert all(entry.destination_host is c for entry in migration_map)
    assert {entry.source_owner for entry in migration_map} == {a, b}


def test_empty_plan_restores_identical_state(make_host, make_vm, make_container):
    hosts = [make_host(0), make_host(1)]
    vm = make_vm(0, mips=2000)
    hosts[0].vm_create(vm)
    vm.container_create(make_container(0, mips=500))
    vm.container_create(make_container(1, mips=700))
    before = snapshot(hosts)
    planner = vm_planner(hosts, threshold=0.9)

    assert planner.optimize_allocation() == []
    assert snapshot(hosts) == before

    planner.save_allocation()
    planner.restore_allocation()
    assert snapshot(hosts) == before


def test_migrating_in_vms_survive_restore(make_host, make_vm):
    a, b = make_host(0), make_host(1)
    staying, arriving = make_vm(0), make_vm(1)
    a.vm_create(staying)
    b.add_migrating_in_vm(arriving)
    before = snapshot([a, b])
    planner = vm_planner([a, b])
    planner.save_allocation()
    planner.restore_allocation()
    assert snapshot([a, b]) == before
    assert arriving in b.vms_migrating_in


def processed(host, time=0):
    host.update_vms_processing(time)
    return host


def test_under_utilized_host_is_consolidated(make_host, make_vm):
    a, b = make_host(0), make_host(1)
    small, large = make_vm(0, mips=1000), make_vm(1, mips=2000)
    a.vm_create(small)
    b.vm_create(large)
    processed(a)
    processed(b)

    migration_map = vm_planner([a, b]).optimize_allocation()

    assert len(migration_map) == 1
    assert migration_map[0].workload is small
    assert migration_map[0].source_owner is a
    assert migration_map[0].destination_owner is b
    assert small.host is a


def test_consolidation_is_all_or_nothing(make_host, make_vm):
    a, b = make_host(0), make_host(1)
    a.vm_create(make_vm(0, mips=1000))
    a.vm_create(make_vm(1, mips=1000))
    b.vm_create(make_vm(2, mips=2000))
    processed(a)
    processed(b)
    before = snapshot([a, b])

    assert vm_planner([a, b]).optimize_allocation() == []
    assert snapshot([a, b]) == before


def test_consolidation_blocked_by_migrating_in_vm(make_host, make_vm):
    a, b, c = make_host(0), make_host(1), make_host(2)
    a.add_migrating_in_vm(make_vm(0, mips=1000))
    a.vm_create(make_vm(1, mips=1000))
    c.vm_create(make_vm(2, mips=1000))
    planner = vm_planner([a, b, c])
    assert planner.is_consolidation_blocked(a)
    assert planner.is_consolidation_blocked(b)
    assert not planner.is_consolidation_blocked(c)


@pytest.fixture
def container_setup(make_host, make_vm, make_container):
    """
    Host A runs one VM holding two 2000 MIPS containers and is over-utilized;
    host B is switched off.
    """
    a, b = make_host(0), make_host(1, num_pes=2)
    vm = make_vm(0, mips=4000, ram=4096)
    a.vm_create(vm)
    vm.being_instantiated = False
    c1, c2 = make_container(0, mips=2000), make_container(1, mips=2000)
    vm.container_create(c1)
    vm.container_create(c2)
    processed(a)
    return a, b, vm, c1, c2


def new_vm_factory(user_id=0):
    def factory(vm_type):
        return VM(100 + vm_type, user_id, mips=2000, num_pes=1, ram=1024, bw=10000, size=1000)
    return factory


def test_container_needing_a_new_vm(container_setup):
    a, b, vm, c1, c2 = container_setup
    planner = ContainerMigrationPlanner(
        [a, b], StaticThresholdDetector(0.8), MaximumUsageSelection(CONTAINER_LEVEL),
        vm_factory=new_vm_factory(), num_vm_types=1, rng=random.Random(3))
    before = assignments([a, b])

    migration_map = planner.optimize_allocation()

    assert len(migration_map) == 1
    entry = migration_map[0]
    assert entry.is_container
    assert entry.workload is c1
    assert entry.source_owner is vm
    assert entry.requires_new_owner
    assert entry.destination_host is b
    assert isinstance(entry.destination_owner, VM)
    assert entry.destination_owner.in_waiting
    assert planner.created_vms == [entry.destination_owner]
    # the planned VM only exists in the plan
    assert b.vms == []
    assert c1.vm is vm
    assert assignments([a, b]) == before


def test_container_moves_to_existing_vm(container_setup, make_vm):
    a, b, vm, c1, c2 = container_setup
    target = make_vm(1, mips=2500, ram=2048)
    b.vm_create(target)
    processed(b)
    planner = ContainerMigrationPlanner(
        [a, b], StaticThresholdDetector(0.8), MaximumUsageSelection(CONTAINER_LEVEL),
        vm_factory=new_vm_factory(), num_vm_types=1)

    migration_map = planner.optimize_allocation()

    assert [(e.workload, e.destination_owner, e.requires_new_owner) for e in migration_map] == [
        (c1, target, False)]
    assert c1.vm is vm


def test_container_without_any_destination(container_setup):
    a, b, vm, c1, c2 = container_setup
    planner = ContainerMigrationPlanner(
        [a, b], StaticThresholdDetector(0.8), MaximumUsageSelection(CONTAINER_LEVEL))
    assert planner.optimize_allocation() == []
    assert c1.vm is vm and c2.vm is vm
