import random

import pytest

from detectors import StaticThresholdDetector
from errors import ConfigurationError
from schedule import HostSelector, SchedulerContainer, SchedulerVM, utilization_of_cpu_mips


def test_first_fit_skips_unsuitable_hosts(make_host, make_vm):
    hosts = [make_host(0, ram=512), make_host(1)]
    scheduler = SchedulerVM(hosts, "first_fit")
    vm = make_vm(ram=1024)
    assert scheduler.schedule_vm(vm)
    assert vm.host is hosts[1]


def test_schedule_vm_fails_when_nothing_fits(make_host, make_vm):
    scheduler = SchedulerVM([make_host(0, pe_mips=500)], "first_fit")
    assert not scheduler.schedule_vm(make_vm(mips=1000))


def test_schedule_vm_boots_inactive_host(make_host, make_vm):
    host = make_host(boot_energy_joules=300)
    host.power_off()
    scheduler = SchedulerVM([host], "first_fit")
    assert scheduler.schedule_vm(make_vm())
    assert host.active
    assert scheduler.get_total_boot_energy() == 300


def test_least_utilized_and_most_free_ram(make_host, make_vm):
    busy, idle = make_host(0), make_host(1, ram=8000)
    busy.vm_create(make_vm(10, mips=2000))
    vm = make_vm(11)
    assert SchedulerVM([busy, idle], "least_utilized")._select_host(vm) is idle
    assert SchedulerVM([busy, idle], "most_utilized")._select_host(vm) is busy
    assert SchedulerVM([busy, idle], "most_free_ram")._select_host(vm) is busy


def test_unknown_vm_policy(make_host):
    with pytest.raises(ConfigurationError):
        SchedulerVM([make_host()], "fastest")


def test_energy_aware_prefers_first_host_on_ties(make_host, make_vm):
    hosts = [make_host(0), make_host(1)]
    scheduler = SchedulerVM(hosts, "energy_aware", detector=StaticThresholdDetector(0.8))
    assert scheduler.find_host_for_vm(make_vm(mips=1000)) is hosts[0]


def test_energy_aware_skips_hosts_overloaded_after_placement(make_host, make_vm):
    hosts = [make_host(0), make_host(1)]
    hosts[0].vm_create(make_vm(10, mips=3000))
    scheduler = SchedulerVM(hosts, "energy_aware", detector=StaticThresholdDetector(0.8))
    vm = make_vm(11, mips=1000)
    assert scheduler.find_host_for_vm(vm) is hosts[1]
    # the probe leaves no trace
    assert vm not in hosts[0].vms
    assert vm.host is None
    assert hosts[0].available_mips == 1000


def test_energy_aware_respects_exclusions(make_host, make_vm):
    hosts = [make_host(0), make_host(1)]
    scheduler = SchedulerVM(hosts, "energy_aware")
    assert scheduler.find_host_for_vm(make_vm(), excluded={hosts[0]}) is hosts[1]
    assert scheduler.find_host_for_vm(make_vm(), excluded=set(hosts)) is None


def test_utilization_counts_migrating_in_vms_in_full(make_host, make_vm):
    host = make_host()
    host.add_migrating_in_vm(make_vm(mips=1000))
    assert utilization_of_cpu_mips(host) == pytest.approx(1000)


def test_container_policies(make_vm, make_container):
    roomy = make_vm(0, mips=2000)
    tight = make_vm(1, mips=2000)
    tight.container_create(make_container(0, mips=1500))
    vms = [tight, roomy]

    least_full = SchedulerContainer(vms, "least_full").schedule_container(make_container(1, mips=200))
    assert least_full is roomy
    most_full = SchedulerContainer(vms, "most_full").schedule_container(make_container(2, mips=200))
    assert most_full is tight


def test_container_scheduler_tries_the_next_vm(make_vm, make_container):
    small, large = make_vm(0, mips=400), make_vm(1, mips=2000)
    container = make_container(mips=1000)
    assert SchedulerContainer([small, large], "first_fit").schedule_container(container) is large
    assert container.vm is large
    assert SchedulerContainer([small], "first_fit").schedule_container(make_container(1, mips=1000)) is None


def test_unknown_container_policy():
    with pytest.raises(ConfigurationError):
        SchedulerContainer([], "best_fit")


def test_host_selector(make_host):
    hosts = [make_host(0), make_host(1), make_host(2)]
    hosts[0].utilization_mips = 2000
    hosts[2].utilization_mips = 3000
    assert HostSelector(hosts, "first_fit").select(None, {hosts[0]}) is hosts[1]
    assert HostSelector(hosts, "least_full").select(None, set()) is hosts[1]
    assert HostSelector(hosts, "most_full", clock=lambda: 600).select(None, set()) is hosts[2]
    assert HostSelector(hosts, "random", rng=random.Random(1)).select(None, set(hosts)) is None


def test_minimum_correlation_falls_back_on_short_history(make_host, make_container):
    hosts = [make_host(0), make_host(1)]
    selector = HostSelector(hosts, "minimum_correlation", fallback=HostSelector(hosts, "first_fit"))
    assert selector.select(make_container(), set()) is hosts[0]
    with pytest.raises(ConfigurationError):
        HostSelector(hosts, "power")
