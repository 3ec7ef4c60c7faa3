import logging

import matplotlib.pyplot as plt
import pandas as pd

from config import (CONTAINER_SELECTION_POLICY, LOG_LEVEL, OVERLOAD_DETECTOR, SAFETY_PARAMETER,
                    SCHEDULING_INTERVAL, STATIC_THRESHOLD, VM_SELECTION_POLICY)
from broker import Broker
from controller import PowerDatacenter
from detectors import make_detector
from Helper import (VM_TYPES, create_container_list, create_host_list, create_vm_list,
                    vm_factory)
from kernel import Simulation
from planner import ContainerMigrationPlanner, MigrationPlanner
from schedule import HostSelector, SchedulerVM
from selection import CONTAINER_LEVEL, VM_LEVEL, make_selection_policy

logger = logging.getLogger(__name__)


def build_simulation(num_hosts, num_vms, num_containers, traces=None, level=CONTAINER_LEVEL,
                     detector=OVERLOAD_DETECTOR, threshold=STATIC_THRESHOLD,
                     safety_parameter=SAFETY_PARAMETER, vm_policy="first_fit",
                     host_selection=None, scheduling_interval=SCHEDULING_INTERVAL,
                     disable_migrations=False):
    """
    Wire hosts, a datacenter with its planner and a broker into a Simulation.

    :param level: "container" to migrate containers, "vm" to migrate VMs
    :param host_selection: host selection policy name for container moves;
                           None uses the power-aware search
    :return: ``(sim, datacenter, broker)``
    """
    sim = Simulation()
    sim.ids.reset()
    hosts = create_host_list(num_hosts, sim.ids)
    overload_detector = make_detector(detector, threshold=threshold, safety_parameter=safety_parameter,
                                      scheduling_interval=scheduling_interval)
    broker = Broker("Broker")

    if level == VM_LEVEL:
        planner = MigrationPlanner(hosts, overload_detector, make_selection_policy(VM_SELECTION_POLICY, VM_LEVEL))
    else:
        selector = HostSelector(hosts, host_selection) if host_selection else None
        planner = ContainerMigrationPlanner(
            hosts, overload_detector, make_selection_policy(CONTAINER_SELECTION_POLICY, CONTAINER_LEVEL),
            vm_factory=None, num_vm_types=VM_TYPES, host_selector=selector)

    datacenter = PowerDatacenter("Datacenter", hosts, planner=planner,
                                 vm_scheduler=SchedulerVM(hosts, vm_policy),
                                 scheduling_interval=scheduling_interval,
                                 disable_migrations=disable_migrations)
    sim.register(datacenter)
    sim.register(broker)
    broker.datacenter_id = datacenter.entity_id
    if level != VM_LEVEL:
        planner.vm_factory = vm_factory(sim.ids, broker.entity_id)

    broker.submit_vms(create_vm_list(num_vms, broker.entity_id, sim.ids))
    broker.submit_containers(create_container_list(num_containers, broker.entity_id, sim.ids, traces))
    return sim, datacenter, broker


def run_simulation(num_hosts, num_vms, num_containers, until=86400, **kwargs):
    logging.basicConfig(level=LOG_LEVEL)
    sim, datacenter, broker = build_simulation(num_hosts, num_vms, num_containers, **kwargs)

    logger.info("Start simulation with %d hosts, %d VMs, %d containers", num_hosts, num_vms, num_containers)
    finished_at = sim.run(until=until)

    summary = datacenter.summary()
    summary["finished_at"] = finished_at
    summary["containers_submitted"] = len(broker.containers)
    summary["containers_unplaced"] = len(broker.containers_failed)
    summary["containers_returned"] = len(broker.returned)
    if broker.containers_failed:
        # initial placement is never retried
        logger.warning("%d of %d containers found no VM at submission and never ran",
                       len(broker.containers_failed), len(broker.containers))
    return summary, datacenter


def host_utilization_frame(hosts):
    """Per-host state history as one DataFrame."""
    frames = []
    for host in hosts:
        frame = host.state_history.to_frame()
        frame["host_id"] = host.host_id
        frame["utilization"] = frame["allocated_mips"] / host.total_mips
        frames.append(frame)
    if not frames:
        return pd.DataFrame(columns=["time", "allocated_mips", "requested_mips", "active", "host_id", "utilization"])
    return pd.concat(frames, ignore_index=True)


def plot_utilization(hosts, show=True):
    frame = host_utilization_frame(hosts)

    plt.figure(figsize=(14, 6))
    for host_id, trace in frame.groupby("host_id"):
        plt.plot(trace["time"] / 60, trace["utilization"], label=f"Host {host_id}", alpha=0.8)
    plt.title("CPU Utilization of Hosts")
    plt.xlabel("Time (minutes)")
    plt.ylabel("CPU Utilization (0–1)")
    plt.grid(True)
    plt.tight_layout()
    plt.legend(ncol=4, fontsize='small', loc='upper center', bbox_to_anchor=(0.5, -0.15))
    if show:
        plt.show()
    return frame
