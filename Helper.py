# Helper.py

import os
import random

from cloudlets import Cloudlet
from datacenter import VM, Container, Host
from config import SCHEDULING_INTERVAL

# ====================
# Host Configuration
# ====================
HOST_TYPES = 2
HOST_MIPS = [1860, 2660]
HOST_PES = [2, 2]
HOST_RAM = [4096, 4096]
HOST_BW = 1000000
HOST_STORAGE = 1000000
HOST_Power_Idle = [60, 60]
HOST_Power_Full = [120, 140]

def create_host_list(num_hosts, ids=None):
    hosts = []
    for i in range(num_hosts):
        type_id = i % HOST_TYPES

        host = Host(
            host_id=ids.next_id("host") if ids else i,
            num_pes=HOST_PES[type_id],
            pe_mips=HOST_MIPS[type_id],
            ram=HOST_RAM[type_id],
            bw=HOST_BW,
            storage=HOST_STORAGE,
            power_idle=HOST_Power_Idle[type_id],
            power_max=HOST_Power_Full[type_id]
        )
        hosts.append(host)
    return hosts


# ====================
# VM Configuration
# ====================
VM_TYPES = 4
VM_MIPS = [x / 2 for x in [2500, 2000, 1000, 500]]
VM_PES  = [1,    1,    1,    1]
VM_RAM  = [870,  1740, 1740, 613]
VM_BW   = 100000  # 100 Mbit/s
VM_SIZE = 2500    # 2.5 GB

def create_vm(vm_type, vm_id, user_id):
    return VM(vm_id, user_id, mips=VM_MIPS[vm_type], num_pes=VM_PES[vm_type],
              ram=VM_RAM[vm_type], bw=VM_BW, size=VM_SIZE)

def create_vm_list(num_vms, user_id, ids=None, start_id=0):
    vm_list = []
    for i in range(num_vms):
        vm_type = random.randint(0, VM_TYPES - 1)
        vm_id = ids.next_id("vm") if ids else start_id + i
        vm_list.append(create_vm(vm_type, vm_id, user_id))
    return vm_list

def vm_factory(ids, user_id):
    """Factory handed to the container planner for VMs it has to create."""
    def new_vm(vm_type):
        return create_vm(vm_type, ids.next_id("vm"), user_id)
    return new_vm


# ====================
# Container Configuration
# ====================
CONTAINER_TYPES = 3
CONTAINER_MIPS = [250, 500, 1000]
CONTAINER_PES  = [1,   1,   1]
CONTAINER_RAM  = [128, 256, 512]
CONTAINER_BW   = 2500
CONTAINER_SIZE = 250

CLOUDLET_LENGTH = 30 * 86400  # MI
CLOUDLET_PES = 1

def create_container_list(num_containers, user_id, ids=None, traces=None, start_id=0):
    """
    Containers of random type, each running one cloudlet.

    :param traces: optional list of CPU utilization traces, assigned round-robin
    """
    containers = []
    for i in range(num_containers):
        container_type = random.randint(0, CONTAINER_TYPES - 1)
        container_id = ids.next_id("container") if ids else start_id + i
        container = Container(container_id, user_id,
                              mips=CONTAINER_MIPS[container_type],
                              num_pes=CONTAINER_PES[container_type],
                              ram=CONTAINER_RAM[container_type],
                              bw=CONTAINER_BW, size=CONTAINER_SIZE)
        trace = traces[i % len(traces)] if traces else None
        cloudlet = Cloudlet(container_id, length=CLOUDLET_LENGTH, num_pes=CLOUDLET_PES,
                            cpu_demand_ratio=random.uniform(0.2, 0.9), cpu_trace=trace)
        container.submit_cloudlet(cloudlet)
        containers.append(container)
    return containers


def load_trace_data(trace_dir, num_traces, time_steps=288):
    """
    Load PlanetLab CPU traces (one integer percentage per line).

    :return: list of traces of length time_steps + 1, values in [0, 1]; the
             last sample repeats the one before it
    """
    trace_files = sorted(f for f in os.listdir(trace_dir) if os.path.isfile(os.path.join(trace_dir, f)))
    selected_traces = random.sample(trace_files, min(num_traces, len(trace_files)))
    traces = []

    for filename in selected_traces:
        path = os.path.join(trace_dir, filename)
        with open(path, 'r') as f:
            values = [float(line.strip()) for line in f if line.strip().isdigit()]
        values = values[:time_steps]
        if len(values) < time_steps:
            raise ValueError(f"Trace file {filename} has fewer than {time_steps} entries.")
        trace = [min(max(v / 100.0, 0.0), 1.0) for v in values]
        trace.append(trace[-1])
        traces.append(trace)

    return traces


def trace_duration(time_steps=288, interval=SCHEDULING_INTERVAL):
    return time_steps * interval
