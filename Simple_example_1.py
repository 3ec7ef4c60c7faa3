# One over-utilized host, one idle host, and a single optimization pass.

import logging

from datacenter import Host, VM
from detectors import StaticThresholdDetector
from planner import MigrationPlanner
from selection import MaximumUsageSelection

logging.basicConfig(level=logging.INFO)

# ----- SETUP HOSTS -----
host_a = Host(0, num_pes=1, pe_mips=4000, ram=16000, bw=1000000, storage=10000,
              power_idle=80, power_max=200)
host_b = Host(1, num_pes=1, pe_mips=4000, ram=16000, bw=1000000, storage=10000,
              power_idle=80, power_max=200)
hosts = [host_a, host_b]

# ----- SETUP VMs -----
# While being instantiated a VM requests its full rated MIPS.
vms = [VM(i, user_id=0, mips=2100, num_pes=1, ram=1024, bw=10000, size=1000) for i in range(2)]
for vm in vms:
    host_a.vm_create(vm)

print(f"Host A requested/total before: {host_a.requested_utilization():.3f}")

planner = MigrationPlanner(hosts, StaticThresholdDetector(0.8), MaximumUsageSelection())
migration_map = planner.optimize_allocation()

for entry in migration_map:
    print(f"VM {entry.workload.vm_id}: Host {entry.source_owner.host_id} -> Host {entry.destination_owner.host_id}")

moved = sum(entry.workload.current_requested_total_mips() for entry in migration_map)
remaining = sum(vm.current_requested_total_mips() for vm in host_a.vms) - moved
print(f"Host A requested/total after the moves: {remaining / host_a.total_mips:.3f}")
