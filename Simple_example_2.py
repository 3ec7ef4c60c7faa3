# Event-driven run: hosts, VMs and containers with a MAD detector and
# container-level migrations.

from Runner import plot_utilization, run_simulation

summary, datacenter = run_simulation(num_hosts=4, num_vms=6, num_containers=20, until=6 * 3600,
                                     detector="mad", vm_policy="least_utilized")

print("\n===== Summary =====")
for key, value in summary.items():
    print(f"{key}: {value}")
print(f"Total Energy Consumption: {summary['energy_joules']:.2f} J = "
      f"{summary['energy_joules'] / 3600000:.6f} kWh")

plot_utilization(datacenter.hosts)
