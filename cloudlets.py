# cloudlets.py
import logging

import numpy as np

from config import MIN_TIME_BETWEEN_EVENTS, SCHEDULING_INTERVAL

logger = logging.getLogger(__name__)


class Cloudlet:
    def __init__(self, cloudlet_id, length, num_pes=1, cpu_demand_ratio=1.0,
                 cpu_trace=None, trace_interval=SCHEDULING_INTERVAL,
                 ram_ratio=1.0, bw_ratio=1.0):
        """
        :param cloudlet_id: Unique identifier
        :param length: Total workload in MI (Million Instructions)
        :param num_pes: PEs the cloudlet runs on
        :param cpu_demand_ratio: Fraction of the container CPU requested when no trace is given
        :param cpu_trace: CPU utilization samples (0 to 1), one per trace_interval
        :param trace_interval: Seconds between two trace samples
        :param ram_ratio: Fraction of the container RAM used
        :param bw_ratio: Fraction of the container bandwidth used
        """
        self.cloudlet_id = cloudlet_id
        self.length = length
        self.num_pes = num_pes
        self.cpu_demand_ratio = cpu_demand_ratio
        self.cpu_trace = None if cpu_trace is None else np.asarray(cpu_trace, dtype=float)
        self.trace_interval = trace_interval
        self.ram_ratio = ram_ratio
        self.bw_ratio = bw_ratio
        self.remaining = length
        self.start_time = None
        self.end_time = None
        self.finished = False

        # Statistical features of the workload trace
        self.trace_mean = None if self.cpu_trace is None else float(np.mean(self.cpu_trace))

    def utilization_of_cpu(self, time):
        if self.cpu_trace is None:
            return self.cpu_demand_ratio
        sample_times = np.arange(len(self.cpu_trace)) * self.trace_interval
        return float(np.interp(time, sample_times, self.cpu_trace))

    def next_trace_change(self, time):
        """Time of the next trace sample after ``time``, or inf without a trace."""
        if self.cpu_trace is None:
            return float("inf")
        index = int(time // self.trace_interval) + 1
        if index >= len(self.cpu_trace):
            return float("inf")
        return index * self.trace_interval

    def set_cpu_demand_ratio(self, new_ratio):
        self.cpu_demand_ratio = new_ratio

    def __str__(self):
        status = "Finished" if self.finished else f"{self.remaining:.2f} MI remaining"
        return f"Cloudlet {self.cloudlet_id} | {status}"


class CloudletScheduler:
    def __init__(self, mips, num_pes):
        """
        Dynamic-workload scheduler running the cloudlets of one container.

        :param mips: MIPS of each container PE
        :param num_pes: number of container PEs
        """
        self.mips = mips
        self.num_pes = num_pes
        self.total_mips = mips * num_pes
        self.executing = []
        self.finished = []
        self.previous_time = 0.0
        self.current_mips_share = []

    def submit(self, cloudlet, current_time=0.0):
        cloudlet.start_time = current_time
        self.executing.append(cloudlet)
        return self.estimated_finish_time(cloudlet, self.previous_time)

    def total_utilization_of_cpu(self, time):
        return sum(cl.utilization_of_cpu(time) for cl in self.executing)

    def current_requested_mips(self):
        total = self.total_utilization_of_cpu(self.previous_time) * self.total_mips
        return [total / self.num_pes] * self.num_pes

    def current_requested_total_mips(self):
        return sum(self.current_requested_mips())

    def current_requested_utilization_of_ram(self):
        return sum(cl.ram_ratio for cl in self.executing)

    def current_requested_utilization_of_bw(self):
        return sum(cl.bw_ratio for cl in self.executing)

    def _available_mips_for(self, cloudlet, mips_share):
        return sum(mips_share[:cloudlet.num_pes]) if mips_share else 0.0

    def allocated_mips_for(self, cloudlet, time):
        requested = cloudlet.utilization_of_cpu(time) * self.total_mips
        return min(requested, self._available_mips_for(cloudlet, self.current_mips_share))

    def estimated_finish_time(self, cloudlet, time):
        allocated = self.allocated_mips_for(cloudlet, time)
        if allocated <= 0:
            return float("inf")
        return time + cloudlet.remaining / allocated

    def update_processing(self, current_time, mips_share):
        """
        Advance every cloudlet from the previous update to ``current_time``.

        :return: predicted time of the next event, 0.0 if nothing runs
        """
        self.current_mips_share = list(mips_share or [])
        span = current_time - self.previous_time
        next_event = float("inf")
        for cl in list(self.executing):
            executed = span * self.allocated_mips_for(cl, self.previous_time)
            cl.remaining = max(cl.remaining - executed, 0.0)
            if cl.remaining == 0:
                cl.finished = True
                cl.end_time = current_time
                self.executing.remove(cl)
                self.finished.append(cl)
                logger.debug("%.2f: Cloudlet %s finished", current_time, cl.cloudlet_id)
                continue
            estimated = min(self.estimated_finish_time(cl, current_time),
                            cl.next_trace_change(current_time))
            if estimated - current_time < MIN_TIME_BETWEEN_EVENTS:
                estimated = current_time + MIN_TIME_BETWEEN_EVENTS
            next_event = min(next_event, estimated)
        self.previous_time = current_time
        if not self.executing:
            return 0.0
        return next_event

    def is_finished(self):
        return not self.executing and bool(self.finished)
