# history.py
from collections import deque, namedtuple

import numpy as np
import pandas as pd

from config import HISTORY_LENGTH

StateHistoryEntry = namedtuple("StateHistoryEntry", ["time", "allocated_mips", "requested_mips", "flag"])


class UtilizationHistory:
    def __init__(self, length=HISTORY_LENGTH):
        """
        Bounded CPU utilization history, newest sample first. Once full, the
        oldest sample is dropped.
        """
        self.length = length
        self._values = deque(maxlen=length)

    def add(self, utilization):
        self._values.appendleft(utilization)

    def to_array(self):
        return np.array(self._values, dtype=float)

    def clear(self):
        self._values.clear()

    def __len__(self):
        return len(self._values)

    def __iter__(self):
        return iter(self._values)


class StateHistory:
    def __init__(self, flag_name="active"):
        """
        Append-only ``(time, allocated, requested, flag)`` log. An entry at an
        already logged timestamp replaces the last entry.

        :param flag_name: column name of the flag, "active" for hosts and
                          "in_migration" for workloads
        """
        self.flag_name = flag_name
        self.entries = []

    def add(self, time, allocated_mips, requested_mips, flag):
        entry = StateHistoryEntry(time, allocated_mips, requested_mips, flag)
        if self.entries and self.entries[-1].time == time:
            self.entries[-1] = entry
        else:
            self.entries.append(entry)

    def to_frame(self):
        return pd.DataFrame(self.entries, columns=["time", "allocated_mips", "requested_mips", self.flag_name])

    def __len__(self):
        return len(self.entries)

    def __getitem__(self, index):
        return self.entries[index]


class PolicyHistory:
    def __init__(self):
        """Per-host ``(time, utilization, metric)`` audit trail of an overload detector."""
        self.time_history = {}
        self.utilization_history = {}
        self.metric_history = {}

    def add(self, host_id, time, utilization, metric):
        times = self.time_history.setdefault(host_id, [])
        if time in times:
            return
        times.append(time)
        self.utilization_history.setdefault(host_id, []).append(utilization)
        self.metric_history.setdefault(host_id, []).append(metric)

    def to_frame(self):
        rows = []
        for host_id, times in self.time_history.items():
            for time, utilization, metric in zip(times, self.utilization_history[host_id],
                                                 self.metric_history[host_id]):
                rows.append({"host_id": host_id, "time": time,
                             "utilization": utilization, "metric": metric})
        return pd.DataFrame(rows, columns=["host_id", "time", "utilization", "metric"])
