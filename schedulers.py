# schedulers.py
import logging
import math

from errors import InvariantViolation

logger = logging.getLogger(__name__)

MIGRATION_OUT_SHARE = 0.9
MIGRATION_IN_SHARE = 0.1


class TimeSharedScheduler:
    def __init__(self, pes):
        """
        Splits the MIPS of a list of PEs among child workloads (VMs on a host,
        containers on a VM).

        :param pes: list of Pe objects owned by the parent
        """
        self.pes = pes
        self.mips_map = {}
        self.mips_map_requested = {}
        self.pe_map = {}
        self.migrating_in = []
        self.migrating_out = []
        self.pes_in_use = 0
        self.available_mips = self.total_mips

    @property
    def total_mips(self):
        return sum(pe.mips for pe in self.pes)

    @property
    def pe_capacity(self):
        return self.pes[0].mips if self.pes else 0

    @property
    def max_available_mips(self):
        return self.available_mips

    def allocate_pes_for(self, workload, mips_share):
        """
        Allocate ``mips_share`` (one entry per PE) to ``workload``.

        A workload flagged ``in_migration`` that is not arriving here is
        tracked as migrating out and only gets 90% of its request; one
        arriving here (listed in ``migrating_in``) gets 10%. A request for a
        workload that already holds a share replaces that share, and the
        old share is kept if the new one does not fit.
        """
        if workload.in_migration:
            if workload.uid not in self.migrating_in and workload.uid not in self.migrating_out:
                self.migrating_out.append(workload.uid)
        elif workload.uid in self.migrating_out:
            self.migrating_out.remove(workload.uid)
        previous = self.mips_map_requested.get(workload.uid)
        if previous is not None:
            self.deallocate_pes_for(workload)
        result = self._allocate(workload.uid, list(mips_share))
        if not result and previous is not None:
            self._allocate(workload.uid, previous)
        self._update_pe_provisioning()
        return result

    def _allocate(self, uid, mips_share):
        peak = self.pe_capacity
        total_requested = 0.0
        for mips in mips_share:
            if mips > peak:
                return False
            total_requested += mips
        if self.available_mips < total_requested:
            return False
        self.mips_map_requested[uid] = mips_share
        self.pes_in_use += len(mips_share)
        if uid in self.migrating_in:
            total_requested *= MIGRATION_IN_SHARE
        self.mips_map[uid] = [self._adjust(uid, mips) for mips in mips_share]
        self.available_mips -= total_requested
        return True

    def _adjust(self, uid, mips):
        if uid in self.migrating_out:
            return mips * MIGRATION_OUT_SHARE
        if uid in self.migrating_in:
            return mips * MIGRATION_IN_SHARE
        return mips

    def _update_pe_provisioning(self):
        self.pe_map = {}
        for pe in self.pes:
            pe.provisioner.deallocate_all()
        if not self.mips_map:
            return
        pes = iter(self.pes)
        pe = next(pes)
        available = pe.provisioner.available
        for uid, shares in self.mips_map.items():
            self.pe_map[uid] = []
            for mips in shares:
                remaining = mips
                while remaining >= 0.1:
                    if available >= remaining:
                        pe.provisioner.allocate(uid, remaining)
                        self.pe_map[uid].append(pe)
                        available -= remaining
                        break
                    pe.provisioner.allocate(uid, available)
                    self.pe_map[uid].append(pe)
                    remaining -= available
                    if remaining <= 0.1:
                        break
                    pe = next(pes, None)
                    if pe is None:
                        raise InvariantViolation(
                            f"Not enough MIPS ({mips:.2f}) to accommodate workload {uid}")
                    available = pe.provisioner.available

    def deallocate_pes_for(self, workload):
        self.mips_map_requested.pop(workload.uid, None)
        self.pes_in_use = 0
        self.mips_map.clear()
        self.available_mips = self.total_mips
        for pe in self.pes:
            pe.provisioner.deallocate(workload.uid)
        for uid, mips_share in list(self.mips_map_requested.items()):
            self._allocate(uid, mips_share)
        self._update_pe_provisioning()

    def deallocate_all(self):
        self.mips_map.clear()
        self.mips_map_requested.clear()
        self.pe_map = {}
        self.pes_in_use = 0
        self.available_mips = self.total_mips
        for pe in self.pes:
            pe.provisioner.deallocate_all()

    def allocated_mips_for(self, workload):
        return self.mips_map.get(workload.uid)

    def total_allocated_mips_for(self, workload):
        return sum(self.mips_map.get(workload.uid, ()))

    @property
    def total_allocated_mips(self):
        return sum(sum(shares) for shares in self.mips_map.values())


class OverSubscriptionScheduler(TimeSharedScheduler):
    """
    Time-shared scheduler that never refuses a request: shares above a PE's
    capacity are capped and, when the total does not fit, every workload is
    scaled down proportionally.
    """

    def _allocate(self, uid, mips_share):
        peak = self.pe_capacity
        capped = [min(mips, peak) for mips in mips_share]
        total_requested = sum(capped)
        self.mips_map_requested[uid] = mips_share
        self.pes_in_use += len(mips_share)
        if uid in self.migrating_in:
            total_requested *= MIGRATION_IN_SHARE
        if self.available_mips >= total_requested:
            self.mips_map[uid] = [self._adjust(uid, mips) for mips in capped]
            self.available_mips -= total_requested
        else:
            self._redistribute()
        return True

    def _redistribute(self):
        peak = self.pe_capacity
        capped_map = {}
        total_required = 0.0
        for uid, mips_share in self.mips_map_requested.items():
            capped = [min(mips, peak) for mips in mips_share]
            capped_map[uid] = capped
            required = sum(capped)
            if uid in self.migrating_in:
                required *= MIGRATION_IN_SHARE
            total_required += required
        scaling = self.total_mips / total_required if total_required else 0.0
        logger.debug("Oversubscribed: %.2f MIPS required, %.2f available, scaling by %.4f",
                     total_required, self.total_mips, scaling)
        self.mips_map.clear()
        for uid, capped in capped_map.items():
            self.mips_map[uid] = [math.floor(self._adjust(uid, mips) * scaling) for mips in capped]
        self.available_mips = 0
