# provisioners.py
import logging

logger = logging.getLogger(__name__)


class Provisioner:
    """
    Capacity ledger for one resource kind on one owner (a host or a VM).

    Allocations are keyed by the workload's uid. The sum of allocations never
    exceeds ``capacity``.
    """
    resource = "resource"

    def __init__(self, capacity):
        self.capacity = capacity
        self.available = capacity
        self.allocations = {}

    def rated(self, entity):
        return None

    def allocate(self, entity, amount):
        """
        Allocate ``amount`` to ``entity``, replacing its previous allocation.

        :param entity: workload with a ``uid``
        :param amount: requested amount, capped at the entity's rated size
        :return: False if it does not fit; the ledger is then left untouched
        """
        limit = self.rated(entity)
        if limit is not None and amount > limit:
            amount = limit
        previous = self.allocations.get(entity.uid, 0)
        if self.available + previous < amount:
            logger.debug("%s provisioner: %.2f requested for %s, %.2f available",
                         self.resource, amount, entity.uid, self.available + previous)
            return False
        self.available += previous - amount
        self.allocations[entity.uid] = amount
        return True

    def deallocate(self, entity):
        amount = self.allocations.pop(entity.uid, None)
        if amount is not None:
            self.available += amount

    def deallocate_all(self):
        self.allocations.clear()
        self.available = self.capacity

    def is_suitable(self, entity, amount):
        limit = self.rated(entity)
        if limit is not None and amount > limit:
            amount = limit
        return self.available + self.allocations.get(entity.uid, 0) >= amount

    def try_reserve(self, entity, amount):
        """
        Speculative allocation.

        :return: ``(ok, release)``; calling ``release`` puts the ledger back to
                 where it was before the call
        """
        previous = self.allocations.get(entity.uid)
        if not self.allocate(entity, amount):
            return False, lambda: None

        def release():
            self.deallocate(entity)
            if previous is not None:
                self.allocate(entity, previous)

        return True, release

    def allocated_for(self, entity):
        return self.allocations.get(entity.uid, 0)

    @property
    def used(self):
        return self.capacity - self.available


class RamProvisioner(Provisioner):
    resource = "RAM"

    def rated(self, entity):
        return entity.ram


class BwProvisioner(Provisioner):
    resource = "BW"

    def rated(self, entity):
        return entity.bw


class PeProvisioner:
    def __init__(self, mips):
        """
        Ledger of one processing element. A workload may hold several
        chunks of the same PE, so allocations map uid to a list of MIPS.
        """
        self.mips = mips
        self.available = mips
        self.allocations = {}

    def allocate(self, uid, mips):
        if mips > self.available:
            return False
        self.allocations.setdefault(uid, []).append(mips)
        self.available -= mips
        return True

    def deallocate(self, uid):
        self.available += sum(self.allocations.pop(uid, []))

    def deallocate_all(self):
        self.allocations.clear()
        self.available = self.mips

    def allocated_for(self, uid):
        return sum(self.allocations.get(uid, []))

    @property
    def utilization(self):
        return (self.mips - self.available) / self.mips if self.mips else 0.0


class Pe:
    def __init__(self, pe_id, mips):
        self.pe_id = pe_id
        self.provisioner = PeProvisioner(mips)

    @property
    def mips(self):
        return self.provisioner.mips

    def __repr__(self):
        return f"Pe({self.pe_id}, {self.mips})"
