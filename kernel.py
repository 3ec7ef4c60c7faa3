# kernel.py
import heapq
import itertools
import logging

from ids import IdAllocator

logger = logging.getLogger(__name__)

# ====================
# Event tags
# ====================
VM_DATACENTER_EVENT = "VM_DATACENTER_EVENT"
VM_CREATE = "VM_CREATE"
VM_CREATE_ACK = "VM_CREATE_ACK"
VM_NEW_CREATE = "VM_NEW_CREATE"
VM_MIGRATE = "VM_MIGRATE"
CONTAINER_SUBMIT = "CONTAINER_SUBMIT"
CONTAINER_CREATE_ACK = "CONTAINER_CREATE_ACK"
CONTAINER_MIGRATE = "CONTAINER_MIGRATE"
CLOUDLET_RETURN = "CLOUDLET_RETURN"


class Event:
    def __init__(self, time, source, target, tag, payload=None):
        self.time = time
        self.source = source
        self.target = target
        self.tag = tag
        self.payload = payload

    def __repr__(self):
        return f"Event({self.time:.2f}, {self.source} -> {self.target}, {self.tag})"


class Simulation:
    def __init__(self, ids=None):
        """
        Single-threaded discrete-event kernel. Events run in time order;
        events at the same time run in the order they were scheduled.
        """
        self.ids = ids or IdAllocator()
        self.clock = 0.0
        self.entities = {}
        self.trace = []
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.clock

    def register(self, entity):
        entity.entity_id = self.ids.next_id("entity")
        entity.sim = self
        self.entities[entity.entity_id] = entity
        return entity.entity_id

    def schedule(self, target, delay, tag, payload=None, source=None):
        if delay < 0:
            raise ValueError(f"Cannot schedule an event in the past (delay {delay})")
        event = Event(self.clock + delay, source, target, tag, payload)
        heapq.heappush(self._queue, (event.time, next(self._seq), event))
        return event

    def send_immediate(self, target, tag, payload=None, source=None):
        return self.schedule(target, 0, tag, payload, source)

    def cancel_pending(self, target, predicate):
        """
        Drop queued events for ``target`` matching ``predicate``.

        :return: number of events dropped
        """
        kept = [item for item in self._queue if not (item[2].target == target and predicate(item[2]))]
        dropped = len(self._queue) - len(kept)
        if dropped:
            heapq.heapify(kept)
            self._queue = kept
        return dropped

    def pending(self, target=None):
        events = [item[2] for item in sorted(self._queue)
                  if target is None or item[2].target == target]
        return events

    def run(self, until=None):
        """
        Start every entity and dispatch events until the queue is empty or
        the next event lies beyond ``until``.

        :return: the final simulated time
        """
        for entity in list(self.entities.values()):
            entity.start()
        while self._queue:
            time, _, event = self._queue[0]
            if until is not None and time > until:
                break
            heapq.heappop(self._queue)
            self.clock = time
            self.trace.append((time, event.target, event.tag))
            entity = self.entities.get(event.target)
            if entity is None:
                logger.warning("%.2f: Event %s for unknown entity dropped", time, event.tag)
                continue
            entity.process_event(event)
        return self.clock
