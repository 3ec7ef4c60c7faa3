# ids.py
from collections import defaultdict


def make_uid(owner_id, entity_id):
    """Key used by provisioners and schedulers, e.g. ``"3-12"``."""
    return f"{owner_id}-{entity_id}"


class IdAllocator:
    def __init__(self):
        """
        Hands out consecutive integer ids per entity kind ("host", "vm", ...).
        A simulation owns one allocator and resets it when it starts.
        """
        self._next = defaultdict(int)

    def next_id(self, kind):
        value = self._next[kind]
        self._next[kind] += 1
        return value

    def peek(self, kind):
        return self._next[kind]

    def reset(self):
        self._next.clear()
