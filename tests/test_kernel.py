import pytest

from kernel import Simulation


class Recorder:
    def __init__(self):
        self.entity_id = None
        self.sim = None
        self.seen = []

    def start(self):
        pass

    def process_event(self, event):
        self.seen.append((self.sim.now(), event.tag, event.payload))


def test_events_run_in_time_then_fifo_order():
    sim = Simulation()
    recorder = Recorder()
    target = sim.register(recorder)
    sim.schedule(target, 5, "late")
    sim.schedule(target, 1, "first")
    sim.schedule(target, 1, "second")
    assert sim.run() == 5
    assert [tag for _, tag, _ in recorder.seen] == ["first", "second", "late"]
    assert [time for time, _, _ in recorder.seen] == [1, 1, 5]


def test_cancel_pending_by_predicate():
    sim = Simulation()
    target = sim.register(Recorder())
    other = sim.register(Recorder())
    sim.schedule(target, 1, "tick")
    sim.schedule(target, 2, "tick")
    sim.schedule(target, 3, "work")
    sim.schedule(other, 1, "tick")
    assert sim.cancel_pending(target, lambda ev: ev.tag == "tick") == 2
    assert [ev.tag for ev in sim.pending(target)] == ["work"]
    assert len(sim.pending(other)) == 1


def test_run_stops_before_until():
    sim = Simulation()
    recorder = Recorder()
    target = sim.register(recorder)
    sim.schedule(target, 10, "a")
    sim.schedule(target, 100, "b")
    sim.run(until=50)
    assert [tag for _, tag, _ in recorder.seen] == ["a"]
    assert len(sim.pending(target)) == 1


def test_negative_delay_is_rejected():
    sim = Simulation()
    with pytest.raises(ValueError):
        sim.schedule(0, -1, "x")


def test_events_for_unknown_entities_are_dropped():
    sim = Simulation()
    sim.schedule(99, 1, "x")
    assert sim.run() == 1
    assert sim.trace == [(1, 99, "x")]
