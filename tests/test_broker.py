import kernel
from broker import Broker
from cloudlets import Cloudlet
from controller import PowerDatacenter
from kernel import Simulation
from schedule import SchedulerVM


def test_broker_submits_vms_then_containers(make_host, make_vm, make_container):
    sim = Simulation()
    hosts = [make_host(0), make_host(1)]
    datacenter = PowerDatacenter("dc", hosts, vm_scheduler=SchedulerVM(hosts, "first_fit"))
    broker = Broker("broker")
    sim.register(datacenter)
    sim.register(broker)
    broker.datacenter_id = datacenter.entity_id
    broker.submit_vms([make_vm(0, mips=2000, user_id=broker.entity_id),
                       make_vm(1, mips=8000, user_id=broker.entity_id)])
    container = make_container(0, mips=1000, user_id=broker.entity_id)
    container.submit_cloudlet(Cloudlet(0, length=600000, cpu_demand_ratio=0.5))
    broker.submit_containers([container])

    sim.run(until=3000)

    assert broker.vms_created == [0]
    assert broker.vm_acks == 2
    assert broker.containers_created == [0]
    assert datacenter.vms == []
    assert not hosts[0].active
    creates = [time for time, _, tag in sim.trace if tag == kernel.CONTAINER_SUBMIT]
    acks = [time for time, _, tag in sim.trace if tag == kernel.VM_CREATE_ACK]
    assert creates and acks and max(acks) <= min(creates)
    # 600000 MI at 500 MIPS
    assert broker.returned == [0]
    assert datacenter.total_energy_joules > 0


def test_broker_without_vms_sends_containers_at_once(make_container):
    sim = Simulation()
    target = Broker("target")
    broker = Broker("broker")
    sim.register(target)
    sim.register(broker)
    broker.datacenter_id = target.entity_id
    broker.submit_containers([make_container()])
    broker.start()
    assert [ev.tag for ev in sim.pending(target.entity_id)] == [kernel.CONTAINER_SUBMIT]


def test_containers_beyond_vm_capacity_are_reported(make_host, make_vm, make_container):
    sim = Simulation()
    hosts = [make_host(0)]
    datacenter = PowerDatacenter("dc", hosts, vm_scheduler=SchedulerVM(hosts, "first_fit"))
    broker = Broker("broker")
    sim.register(datacenter)
    sim.register(broker)
    broker.datacenter_id = datacenter.entity_id
    broker.submit_vms([make_vm(0, mips=1000, user_id=broker.entity_id)])
    containers = [make_container(i, mips=500, user_id=broker.entity_id) for i in range(3)]
    for container in containers:
        container.submit_cloudlet(Cloudlet(container.container_id, length=300000))
    broker.submit_containers(containers)

    sim.run(until=1)

    # two 500 MIPS containers fill the 1000 MIPS VM
    assert broker.containers_created == [0, 1]
    assert broker.containers_failed == [2]
    assert [c.container_id for c in datacenter.containers] == [0, 1]
    assert containers[2].vm is None
