# broker.py
import logging

import kernel

logger = logging.getLogger(__name__)


class Broker:
    def __init__(self, name, datacenter_id=None):
        """
        Submits VMs to a datacenter and, once every VM is acknowledged, the
        containers to run on them.

        :param name: name used in logs
        :param datacenter_id: entity id of the target datacenter
        """
        self.name = name
        self.datacenter_id = datacenter_id
        self.entity_id = None
        self.sim = None
        self.vms = []
        self.containers = []
        self.vms_created = []
        self.vm_acks = 0
        self.containers_created = []
        self.containers_failed = []
        self.new_vms = []
        self.returned = []

    def submit_vms(self, vms):
        self.vms.extend(vms)

    def submit_containers(self, containers):
        self.containers.extend(containers)

    def start(self):
        for vm in self.vms:
            self.sim.schedule(self.datacenter_id, 0, kernel.VM_CREATE, {"vm": vm}, source=self.entity_id)
        if not self.vms and self.containers:
            self._submit_containers()

    def _submit_containers(self):
        logger.info("%.2f: %s: Sending %d containers", self.sim.now(), self.name, len(self.containers))
        self.sim.schedule(self.datacenter_id, 0, kernel.CONTAINER_SUBMIT,
                          {"containers": list(self.containers)}, source=self.entity_id)

    def process_event(self, event):
        payload = event.payload or {}
        if event.tag == kernel.VM_CREATE_ACK:
            self.vm_acks += 1
            if payload.get("result"):
                self.vms_created.append(payload["vm_id"])
            else:
                logger.warning("%.2f: %s: Creation of VM #%s failed", self.sim.now(), self.name, payload.get("vm_id"))
            if self.vm_acks == len(self.vms) and self.containers:
                self._submit_containers()
        elif event.tag == kernel.CONTAINER_CREATE_ACK:
            if payload.get("result"):
                self.containers_created.append(payload["container_id"])
            else:
                self.containers_failed.append(payload.get("container_id"))
                logger.warning("%.2f: %s: Container #%s could not be placed and will not run", self.sim.now(),
                               self.name, payload.get("container_id"))
        elif event.tag == kernel.VM_NEW_CREATE:
            if payload.get("result"):
                self.new_vms.append(payload["vm_id"])
        elif event.tag == kernel.CLOUDLET_RETURN:
            self.returned.append(payload.get("container_id"))
            logger.info("%.2f: %s: Container #%s finished", self.sim.now(), self.name, payload.get("container_id"))
        else:
            logger.warning("%.2f: %s: Unknown event %s dropped", self.sim.now(), self.name, event.tag)
