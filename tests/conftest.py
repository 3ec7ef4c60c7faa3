import os

import pytest

from datacenter import VM, Container, Host

os.environ.setdefault("MPLBACKEND", "Agg")


@pytest.fixture
def make_host():
    def _make(host_id=0, num_pes=1, pe_mips=4000, ram=16000, bw=1000000, storage=100000, **kwargs):
        return Host(host_id, num_pes, pe_mips, ram, bw, storage, power_idle=80, power_max=200, **kwargs)
    return _make


@pytest.fixture
def make_vm():
    def _make(vm_id=0, mips=1000, num_pes=1, ram=1024, bw=10000, size=1000, user_id=0):
        return VM(vm_id, user_id, mips, num_pes, ram, bw, size)
    return _make


@pytest.fixture
def make_container():
    def _make(container_id=0, mips=500, num_pes=1, ram=128, bw=1000, size=100, user_id=0):
        return Container(container_id, user_id, mips, num_pes, ram, bw, size)
    return _make
