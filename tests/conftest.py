import socket
from collections import namedtuple

import pytest

from lanup.config_models import AutoDetectConfig, GlobalConfig, ProjectConfig
from lanup.network_utils import InterfaceClass, NetworkCandidate

# Shapes of psutil's snicaddr / snicstats records
FakeAddr = namedtuple("FakeAddr", ["family", "address", "netmask", "broadcast", "ptp"])
FakeStats = namedtuple("FakeStats", ["isup", "duplex", "speed", "mtu", "flags"])


def ipv4(address):
    return FakeAddr(socket.AF_INET, address, "255.255.255.0", None, None)


def ipv6(address):
    return FakeAddr(socket.AF_INET6, address, None, None, None)


def stats(isup=True, flags="up,broadcast,running,multicast"):
    return FakeStats(isup, 2, 1000, 1500, flags)


@pytest.fixture
def fake_interfaces(mocker):
    """
    Patches psutil so InterfaceScanner sees the given interface tables.

    Usage: fake_interfaces({"eth0": [ipv4("192.168.1.10")]}, {"eth0": stats()})
    """
    def install(addresses, interface_stats):
        mocker.patch("lanup.network_utils.psutil.net_if_addrs", return_value=addresses)
        mocker.patch("lanup.network_utils.psutil.net_if_stats", return_value=interface_stats)
    return install


@pytest.fixture
def make_candidate():
    """Builds NetworkCandidate objects with a readable default."""
    def build(address="192.168.1.100", name="en0", interface_class=InterfaceClass.ETHERNET):
        return NetworkCandidate(address=address, interface_name=name, interface_class=interface_class)
    return build


@pytest.fixture
def project_config(tmp_path):
    """A project writing to a temporary env file, no providers."""
    return ProjectConfig(
        vars={
            "API_URL": "http://localhost:8000",
            "SUPABASE_URL": "http://127.0.0.1:54321",
            "ANON_KEY": "your-anon-key",
        },
        output=str(tmp_path / ".env.local"),
        auto_detect=AutoDetectConfig(docker=False, supabase=False),
    )


@pytest.fixture
def global_config(tmp_path):
    return GlobalConfig(log_path=str(tmp_path / "logs" / "lanup.log"), check_interval=1)
