import socket
from types import SimpleNamespace

import psutil
import pytest

from onvif_transport.errors import NetworkQueryError
from onvif_transport.netif import interface_addresses


def snic(family, address):
    return SimpleNamespace(family=family, address=address, netmask=None, broadcast=None, ptp=None)


@pytest.fixture
def interfaces(monkeypatch):
    addrs = {
        "lo": [snic(socket.AF_INET, "127.0.0.1"), snic(socket.AF_INET6, "::1")],
        "eth1": [snic(socket.AF_INET, "192.168.1.20"), snic(socket.AF_INET6, "fe80::2")],
        "eth0": [snic(socket.AF_INET, "10.0.0.11"), snic(socket.AF_INET, "10.0.0.9"), snic(socket.AF_INET, "10.0.0.10")],
        "wlan0": [snic(socket.AF_INET, "172.16.0.5")],
        "veth9": [snic(socket.AF_INET, "10.0.0.10")],
    }
    stats = {
        "lo": SimpleNamespace(isup=True),
        "eth0": SimpleNamespace(isup=True),
        "eth1": SimpleNamespace(isup=True),
        "wlan0": SimpleNamespace(isup=False),
        "veth9": SimpleNamespace(isup=True),
    }
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(psutil, "net_if_stats", lambda: stats)


def test_only_active_non_loopback_ipv4_sorted_by_interface_then_address(interfaces):
    assert interface_addresses() == ["10.0.0.9", "10.0.0.10", "10.0.0.11", "192.168.1.20"]


def test_unreadable_interface_table(monkeypatch):
    def broken():
        raise OSError("permission denied")

    monkeypatch.setattr(psutil, "net_if_addrs", broken)
    with pytest.raises(NetworkQueryError):
        interface_addresses()
