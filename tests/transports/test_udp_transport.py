"""
Brief: Unit tests for the UDP socket transport using loopback sockets.

Inputs:
  - None

Outputs:
  - None
"""

import queue
import socket
from types import SimpleNamespace

import pytest

from servicefinder.errors import BindError, GroupJoinError, NoNetworkError, SendError
from servicefinder.transports import udp as udp_mod
from servicefinder.transports.udp import UDPTransport, get_all_addresses


@pytest.fixture
def transport():
    t = UDPTransport(poll_interval=0.05)
    try:
        yield t
    finally:
        t.close_all()


def test_bind_and_receive_delivers_datagram(transport):
    """
    Brief: A datagram sent to a bound socket reaches every receive listener.

    Inputs:
      - transport fixture

    Outputs:
      - None: Asserts payload, handle and source port
    """
    got = queue.Queue()
    transport.add_receive_listener(got.put)
    handle = transport.bind("127.0.0.1", 0)
    host, port = transport.local_address(handle)
    assert host == "127.0.0.1" and port > 0

    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as peer:
        peer.bind(("127.0.0.1", 0))
        peer.sendto(b"\x00\x01hello", (host, port))
        dg = got.get(timeout=2)
        assert dg.payload == b"\x00\x01hello"
        assert dg.handle == handle
        assert dg.source_address == "127.0.0.1"
        assert dg.source_port == peer.getsockname()[1]


def test_send_reaches_peer(transport):
    """Brief: send() writes one datagram to the given address."""
    handle = transport.bind("127.0.0.1", 0)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as peer:
        peer.bind(("127.0.0.1", 0))
        peer.settimeout(2)
        transport.send(handle, b"query", "127.0.0.1", peer.getsockname()[1])
        data, addr = peer.recvfrom(512)
    assert data == b"query"
    assert addr == transport.local_address(handle)


def test_listener_exception_does_not_stop_dispatch(transport):
    """Brief: A failing listener is logged and later listeners still run."""
    got = queue.Queue()

    def _bad(_dg):
        raise RuntimeError("listener failed")

    transport.add_receive_listener(_bad)
    transport.add_receive_listener(got.put)
    handle = transport.bind("127.0.0.1", 0)
    host, port = transport.local_address(handle)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as peer:
        peer.sendto(b"one", (host, port))
        peer.sendto(b"two", (host, port))
        assert got.get(timeout=2).payload == b"one"
        assert got.get(timeout=2).payload == b"two"


def test_removed_listener_is_not_called(transport):
    """Brief: remove_receive_listener stops delivery to that listener."""
    first, second = queue.Queue(), queue.Queue()
    transport.add_receive_listener(first.put)
    transport.add_receive_listener(second.put)
    transport.remove_receive_listener(first.put)
    handle = transport.bind("127.0.0.1", 0)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as peer:
        peer.sendto(b"x", transport.local_address(handle))
        assert second.get(timeout=2).payload == b"x"
    assert first.empty()


def test_bind_to_foreign_address_raises_bind_error(transport):
    """Brief: Binding an address not on this host raises BindError."""
    with pytest.raises(BindError) as ei:
        transport.bind("203.0.113.77", 0)
    assert ei.value.address == "203.0.113.77"
    assert transport.handles() == []


def test_unknown_handle_errors(transport):
    """Brief: join/send on an unknown handle raise the typed errors."""
    with pytest.raises(GroupJoinError):
        transport.join_multicast_group(42)
    with pytest.raises(SendError):
        transport.send(42, b"x", "127.0.0.1", 9)
    assert transport.local_address(42) is None


def test_close_forgets_handle(transport):
    """Brief: close() removes the handle; later sends fail; double close is a no-op."""
    handle = transport.bind("127.0.0.1", 0)
    assert transport.handles() == [handle]
    transport.close(handle)
    transport.close(handle)
    assert transport.handles() == []
    with pytest.raises(SendError):
        transport.send(handle, b"x", "127.0.0.1", 9)


def _adapter(*ips):
    return SimpleNamespace(ips=list(ips))


def test_get_all_addresses_reports_ipv4_and_ipv6(monkeypatch):
    """
    Brief: get_all_addresses flattens ifaddr adapters; IPv6 keeps ':' notation.

    Inputs:
      - monkeypatch: replace ifaddr.get_adapters

    Outputs:
      - None: Asserts flattened address list
    """
    adapters = [
        _adapter(
            SimpleNamespace(ip="192.168.1.10", is_IPv4=True),
            SimpleNamespace(ip=("fe80::1", 0, 2), is_IPv4=False),
        ),
        _adapter(SimpleNamespace(ip="127.0.0.1", is_IPv4=True)),
    ]
    monkeypatch.setattr(udp_mod.ifaddr, "get_adapters", lambda: adapters)
    assert get_all_addresses() == ["192.168.1.10", "fe80::1", "127.0.0.1"]
    assert UDPTransport().enumerate_interfaces() == [
        "192.168.1.10",
        "fe80::1",
        "127.0.0.1",
    ]


def test_enumerate_interfaces_without_addresses_raises(monkeypatch):
    """Brief: An empty interface list raises NoNetworkError."""
    monkeypatch.setattr(udp_mod.ifaddr, "get_adapters", lambda: [])
    with pytest.raises(NoNetworkError):
        UDPTransport().enumerate_interfaces()
