"""
Brief: Global pytest configuration: src on sys.path, per-test 10s timeout and
fakes for the finder's transport and scheduler.

Inputs:
  - None

Outputs:
  - None
"""

import heapq
import itertools
import os
import signal
import sys
import threading

import pytest

# Ensure 'src' is on sys.path so 'servicefinder' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from servicefinder.errors import (  # noqa: E402
    BindError,
    GroupJoinError,
    NoNetworkError,
    SendError,
)
from servicefinder.transports.udp import Datagram  # noqa: E402


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        # Fallback: no-op on platforms without SIGALRM
        yield


class ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """
    Brief: Virtual-clock scheduler; timers fire only inside advance().

    Inputs:
      - None

    Outputs:
      - ManualScheduler with ``now`` in seconds since creation.
    """

    def __init__(self):
        self.now = 0.0
        self.closed = False
        self._seq = itertools.count()
        self._heap = []

    def call_later(self, delay, fn):
        handle = ManualHandle()
        if self.closed:
            handle.cancelled = True
            return handle
        heapq.heappush(self._heap, (self.now + max(0.0, delay), next(self._seq), fn, handle))
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while self._heap and self._heap[0][0] <= target:
            when, _, fn, handle = heapq.heappop(self._heap)
            self.now = when
            if not handle.cancelled:
                fn()
        self.now = target

    def cancel_all(self):
        self.closed = True
        for _, _, _, handle in self._heap:
            handle.cancel()
        self._heap = []

    def pending(self):
        return sum(1 for entry in self._heap if not entry[3].cancelled)


class FakeTransport:
    """
    Brief: In-memory stand-in for UDPTransport.

    Inputs:
      - addresses: interface addresses returned by enumerate_interfaces().

    Outputs:
      - FakeTransport; tune ``fail_bind``/``fail_join``/``fail_send`` before
        the finder starts, then inject traffic with deliver().
    """

    def __init__(self, addresses=("192.168.1.10",)):
        self.addresses = list(addresses)
        self.fail_bind = set()
        self.fail_join = False
        self.fail_send = set()
        self.bound = {}
        self.joined = []
        self.sent = []
        self.closed = []
        self.all_closed = False
        self.receive_listeners = []
        self.error_listeners = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def enumerate_interfaces(self):
        if not self.addresses:
            raise NoNetworkError("no network available!")
        return list(self.addresses)

    def bind(self, address, port=0):
        if address in self.fail_bind:
            raise BindError(f"Could not bind to {address}", address)
        with self._lock:
            handle = next(self._ids)
            self.bound[handle] = (address, port)
        return handle

    def join_multicast_group(self, handle, group="224.0.0.251", interface="0.0.0.0"):
        if self.fail_join:
            raise GroupJoinError(f"join of {group} refused")
        self.joined.append((handle, group))

    def send(self, handle, data, address, port):
        bound_addr = self.bound.get(handle, (None,))[0]
        if bound_addr in self.fail_send:
            raise SendError(f"Could not send data to {address}")
        self.sent.append((handle, data, address, port))

    def close(self, handle):
        self.closed.append(handle)
        self.bound.pop(handle, None)

    def close_all(self):
        self.all_closed = True

    def add_receive_listener(self, fn):
        self.receive_listeners.append(fn)

    def remove_receive_listener(self, fn):
        if fn in self.receive_listeners:
            self.receive_listeners.remove(fn)

    def add_error_listener(self, fn):
        self.error_listeners.append(fn)

    def remove_error_listener(self, fn):
        if fn in self.error_listeners:
            self.error_listeners.remove(fn)

    def unicast_handles(self):
        return [h for h, (_, port) in self.bound.items() if port == 0]

    def deliver(self, payload, source="192.168.1.20", port=5353, handle=None):
        if handle is None:
            handle = self.unicast_handles()[0]
        datagram = Datagram(handle, source, port, payload)
        for fn in list(self.receive_listeners):
            fn(datagram)

    def fail_read(self, code):
        for fn in list(self.error_listeners):
            fn(code)


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def manual_scheduler():
    return ManualScheduler()


@pytest.fixture
def finder_factory(fake_transport, manual_scheduler):
    """
    Brief: Build started ServiceFinders wired to the fake transport/scheduler.

    Inputs:
      - service_type/config passed through to ServiceFinder.

    Outputs:
      - callable returning (finder, calls) where ``calls`` records callback args.
    """
    from servicefinder.finder import ServiceFinder

    created = []

    def _make(service_type="_test._tcp.local", config=None, wait=True):
        calls = []

        def _callback(*args):
            calls.append(args)

        finder = ServiceFinder(
            _callback,
            service_type,
            config,
            transport=fake_transport,
            scheduler=manual_scheduler,
        )
        created.append(finder)
        if wait:
            try:
                finder.ready.result(timeout=2)
            except Exception:
                pass
        return finder, calls

    yield _make
    for finder in created:
        finder.shutdown()
