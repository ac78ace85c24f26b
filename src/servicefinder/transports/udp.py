"""UDP socket transport for mDNS queries and responses.

Brief:
  Owns the OS sockets used by a finder: enumerates local interface addresses,
  binds per-address sockets, joins the mDNS group and sends datagrams. Each
  socket has a reader thread that pushes into one queue; a single dispatcher
  thread drains the queue so listeners see datagrams one at a time.
"""

from __future__ import annotations

import errno
import itertools
import logging
import queue
import socket
import struct
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import ifaddr

from ..errors import BindError, GroupJoinError, NoNetworkError, SendError

logger = logging.getLogger(__name__)

MDNS_ADDRESS = "224.0.0.251"
MDNS_PORT = 5353

# mDNS messages may use the full link MTU; 9000 covers jumbo frames.
DEFAULT_RECV_SIZE = 9000


@dataclass(frozen=True)
class Datagram:
    """
    Brief: One received UDP datagram.

    Inputs:
      - handle: transport handle of the receiving socket.
      - source_address: sender IP.
      - source_port: sender UDP port.
      - payload: raw bytes.

    Outputs:
      - Datagram instance.
    """

    handle: int
    source_address: str
    source_port: int
    payload: bytes


ReceiveListener = Callable[[Datagram], None]
ErrorListener = Callable[[int], None]


def get_all_addresses() -> List[str]:
    """
    Brief: List every local interface address, IPv4 and IPv6.

    Inputs:
      - None

    Outputs:
      - List[str]: addresses; IPv6 entries keep their ':' notation so callers
        can filter them out.
    """
    out: List[str] = []
    for adapter in ifaddr.get_adapters():
        for ip in adapter.ips:
            if ip.is_IPv4:
                out.append(str(ip.ip))
            else:
                # ifaddr reports IPv6 as (address, flowinfo, scope_id)
                out.append(str(ip.ip[0]))
    return out


def new_socket(address: str, port: int) -> socket.socket:
    """
    Brief: Create an IPv4 UDP socket configured for multicast and bind it.

    Inputs:
      - address: local address to bind ('' or '0.0.0.0' for any).
      - port: local port (0 for ephemeral).

    Outputs:
      - socket.socket bound to (address, port).

    Raises:
      - OSError: when creation, option setting or bind fails.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        # Some BSD-derived systems need SO_REUSEPORT to share 5353.
        reuseport = getattr(socket, "SO_REUSEPORT", None)
        if reuseport is not None and port:
            try:
                s.setsockopt(socket.SOL_SOCKET, reuseport, 1)
            except OSError as err:
                if err.errno != errno.ENOPROTOOPT:
                    raise
        s.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, struct.pack("B", 255))
        s.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, struct.pack("B", 1))
        if address and address != "0.0.0.0":
            s.setsockopt(
                socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(address)
            )
        s.bind((address, port))
    except OSError:
        s.close()
        raise
    return s


class UDPTransport:
    """
    Brief: Socket transport used by ServiceFinder.

    Inputs:
      - recv_size: maximum datagram size to read.
      - poll_interval: seconds a reader blocks before re-checking for close.

    Outputs:
      - UDPTransport instance.

    Example:
        >>> t = UDPTransport()
        >>> h = t.bind("127.0.0.1", 0)
        >>> t.close(h)
    """

    def __init__(
        self, recv_size: int = DEFAULT_RECV_SIZE, poll_interval: float = 0.5
    ) -> None:
        self._recv_size = int(recv_size)
        self._poll_interval = float(poll_interval)
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._sockets: Dict[int, socket.socket] = {}
        self._receive_listeners: List[ReceiveListener] = []
        self._error_listeners: List[ErrorListener] = []
        self._queue: "queue.Queue[Optional[Tuple[str, object]]]" = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None

    # --- interfaces / sockets ---

    def enumerate_interfaces(self) -> List[str]:
        """
        Brief: Return local interface addresses.

        Raises:
          - NoNetworkError: when the host reports no addresses at all.
        """
        addresses = get_all_addresses()
        if not addresses:
            raise NoNetworkError("no network available!")
        return addresses

    def bind(self, address: str, port: int = 0) -> int:
        """
        Brief: Create a socket bound to (address, port) and start reading it.

        Inputs:
          - address: local IPv4 address.
          - port: local port (0 for ephemeral).

        Outputs:
          - int: handle for later send/close calls.

        Raises:
          - BindError: when the socket cannot be created or bound.
        """
        try:
            sock = new_socket(address, port)
        except OSError as e:
            raise BindError(f"Could not bind to {address}:{port}: {e}", address) from e
        sock.settimeout(self._poll_interval)
        with self._lock:
            handle = next(self._ids)
            self._sockets[handle] = sock
            self._ensure_dispatcher()
        reader = threading.Thread(
            target=self._read_loop,
            args=(handle, sock),
            name=f"servicefinder-udp-{handle}",
            daemon=True,
        )
        reader.start()
        logger.debug("Bound UDP socket %d to %s:%d", handle, address, port)
        return handle

    def join_multicast_group(
        self, handle: int, group: str = MDNS_ADDRESS, interface: str = "0.0.0.0"
    ) -> None:
        """
        Brief: Join ``group`` on the socket identified by ``handle``.

        Raises:
          - GroupJoinError: on unknown handle or setsockopt failure.
        """
        sock = self._get(handle)
        if sock is None:
            raise GroupJoinError(f"unknown socket handle {handle}")
        mreq = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton(interface))
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        except OSError as e:
            raise GroupJoinError(f"Failed to join {group} on {interface}: {e}") from e
        logger.debug("Socket %d joined multicast group %s", handle, group)

    def send(self, handle: int, data: bytes, address: str, port: int) -> None:
        """
        Brief: Send one datagram.

        Raises:
          - SendError: on unknown handle or OS failure.
        """
        sock = self._get(handle)
        if sock is None:
            raise SendError(f"unknown socket handle {handle}")
        try:
            sock.sendto(data, (address, int(port)))
        except OSError as e:
            raise SendError(f"Could not send data to {address}:{port}: {e}") from e

    def close(self, handle: int) -> None:
        with self._lock:
            sock = self._sockets.pop(handle, None)
        if sock is None:
            return
        try:
            sock.close()
        except OSError:  # pragma: no cover - close on a dead socket
            logger.debug("Error closing socket %d", handle, exc_info=True)

    def close_all(self) -> None:
        """Brief: Close every socket and stop the dispatcher thread."""
        with self._lock:
            handles = list(self._sockets)
        for handle in handles:
            self.close(handle)
        self._queue.put(None)

    def handles(self) -> List[int]:
        with self._lock:
            return list(self._sockets)

    def local_address(self, handle: int) -> Optional[Tuple[str, int]]:
        """Brief: (address, port) a handle is bound to, or None if unknown."""
        sock = self._get(handle)
        if sock is None:
            return None
        host, port = sock.getsockname()[:2]
        return host, port

    # --- listeners ---

    def add_receive_listener(self, fn: ReceiveListener) -> None:
        with self._lock:
            self._receive_listeners.append(fn)

    def remove_receive_listener(self, fn: ReceiveListener) -> None:
        with self._lock:
            if fn in self._receive_listeners:
                self._receive_listeners.remove(fn)

    def add_error_listener(self, fn: ErrorListener) -> None:
        with self._lock:
            self._error_listeners.append(fn)

    def remove_error_listener(self, fn: ErrorListener) -> None:
        with self._lock:
            if fn in self._error_listeners:
                self._error_listeners.remove(fn)

    # --- internals ---

    def _get(self, handle: int) -> Optional[socket.socket]:
        with self._lock:
            return self._sockets.get(handle)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="servicefinder-dispatch", daemon=True
        )
        self._dispatcher.start()

    def _read_loop(self, handle: int, sock: socket.socket) -> None:
        while self._get(handle) is sock:
            try:
                data, peer = sock.recvfrom(self._recv_size)
            except socket.timeout:
                continue
            except OSError as e:
                if self._get(handle) is not sock:
                    return
                logger.warning("Read error on socket %d: %s", handle, e)
                self._queue.put(("error", e.errno or -1))
                return
            self._queue.put(("datagram", Datagram(handle, peer[0], peer[1], data)))

    def _dispatch_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            kind, value = item
            with self._lock:
                listeners = list(
                    self._receive_listeners if kind == "datagram" else self._error_listeners
                )
            for fn in listeners:
                try:
                    fn(value)  # type: ignore[arg-type]
                except Exception:
                    logger.exception("Transport listener %r failed", fn)
