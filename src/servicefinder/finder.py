"""mDNS / DNS-SD service discovery engine.

Brief:
  ServiceFinder browses one DNS-SD service type. It binds a UDP socket per
  local IPv4 address (plus one socket joined to the mDNS group), broadcasts a
  PTR query, and merges PTR/SRV/TXT/A answers into a registry of
  ServiceInstance values. Changes are reported through a single callback that
  is debounced so a burst of related datagrams yields one notification.

Inputs:
  - callback: called with no arguments after changes, or with one
    ServiceFinderError on failure.
  - service_type: DNS-SD type to browse.
  - config: FinderConfig or mapping.

Outputs:
  - ServiceFinder instance (single-use; shut it down when finished).

Example:
    >>> def on_change(error=None):
    ...     if error is None:
    ...         print([i.name for i in finder.instances()])
    >>> finder = ServiceFinder(on_change, "_http._tcp.local")  # doctest: +SKIP
    >>> finder.ready.result(timeout=5)  # doctest: +SKIP
    >>> finder.shutdown()  # doctest: +SKIP
"""

from __future__ import annotations

import enum
import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config.config_schema import FinderConfig, coerce_finder_config
from .dns.packet import DNSPacket, DNSRecord, decode_packet
from .dns.records import (
    QTYPE_A,
    QTYPE_PTR,
    QTYPE_SRV,
    QTYPE_TXT,
    as_address,
    as_ptr_target,
    as_srv,
    as_txt_list,
    type_name,
)
from .errors import (
    BindError,
    GroupJoinError,
    MalformedPacketError,
    NoNetworkError,
    NoServicesFoundError,
    RecordInterpretationError,
    SendError,
    ServiceFinderError,
    TransportReadError,
)
from .registry import (
    Registry,
    ServiceInstance,
    instance_id,
    instance_name,
    merge_instance,
)
from .scheduler import TimerScheduler
from .transports.udp import Datagram, UDPTransport

logger = logging.getLogger(__name__)

FinderCallback = Callable[..., None]


class FinderState(enum.Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


@dataclass(frozen=True)
class BoundSocket:
    """Brief: A transport handle bound to one local interface address."""

    handle: int
    address: str


class ServiceFinder:
    """
    Brief: Discover and track instances of one DNS-SD service type.

    Inputs:
      - callback: FinderCallback; ``callback()`` on change, ``callback(err)``
        for NoNetworkError, BindError, SendError, TransportReadError and
        NoServicesFoundError.
      - service_type: type to browse; defaults to config.service_type.
      - config: FinderConfig, mapping or None.
      - transport: socket transport (defaults to a private UDPTransport).
      - scheduler: timer scheduler (defaults to a private TimerScheduler).
      - autostart: when True (default) initialization starts immediately.

    Outputs:
      - ServiceFinder instance; ``ready`` resolves to the bound sockets.
    """

    def __init__(
        self,
        callback: FinderCallback,
        service_type: Optional[str] = None,
        config: Any = None,
        *,
        transport: Optional[UDPTransport] = None,
        scheduler: Optional[TimerScheduler] = None,
        autostart: bool = True,
    ) -> None:
        self.config: FinderConfig = coerce_finder_config(config)
        if service_type:
            self.config = self.config.copy(
                update={"service_type": service_type.strip().rstrip(".")}
            )
        self.service_type: str = self.config.service_type
        self.ready: "Future[List[BoundSocket]]" = Future()

        self._callback = callback
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else UDPTransport()
        self._scheduler = scheduler if scheduler is not None else TimerScheduler()

        self._lock = threading.RLock()
        self._state = FinderState.INITIALIZING
        self._started = False
        self._registry = Registry()
        self._sockets: List[BoundSocket] = []
        self._group_handle: Optional[int] = None
        self._expiry: Dict[str, Tuple[object, Any]] = {}
        self._notify_pending = False

        self._transport.add_receive_listener(self.on_receive)
        self._transport.add_error_listener(self.on_receive_error)

        if self.config.no_services_timeout_s > 0:
            self._scheduler.call_later(
                self.config.no_services_timeout_s, self._check_initial_silence
            )

        if autostart:
            self.start()

    # --- lifecycle ---

    @property
    def state(self) -> FinderState:
        with self._lock:
            return self._state

    def start(self) -> "Future[List[BoundSocket]]":
        """
        Brief: Begin initialization on a worker thread (idempotent).

        Outputs:
          - Future resolving to the bound sockets, or raising NoNetworkError /
            BindError; cancelled when shut down mid-initialization.
        """
        with self._lock:
            if self._started:
                return self.ready
            self._started = True
        worker = threading.Thread(
            target=self._initialize, name="servicefinder-init", daemon=True
        )
        worker.start()
        return self.ready

    def _initialize(self) -> None:
        try:
            sockets = self._setup_sockets()
        except ServiceFinderError as exc:
            self._fail(exc)
            return

        with self._lock:
            self._sockets = sockets
            if self._state is not FinderState.INITIALIZING:
                # shutdown() ran while we were binding; it left cleanup to us.
                self._release()
                self._state = FinderState.CLOSED
                self.ready.cancel()
                return
            self._state = FinderState.ACTIVE
        logger.info(
            "Browsing %s on %d socket(s): %s",
            self.service_type,
            len(sockets),
            ", ".join(s.address for s in sockets),
        )
        self.browse_services()
        self.ready.set_result(list(sockets))

    def _setup_sockets(self) -> List[BoundSocket]:
        try:
            return self._bind_sockets()
        except ServiceFinderError:
            raise
        except Exception as exc:
            raise NoNetworkError(f"network setup failed: {exc}") from exc

    def _bind_sockets(self) -> List[BoundSocket]:
        """
        Brief: Enumerate interfaces, keep IPv4, bind them concurrently.

        Outputs:
          - List[BoundSocket] in interface order; also sets _group_handle.

        Raises:
          - NoNetworkError: no interfaces, or none with an IPv4 address.
          - BindError: no per-address socket could be bound.
        """
        addresses = self._transport.enumerate_interfaces()
        valid: List[str] = []
        for address in addresses:
            if ":" in address:
                logger.warning("IPv6 address unsupported: %s", address)
                continue
            valid.append(address)
        if not valid:
            raise NoNetworkError("no usable IPv4 network interface")

        bound: List[BoundSocket] = []
        with ThreadPoolExecutor(max_workers=min(8, len(valid))) as pool:
            futures = [(a, pool.submit(self._transport.bind, a, 0)) for a in valid]
            group_future = pool.submit(self._bind_group_socket)
            for address, fut in futures:
                try:
                    bound.append(BoundSocket(fut.result(), address))
                except BindError as exc:
                    logger.warning("Dropping address %s: %s", address, exc)
            group_handle = group_future.result()

        with self._lock:
            self._group_handle = group_handle
        if not bound:
            raise BindError("Could not bind a socket on any interface")
        return bound

    def _bind_group_socket(self) -> Optional[int]:
        try:
            handle = self._transport.bind("0.0.0.0", self.config.mdns_port)
        except BindError as exc:
            logger.warning(
                "Could not bind mDNS port %d; only unicast replies will be seen: %s",
                self.config.mdns_port,
                exc,
            )
            return None
        try:
            self._transport.join_multicast_group(handle, self.config.mdns_address)
        except GroupJoinError as exc:
            logger.warning("Multicast join failed, dropping group socket: %s", exc)
            self._transport.close(handle)
            return None
        return handle

    def _fail(self, exc: ServiceFinderError) -> None:
        with self._lock:
            quiet = self._state is not FinderState.INITIALIZING
            self._state = FinderState.CLOSED
            self._detach()
            self._scheduler.cancel_all()
            self._release()
        logger.error("Service discovery for %s failed: %s", self.service_type, exc)
        if not quiet:
            self._invoke_callback(exc)
        self.ready.set_exception(exc)

    def shutdown(self) -> None:
        """
        Brief: Detach listeners, cancel timers and close this finder's sockets.

        Notes:
          - Only the first call has any effect. After shutdown the finder
            must not be reused.
        """
        with self._lock:
            if self._state in (FinderState.SHUTTING_DOWN, FinderState.CLOSED):
                return
            initializing = self._state is FinderState.INITIALIZING and self._started
            self._state = FinderState.SHUTTING_DOWN
            self._detach()
            self._scheduler.cancel_all()
            self._expiry.clear()
            self._notify_pending = False
            if initializing:
                # The init worker releases sockets once binding returns.
                return
            self._release()
            self._state = FinderState.CLOSED
        if not self.ready.done():
            self.ready.cancel()
        logger.info("Service finder for %s shut down", self.service_type)

    def _detach(self) -> None:
        self._transport.remove_receive_listener(self.on_receive)
        self._transport.remove_error_listener(self.on_receive_error)

    def _release(self) -> None:
        for s in self._sockets:
            self._transport.close(s.handle)
        if self._group_handle is not None:
            self._transport.close(self._group_handle)
            self._group_handle = None
        self._sockets = []
        if self._owns_transport:
            self._transport.close_all()

    # --- queries ---

    def browse_services(self) -> None:
        """
        Brief: Send a PTR query for the service type on every bound socket.

        Notes:
          - Does not reset the registry; safe to call on a timer.
          - A failing socket is reported via callback(SendError) and the
            others are still tried.
        """
        with self._lock:
            if self._state is not FinderState.ACTIVE:
                logger.debug("browse_services ignored in state %s", self._state.value)
                return
            sockets = list(self._sockets)
        payload = DNSPacket.query(self.service_type, QTYPE_PTR).pack()
        for s in sockets:
            try:
                self._transport.send(
                    s.handle, payload, self.config.mdns_address, self.config.mdns_port
                )
            except SendError as exc:
                logger.warning("Query on %s failed: %s", s.address, exc)
                self._invoke_callback(exc)

    # --- snapshots ---

    def instances(self) -> List[ServiceInstance]:
        with self._lock:
            return self._registry.instances()

    def services(self, ip: Optional[str] = None) -> List[str]:
        with self._lock:
            return self._registry.services(ip)

    def ips(self, service: Optional[str] = None) -> List[str]:
        with self._lock:
            return self._registry.ips(service)

    # --- inbound ---

    def _owns_handle(self, handle: int) -> bool:
        return handle == self._group_handle or any(s.handle == handle for s in self._sockets)

    def on_receive(self, datagram: Datagram) -> None:
        """
        Brief: Decode one datagram and merge its records into the registry.

        Inputs:
          - datagram: Datagram delivered by the transport.

        Outputs:
          - None; corrupt datagrams are logged and dropped without a callback,
            and a notification is armed only when the registry changed.
        """
        with self._lock:
            if self._state is not FinderState.ACTIVE or not self._owns_handle(
                datagram.handle
            ):
                return
        try:
            packet = decode_packet(datagram.payload)
        except MalformedPacketError as exc:
            logger.debug(
                "Dropping malformed datagram from %s:%d: %s",
                datagram.source_address,
                datagram.source_port,
                exc,
            )
            return

        if not packet.answers and not packet.additionals:
            # Queries, including our own looped-back ones.
            logger.debug("Ignoring datagram without answers from %s", datagram.source_address)
            return

        with self._lock:
            if self._state is not FinderState.ACTIVE:
                return
            version = self._registry.version
            self._apply_packet(packet, datagram.source_address)
            if self._registry.version != version:
                self._schedule_notify_locked()

    def on_receive_error(self, code: int) -> None:
        with self._lock:
            if self._state is not FinderState.ACTIVE:
                return
        self._invoke_callback(TransportReadError(code))

    def _apply_packet(self, packet: DNSPacket, source: str) -> None:
        records = list(packet.answers) + list(packet.additionals)
        current: Optional[str] = None
        wanted = self.service_type.lower()

        for rec in records:
            if rec.rtype == QTYPE_PTR and rec.name.lower() in (wanted, ""):
                target = self._project(rec, as_ptr_target)
                if target is not None:
                    current = self._merge_ptr(rec, target, source) or current

        for rec in records:
            srv = self._project(rec, as_srv) if rec.rtype == QTYPE_SRV else None
            if srv is None:
                continue
            matches = self._registry.by_fullname(rec.name)
            if not matches:
                logger.debug("Discarding SRV for %s: no matching instance", rec.name)
                continue
            for inst in matches:
                self._registry.put(
                    merge_instance(
                        inst,
                        target=srv.target,
                        port=srv.port,
                        priority=srv.priority,
                        weight=srv.weight,
                    )
                )
                current = inst.id

        for rec in records:
            if rec.rtype == QTYPE_TXT:
                txt = self._project(rec, as_txt_list)
                if txt is None:
                    continue
                for inst in self._attribute(rec, current, self._registry.by_fullname):
                    self._registry.put(merge_instance(inst, txt=tuple(txt)))
            elif rec.rtype == QTYPE_A:
                address = self._project(rec, as_address)
                if address is None:
                    continue
                for inst in self._attribute(rec, current, self._registry.by_target):
                    self._registry.put(merge_instance(inst, address=address))

    @staticmethod
    def _project(rec: DNSRecord, projection: Callable[[DNSRecord], Any]) -> Any:
        try:
            return projection(rec)
        except RecordInterpretationError as exc:
            logger.debug("Skipping record: %s", exc)
            return None

    def _attribute(
        self,
        rec: DNSRecord,
        current: Optional[str],
        lookup: Callable[[str], List[ServiceInstance]],
    ) -> List[ServiceInstance]:
        if rec.name:
            matches = lookup(rec.name)
        else:
            inst = self._registry.get(current) if current else None
            matches = [inst] if inst is not None else []
        if not matches:
            logger.debug(
                "No instance for %s record %r", type_name(rec.rtype), rec.name
            )
        return matches

    def _merge_ptr(self, rec: DNSRecord, target: str, source: str) -> Optional[str]:
        name = instance_name(target, self.service_type)
        key = instance_id(name, self.service_type)
        ttl = rec.ttl or 0

        if self.config.expire_records and ttl == 0:
            if self._remove_locked(key):
                logger.info("Goodbye from %s", key)
            return None

        existing = self._registry.get(key)
        if existing is None:
            inst = ServiceInstance(
                name=name,
                type=self.service_type,
                fullname=target,
                ttl=ttl,
                source_address=source,
            )
            logger.info("Discovered %s from %s (ttl=%d)", key, source, ttl)
        else:
            inst = merge_instance(existing, ttl=ttl, source_address=source)
        self._registry.put(inst)

        if self.config.expire_records:
            self._arm_expiry_locked(key, ttl)
        return key

    # --- timers ---

    def _arm_expiry_locked(self, key: str, ttl: int) -> None:
        old = self._expiry.pop(key, None)
        if old is not None:
            old[1].cancel()
        token = object()
        handle = self._scheduler.call_later(
            ttl, functools.partial(self._expire, key, token)
        )
        self._expiry[key] = (token, handle)

    def _expire(self, key: str, token: object) -> None:
        with self._lock:
            if self._state is not FinderState.ACTIVE:
                return
            entry = self._expiry.get(key)
            if entry is None or entry[0] is not token:
                return
            del self._expiry[key]
            if self._registry.remove(key) is not None:
                logger.info("Expired %s; re-querying", key)
                self._schedule_notify_locked()
        self.browse_services()

    def _remove_locked(self, key: str) -> bool:
        entry = self._expiry.pop(key, None)
        if entry is not None:
            entry[1].cancel()
        if key not in self._registry:
            return False
        self._registry.remove(key)
        self._schedule_notify_locked()
        return True

    def _schedule_notify_locked(self) -> None:
        if self._notify_pending:
            return
        self._notify_pending = True
        self._scheduler.call_later(self.config.debounce_ms / 1000.0, self._fire_notify)

    def _fire_notify(self) -> None:
        with self._lock:
            self._notify_pending = False
            if self._state is not FinderState.ACTIVE:
                return
        self._invoke_callback()

    def _check_initial_silence(self) -> None:
        with self._lock:
            if self._state not in (FinderState.INITIALIZING, FinderState.ACTIVE):
                return
            if len(self._registry):
                return
        logger.warning("No %s services found yet", self.service_type)
        self._invoke_callback(NoServicesFoundError("no mDNS services found!"))

    def _invoke_callback(self, error: Optional[ServiceFinderError] = None) -> None:
        try:
            if error is None:
                self._callback()
            else:
                self._callback(error)
        except Exception:
            logger.exception("Service finder callback raised")
