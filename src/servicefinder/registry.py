"""Service-instance values and the registry that owns them.

Brief:
  ServiceInstance is an immutable snapshot of everything learned about one
  advertised endpoint. The finder replaces registry entries with merged
  copies (merge_instance) rather than mutating them, so any value handed to a
  caller stays a stable point-in-time view.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple


@dataclass(frozen=True)
class ServiceInstance:
    """
    Brief: One discovered service instance.

    Inputs:
      - name: instance label (PTR target with the service type stripped).
      - type: browsed service type, e.g. ``_http._tcp.local``.
      - fullname: PTR target as announced; SRV/TXT records are owned by it.
      - target: SRV target host.
      - port, priority, weight: SRV fields.
      - address: IPv4 address of ``target`` from an A record.
      - txt: raw TXT character-strings.
      - ttl: TTL of the most recent PTR answer.
      - source_address: sender of the most recent PTR announcement; the
        registry keeps every sender (Registry.sources).

    Outputs:
      - ServiceInstance; ``id`` is ``name + "." + type``.
    """

    name: str
    type: str
    fullname: str
    target: Optional[str] = None
    port: Optional[int] = None
    priority: Optional[int] = None
    weight: Optional[int] = None
    address: Optional[str] = None
    txt: Optional[Tuple[bytes, ...]] = None
    ttl: Optional[int] = None
    source_address: Optional[str] = None

    @property
    def id(self) -> str:
        return instance_id(self.name, self.type)

    def to_dict(self) -> Dict[str, object]:
        out = dataclasses.asdict(self)
        out["id"] = self.id
        return out


def merge_instance(current: ServiceInstance, **fields: object) -> ServiceInstance:
    """
    Brief: Return ``current`` with every non-None field in ``fields`` applied.

    Inputs:
      - current: existing instance.
      - fields: candidate field values; None means "not present on the record".

    Outputs:
      - ServiceInstance: merged copy (``current`` itself if nothing changed).

    Notes:
      - Fields absent from the update are never erased, so merges touching
        disjoint fields commute.

    Example:
      >>> base = ServiceInstance("foo", "_x._tcp.local", "foo._x._tcp.local")
      >>> merge_instance(base, port=80, address=None).port
      80
    """
    present = {k: v for k, v in fields.items() if v is not None}
    if all(getattr(current, k) == v for k, v in present.items()):
        return current
    return dataclasses.replace(current, **present)


def instance_name(ptr_target: str, service_type: str) -> str:
    """Brief: Strip ``.<service_type>`` from a PTR target, case-insensitively."""
    suffix = "." + service_type.lower()
    if ptr_target.lower().endswith(suffix) and len(ptr_target) > len(suffix):
        return ptr_target[: -len(suffix)]
    return ptr_target


def instance_id(name: str, service_type: str) -> str:
    return f"{name}.{service_type}"


def _ip_sort_key(ip: str) -> Tuple[int, ...]:
    return tuple(int(p) if p.isdigit() else -1 for p in ip.split("."))


def sort_ips(ips: Iterable[str]) -> List[str]:
    """Brief: Sort dotted-quad strings numerically ('10.0.0.9' before '10.0.0.10')."""
    return sorted(ips, key=_ip_sort_key)


class Registry:
    """
    Brief: Mapping of instance id -> ServiceInstance with lookup helpers.

    Inputs:
      - None

    Outputs:
      - Registry instance. Not thread-safe; the finder guards it with its lock.

    Notes:
      - Supports ``len()``, ``in`` (by instance id) and iteration over a
        snapshot of the stored instances.
      - Every address an instance was announced from is kept until the
        instance is removed; ``services(ip)`` and ``ips(service)`` read it.
      - ``version`` increases on every change visible through the read API.
    """

    def __init__(self) -> None:
        self._store: Dict[str, ServiceInstance] = {}
        self._sources: Dict[str, Set[str]] = {}
        self.version = 0

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __iter__(self) -> Iterator[ServiceInstance]:
        return iter(list(self._store.values()))

    def get(self, key: str) -> Optional[ServiceInstance]:
        return self._store.get(key)

    def put(self, instance: ServiceInstance) -> None:
        """
        Brief: Store ``instance`` under its id and record its source address.

        Inputs:
          - instance: merged ServiceInstance.

        Outputs:
          - None; ``version`` is bumped only if something observable changed.
        """
        key = instance.id
        if self._store.get(key) != instance:
            self._store[key] = instance
            self.version += 1
        if instance.source_address:
            seen = self._sources.setdefault(key, set())
            if instance.source_address not in seen:
                seen.add(instance.source_address)
                self.version += 1

    def remove(self, key: str) -> Optional[ServiceInstance]:
        self._sources.pop(key, None)
        removed = self._store.pop(key, None)
        if removed is not None:
            self.version += 1
        return removed

    def clear(self) -> None:
        if self._store:
            self.version += 1
        self._store.clear()
        self._sources.clear()

    def sources(self, key: str) -> List[str]:
        """Brief: Numerically sorted addresses that announced instance ``key``."""
        return sort_ips(self._sources.get(key, ()))

    def by_fullname(self, fullname: str) -> List[ServiceInstance]:
        """Brief: Instances whose PTR target equals ``fullname`` (case-insensitive)."""
        wanted = fullname.lower()
        return [i for i in self if i.fullname.lower() == wanted]

    def by_target(self, host: str) -> List[ServiceInstance]:
        """Brief: Instances whose SRV target equals ``host`` (case-insensitive)."""
        wanted = host.lower()
        return [i for i in self if i.target is not None and i.target.lower() == wanted]

    def instances(self) -> List[ServiceInstance]:
        return list(self)

    def services(self, ip: Optional[str] = None) -> List[str]:
        """
        Brief: Sorted unique instance names, optionally only those seen from ``ip``.

        Inputs:
          - ip: optional source address filter; matches any address that
            ever announced the instance.

        Outputs:
          - List[str]: lexicographically sorted names.
        """
        names = {
            i.name
            for i in self
            if ip is None or ip in self._sources.get(i.id, ())
        }
        return sorted(names)

    def ips(self, service: Optional[str] = None) -> List[str]:
        """
        Brief: Numerically sorted source addresses, optionally for one service name.

        Inputs:
          - service: optional instance name filter.

        Outputs:
          - List[str]: dotted-quad addresses, each listed once.
        """
        addrs: Set[str] = set()
        for inst in self:
            if service is None or inst.name == service:
                addrs.update(self._sources.get(inst.id, ()))
        return sort_ips(addrs)
