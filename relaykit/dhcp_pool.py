"""DHCP address pool and IPv4 header checksum."""

from __future__ import annotations

import ipaddress
import itertools
import random
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from ipaddress import IPv4Address
from typing import Optional, Union

__all__ = [
    "PoolExhaustedError",
    "Pool",
    "ipv4_to_num",
    "num_to_ipv4",
    "checksum",
]

AddrLike = Union[str, int, IPv4Address]
MacLike = Union[str, bytes, bytearray]


class PoolExhaustedError(RuntimeError):
    """Raised when no address is left to lease."""


def ipv4_to_num(addr: AddrLike) -> int:
    """Return an IPv4 address as a 32-bit number."""
    return int(IPv4Address(addr))


def num_to_ipv4(n: int) -> IPv4Address:
    """Return the IPv4 address for the low 32 bits of ``n``."""
    return IPv4Address(n & 0xFFFFFFFF)


def checksum(data: bytes) -> int:
    """Return the 16-bit ones' complement checksum of ``data``.

    An odd trailing byte is padded with a zero byte.
    """
    data = bytes(data)
    if len(data) % 2:
        data += b"\0"
    total = sum(int.from_bytes(data[i : i + 2], "big") for i in range(0, len(data), 2))
    while total > 0xFFFF:
        total = (total >> 16) + (total & 0xFFFF)
    return ~total & 0xFFFF


def _mac_bytes(mac: MacLike) -> bytes:
    if isinstance(mac, str):
        return bytes.fromhex(mac.replace(":", "").replace("-", ""))
    return bytes(mac)


@dataclass
class _Lease:
    ip: IPv4Address
    mac: Optional[bytes] = None
    expires: Optional[float] = None

    @property
    def static(self) -> bool:
        return self.mac is not None and self.expires is None

    def assign(self, mac: bytes, expires: float) -> None:
        self.mac = mac
        self.expires = expires

    def free(self) -> None:
        self.mac = None
        self.expires = None


class Pool:
    """A range of IPv4 addresses leased to hardware addresses.

    Leases expire after ``lease`` seconds (or a timedelta). Expired leases are
    freed by :meth:`expire`; with ``auto_expire`` a background thread calls it
    every second until :meth:`close`.
    """

    def __init__(
        self,
        lease: Union[float, timedelta],
        start: AddrLike,
        end: AddrLike,
        *,
        auto_expire: bool = False,
    ) -> None:
        self.lease = lease.total_seconds() if isinstance(lease, timedelta) else float(lease)
        start_ip = ipaddress.ip_address(start)
        end_ip = ipaddress.ip_address(end)
        if (
            start_ip.version == 6
            or end_ip.version == 6
            or start_ip.is_unspecified
            or end_ip.is_unspecified
        ):
            raise ValueError(
                "start ip or end ip is wrong/nil, please check your config, "
                "note only ipv4 is supported"
            )
        first, last = ipv4_to_num(start_ip), ipv4_to_num(end_ip)
        if last < first:
            raise ValueError("start ip larger than end ip")

        self._items = [_Lease(num_to_ipv4(n)) for n in range(first, last + 1)]
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        if auto_expire:
            self._thread = threading.Thread(target=self._expire_loop, daemon=True)
            self._thread.start()

    def __len__(self) -> int:
        return len(self._items)

    def __enter__(self) -> Pool:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _expire_loop(self) -> None:
        while not self._stop.wait(1.0):
            self.expire()

    def close(self) -> None:
        """Stop the background expiry thread, if any."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def lease_ip(self, mac: MacLike, ip: Optional[AddrLike] = None) -> IPv4Address:
        """Lease an address to ``mac``.

        An address already held by ``mac`` is returned (and its lease renewed),
        else the requested ``ip`` if free, else a free address chosen from a
        random starting point. Raises ``PoolExhaustedError`` when none is free.
        """
        mac = _mac_bytes(mac)
        requested = ipaddress.ip_address(ip) if ip is not None else None
        with self._lock:
            expires = time.time() + self.lease

            for item in self._items:
                if item.mac == mac:
                    if item.expires is not None:
                        item.expires = expires
                    return item.ip

            if requested is not None:
                for item in self._items:
                    if item.ip == requested and item.mac is None:
                        item.assign(mac, expires)
                        return item.ip

            start = random.randrange(len(self._items))
            for item in itertools.chain(self._items[start:], self._items):
                if item.mac is None:
                    item.assign(mac, expires)
                    return item.ip

        raise PoolExhaustedError("no more ip can be leased")

    def lease_static_ip(self, mac: MacLike, ip: AddrLike) -> None:
        """Bind ``ip`` to ``mac`` permanently."""
        mac = _mac_bytes(mac)
        target = ipaddress.ip_address(ip)
        with self._lock:
            for item in self._items:
                if item.ip == target:
                    item.mac = mac
                    item.expires = None

    def release_ip(self, mac: MacLike) -> None:
        """Free the non-static addresses leased to ``mac``."""
        mac = _mac_bytes(mac)
        with self._lock:
            for item in self._items:
                if item.expires is not None and item.mac == mac:
                    item.free()

    def expire(self, now: Optional[float] = None) -> None:
        """Free leases that expired before ``now`` (default: the current time)."""
        if now is None:
            now = time.time()
        with self._lock:
            for item in self._items:
                if item.expires is not None and now > item.expires:
                    item.free()