"""Target address encoding used by the VLESS and VMess protocols.

On the wire an address is ``port (2 bytes, big endian) | atyp (1 byte) | host``,
where the host is 4 bytes for IPv4, 16 bytes for IPv6, or a length byte
followed by the name for domains.
"""

from __future__ import annotations

import ipaddress
import re
import struct
from enum import IntEnum
from typing import BinaryIO, Union

__all__ = [
    "Atyp",
    "MAX_HOST_LEN",
    "parse_addr",
    "read_addr",
    "read_addr_string",
    "addr_string",
    "split_host_port",
    "join_host_port",
]

MAX_HOST_LEN = 255

_PORT_RE = re.compile(r"[0-9]+")


class Atyp(IntEnum):
    """Address type."""

    ERR = 0
    IP4 = 1
    DOMAIN = 2
    IP6 = 3


def _to_atyp(value: int) -> Union[Atyp, int]:
    try:
        return Atyp(value)
    except ValueError:
        return value


def split_host_port(s: str) -> tuple[str, str]:
    """Split ``host:port`` or ``[host]:port`` into its parts."""
    if s.startswith("["):
        end = s.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address: {s!r}")
        host, rest = s[1:end], s[end + 1 :]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address: {s!r}")
        port = rest[1:]
        if ":" in port or "[" in port or "]" in port:
            raise ValueError(f"unexpected characters in address: {s!r}")
        return host, port
    idx = s.rfind(":")
    if idx < 0:
        raise ValueError(f"missing port in address: {s!r}")
    host, port = s[:idx], s[idx + 1 :]
    if ":" in host:
        raise ValueError(f"too many colons in address: {s!r}")
    if "[" in host or "]" in host:
        raise ValueError(f"unexpected brackets in address: {s!r}")
    return host, port


def join_host_port(host: str, port: Union[int, str]) -> str:
    """Join host and port, bracketing hosts that contain a colon."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def parse_addr(s: str) -> tuple[Atyp, bytes, int]:
    """Parse ``host:port`` into ``(atyp, encoded host, port)``.

    Domain hosts are returned with their leading length byte.
    """
    host, port = split_host_port(s)

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        encoded = host.encode()
        if len(encoded) > MAX_HOST_LEN:
            raise ValueError(f"host too long: {len(encoded)} bytes") from None
        atyp = Atyp.DOMAIN
        addr = bytes([len(encoded)]) + encoded
    else:
        atyp = Atyp.IP6 if ip.version == 6 else Atyp.IP4
        addr = ip.packed

    if not _PORT_RE.fullmatch(port):
        raise ValueError(f"invalid port: {port!r}")
    port_num = int(port)
    if port_num > 0xFFFF:
        raise ValueError(f"port out of range: {port_num}")

    return atyp, addr, port_num


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def read_addr(stream: BinaryIO) -> tuple[Union[Atyp, int], bytes, int]:
    """Read just enough bytes from ``stream`` to get an address.

    Returns ``(atyp, host, port)``; a domain host is returned without its
    length byte. An unknown address type yields an empty host.
    """
    (port,) = struct.unpack(">H", _read_full(stream, 2))
    atyp = _to_atyp(_read_full(stream, 1)[0])

    if atyp == Atyp.IP4:
        host = _read_full(stream, 4)
    elif atyp == Atyp.IP6:
        host = _read_full(stream, 16)
    elif atyp == Atyp.DOMAIN:
        length = _read_full(stream, 1)[0]
        host = _read_full(stream, length)
    else:
        host = b""
    return atyp, host, port


def read_addr_string(stream: BinaryIO) -> str:
    """Read an address from ``stream`` and return it as ``host:port``."""
    atyp, host, port = read_addr(stream)
    return addr_string(atyp, host, port)


def _ip_string(addr: bytes) -> str:
    if len(addr) == 4:
        return str(ipaddress.IPv4Address(addr))
    if len(addr) == 16:
        ip6 = ipaddress.IPv6Address(addr)
        if ip6.ipv4_mapped is not None:
            return str(ip6.ipv4_mapped)
        return str(ip6)
    if not addr:
        return "<nil>"
    return "?" + addr.hex()


def addr_string(atyp: Union[Atyp, int], addr: bytes, port: int) -> str:
    """Format an address as ``host:port``."""
    if atyp in (Atyp.IP4, Atyp.IP6):
        host = _ip_string(bytes(addr))
    elif atyp == Atyp.DOMAIN:
        host = bytes(addr).decode(errors="replace")
    else:
        host = ""
    return join_host_port(host, port)