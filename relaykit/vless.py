"""VLESS protocol: request headers, client and server connections.

A request is ``version | uuid (16) | addon length | addons | cmd | address``,
where the address is encoded as in :mod:`relaykit.addr`. A response starts
with ``version | addon length | addons``. Packets over a VLESS stream are
``length (2 bytes, big endian) | payload``.

Streams need ``read(n)`` and ``write(data)``.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import parse_qs, urlsplit

from .addr import parse_addr, read_addr_string, split_host_port
from .vmess_user import str_to_uuid

__all__ = [
    "VERSION",
    "CmdType",
    "VLess",
    "new_client_conn",
    "ClientConn",
    "ServerConn",
    "PktConn",
]

VERSION = 0


class CmdType(IntEnum):
    """Request command."""

    ERR = 0
    TCP = 1
    UDP = 2


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def _discard(stream: BinaryIO, n: int) -> None:
    """Skip up to ``n`` bytes, stopping quietly at the end of the stream."""
    while n > 0:
        chunk = stream.read(n)
        if not chunk:
            return
        n -= len(chunk)


def _to_cmd(value: int) -> Union[CmdType, int]:
    try:
        return CmdType(value)
    except ValueError:
        return value


@dataclass
class VLess:
    """A VLESS endpoint: its address, user id and optional fallback target."""

    addr: str
    uuid: bytes
    fallback: str = ""
    dialer: Any = None
    proxy: Any = None

    @classmethod
    def from_url(cls, s: str) -> VLess:
        """Build from ``vless://uuid@host:port[?fallback=host:port]``."""
        parts = urlsplit(s)
        host = parts.netloc.rpartition("@")[2]
        uuid = str_to_uuid(parts.username or "")
        query = parse_qs(parts.query)
        fallback = query.get("fallback", [""])[0]
        return cls(addr=host, uuid=uuid, fallback=fallback)

    def read_header(self, stream: BinaryIO) -> tuple[Union[CmdType, int], str]:
        """Read and verify a request header; return ``(cmd, target)``.

        Raises ``ValueError`` for a wrong version or user id and ``EOFError``
        when the stream ends early.
        """
        head = _read_full(stream, 18)
        if head[0] != VERSION:
            raise ValueError(f"version {head[0]} not supported")
        if head[1:17] != self.uuid:
            raise ValueError(f"auth failed, client id: {head[:16].hex()}")

        if head[17] > 0:
            _discard(stream, head[17])

        cmd = _read_full(stream, 1)[0]
        target = read_addr_string(stream)
        return _to_cmd(cmd), target

    def dial(self, network: str, addr: str) -> ClientConn:
        """Connect through the underlying dialer and send a request for ``addr``."""
        rc = self.dialer.dial("tcp", self.addr)
        return new_client_conn(rc, self.uuid, network, addr)

    def dial_udp(self, network: str, addr: str) -> PktConn:
        """Open a packet connection to ``addr`` over a VLESS stream."""
        conn = self.dial("udp", addr)
        host, port = split_host_port(addr)
        return PktConn(conn, (host, int(port)))


def new_client_conn(conn: Any, uuid: bytes, network: str, target: str) -> ClientConn:
    """Send a request header for ``target`` over ``conn`` and wrap it."""
    atyp, addr, port = parse_addr(target)
    cmd = CmdType.UDP if network == "udp" else CmdType.TCP

    buf = bytearray([VERSION])
    buf += bytes(uuid)
    buf.append(0)
    buf.append(int(cmd))
    buf += struct.pack(">H", port)
    buf.append(int(atyp))
    buf += addr

    conn.write(bytes(buf))
    return ClientConn(conn)


class ClientConn:
    """Client side of a VLESS stream; strips the response header on first read."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn
        self._received = False

    def write(self, data: bytes) -> int:
        n = self.conn.write(data)
        return len(data) if n is None else n

    def read(self, n: int) -> bytes:
        if not self._received:
            head = _read_full(self.conn, 2)
            if head[0] != VERSION:
                raise ValueError("version not supported")
            if head[1] > 0:
                _discard(self.conn, head[1])
            self._received = True
        return self.conn.read(n)


class ServerConn:
    """Server side of a VLESS stream; prefixes the response header on first write."""

    def __init__(self, conn: Any) -> None:
        self.conn = conn
        self._sent = False

    def write(self, data: bytes) -> int:
        if not self._sent:
            self._sent = True
            self.conn.write(bytes([VERSION, 0]) + bytes(data))
        else:
            self.conn.write(data)
        return len(data)

    def read(self, n: int) -> bytes:
        return self.conn.read(n)


class PktConn:
    """Length-prefixed packets over a VLESS stream to a fixed target."""

    def __init__(self, conn: Any, target: Optional[Any]) -> None:
        self.conn = conn
        self.target = target

    def read_from(self, n: int) -> tuple[bytes, Any]:
        """Read one packet of at most ``n`` bytes; return ``(data, target)``."""
        if n < 2:
            raise ValueError("buf size is not enough")
        (length,) = struct.unpack(">H", _read_full(self.conn, 2))
        if n < length:
            raise ValueError("buf size is not enough")
        return _read_full(self.conn, length), self.target

    def write_to(self, data: bytes, addr: Any) -> int:
        """Write one packet; ``addr`` is ignored, the target is fixed."""
        data = bytes(data)
        self.conn.write(struct.pack(">H", len(data) & 0xFFFF) + data)
        return len(data)