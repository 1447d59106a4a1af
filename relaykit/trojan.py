"""Trojan protocol: request headers and packets over a trojan stream.

A request is ``hex(sha224(password)) (56) | CRLF | cmd | address | CRLF``,
where the address uses the SOCKS5 encoding
``atyp | host | port (2 bytes, big endian)``. A packet is
``address | length (2 bytes) | CRLF | payload``.

Streams need ``read(n)`` and ``write(data)``.
"""

from __future__ import annotations

import hashlib
import ipaddress
import re
import ssl
import struct
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional, Union
from urllib.parse import parse_qs, unquote, urlsplit

from .addr import join_host_port, split_host_port

__all__ = [
    "CMD_ERROR",
    "CMD_CONNECT",
    "CMD_UDP_ASSOCIATE",
    "ATYP_IPV4",
    "ATYP_DOMAIN",
    "ATYP_IPV6",
    "hash_password",
    "encode_socks_addr",
    "read_socks_addr",
    "Trojan",
    "PktConn",
]

CMD_ERROR = 0
CMD_CONNECT = 1
CMD_UDP_ASSOCIATE = 3

ATYP_IPV4 = 1
ATYP_DOMAIN = 3
ATYP_IPV6 = 4

_MAX_DOMAIN_LEN = 255
_CRLF = b"\r\n"
_PORT_RE = re.compile(r"[0-9]+")


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def hash_password(password: str) -> bytes:
    """Return the 56-byte hex SHA-224 digest used as the trojan credential."""
    return hashlib.sha224(password.encode()).hexdigest().encode()


def encode_socks_addr(s: str) -> bytes:
    """Encode ``host:port`` as a SOCKS5 address; raise ``ValueError`` if invalid."""
    host, port = split_host_port(s)
    if not _PORT_RE.fullmatch(port) or int(port) > 0xFFFF:
        raise ValueError(f"invalid port: {port!r}")
    port_bytes = struct.pack(">H", int(port))

    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        name = host.encode()
        if len(name) > _MAX_DOMAIN_LEN:
            raise ValueError(f"host too long: {len(name)} bytes") from None
        return bytes([ATYP_DOMAIN, len(name)]) + name + port_bytes

    atyp = ATYP_IPV4 if ip.version == 4 else ATYP_IPV6
    return bytes([atyp]) + ip.packed + port_bytes


def read_socks_addr(stream: BinaryIO) -> str:
    """Read a SOCKS5 address from ``stream`` and return it as ``host:port``."""
    atyp = _read_full(stream, 1)[0]
    if atyp == ATYP_IPV4:
        host = str(ipaddress.IPv4Address(_read_full(stream, 4)))
    elif atyp == ATYP_IPV6:
        host = str(ipaddress.IPv6Address(_read_full(stream, 16)))
    elif atyp == ATYP_DOMAIN:
        length = _read_full(stream, 1)[0]
        host = _read_full(stream, length).decode(errors="replace")
    else:
        raise ValueError(f"address type {atyp} not supported")
    (port,) = struct.unpack(">H", _read_full(stream, 2))
    return join_host_port(host, port)


@dataclass
class Trojan:
    """A trojan endpoint and its TLS settings."""

    addr: str
    password_hash: bytes
    with_tls: bool = True
    server_name: str = ""
    skip_verify: bool = False
    cert_file: str = ""
    key_file: str = ""
    fallback: str = ""

    @classmethod
    def from_url(cls, s: str) -> Trojan:
        """Build from ``trojan://pass@host[:port][?...]`` or ``trojanc://...``.

        The port defaults to 443 and the server name to the host.
        """
        parts = urlsplit(s)
        addr = parts.netloc.rpartition("@")[2]
        query = parse_qs(parts.query)

        def get(name: str) -> str:
            return query.get(name, [""])[0]

        server_name = get("serverName")
        if addr:
            try:
                _, port = split_host_port(addr)
            except ValueError:
                port = ""
            if not port:
                addr = join_host_port(addr, 443)
            if not server_name:
                server_name = addr[: addr.rfind(":")]

        password = unquote(parts.username or "")
        if not password:
            raise ValueError("[trojan] password must be specified")

        return cls(
            addr=addr,
            password_hash=hash_password(password),
            with_tls=parts.scheme.lower() != "trojanc",
            server_name=server_name,
            skip_verify=get("skipVerify") == "true",
            cert_file=get("cert"),
            key_file=get("key"),
            fallback=get("fallback"),
        )

    def client_ssl_context(self) -> ssl.SSLContext:
        """Return the TLS context used when connecting to the server."""
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        if self.skip_verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        if self.cert_file:
            ctx.load_verify_locations(cafile=self.cert_file)
        elif not self.skip_verify:
            ctx.load_default_certs()
        return ctx

    def server_ssl_context(self) -> ssl.SSLContext:
        """Return the TLS context used when serving; needs cert and key files."""
        if not self.cert_file or not self.key_file:
            raise ValueError("[trojan] cert and key file path must be specified")
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.minimum_version = ssl.TLSVersion.TLSv1_2
        ctx.load_cert_chain(self.cert_file, self.key_file)
        return ctx

    def build_request(self, network: str, addr: str) -> bytes:
        """Return the request header for ``addr``; ``udp`` asks for UDP associate."""
        cmd = CMD_UDP_ASSOCIATE if network == "udp" else CMD_CONNECT
        return (
            self.password_hash
            + _CRLF
            + bytes([cmd])
            + encode_socks_addr(addr)
            + _CRLF
        )

    def read_header(self, stream: BinaryIO) -> tuple[int, str]:
        """Read and verify a request header; return ``(cmd, target)``.

        Raises ``ValueError`` for a wrong password or address and ``EOFError``
        when the stream ends early.
        """
        head = _read_full(stream, 59)
        if head[:56] != self.password_hash:
            raise ValueError("wrong password")
        cmd = head[58]
        try:
            target = read_socks_addr(stream)
        except ValueError as exc:
            raise ValueError(f"read target address error: {exc}") from exc
        _read_full(stream, 2)
        return cmd, target


class PktConn:
    """Packets over a trojan stream, each carrying its own address."""

    def __init__(self, conn: Any, target: Optional[Union[bytes, str]] = None) -> None:
        self.conn = conn
        self.target = encode_socks_addr(target) if isinstance(target, str) else target

    def read_from(self, n: int) -> tuple[bytes, tuple[str, int]]:
        """Read one packet of at most ``n`` bytes; return ``(data, (host, port))``."""
        target = read_socks_addr(self.conn)
        host, port = split_host_port(target)
        if n < 2:
            raise ValueError("buf size is not enough")
        (length,) = struct.unpack(">H", _read_full(self.conn, 2))
        if n < length:
            raise ValueError("buf size is not enough")
        _read_full(self.conn, 2)
        return _read_full(self.conn, length), (host, int(port))

    def write_to(self, data: bytes, addr: Any) -> int:
        """Write one packet to ``addr``, or to the default target when ``None``."""
        target = self.target
        if addr is not None:
            text = join_host_port(addr[0], addr[1]) if isinstance(addr, tuple) else str(addr)
            try:
                target = encode_socks_addr(text)
            except ValueError:
                target = None
        if target is None:
            raise ValueError("invalid addr")

        data = bytes(data)
        self.conn.write(target + struct.pack(">H", len(data) & 0xFFFF) + _CRLF + data)
        return len(data)