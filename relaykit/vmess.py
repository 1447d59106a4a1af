"""VMess client connections.

Streams passed as ``rc`` need ``read(n)`` and ``write(data)``; writes are
expected to reach the peer directly (use an unbuffered or flushed stream).
"""

from __future__ import annotations

import hashlib
import hmac
import os
import platform
import random
import struct
import time
from enum import IntEnum
from typing import Any, BinaryIO, Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .addr import parse_addr
from .chunk import AEADReader, AEADWriter, ChunkedReader, ChunkedWriter, ShakeSizeParser
from .vmess_auth import open_aead_header, seal_aead_header
from .vmess_user import User, new_user, str_to_uuid, timestamp_hash

__all__ = [
    "OPT_BASIC_FORMAT",
    "OPT_CHUNK_STREAM",
    "OPT_CHUNK_MASKING",
    "Security",
    "CmdType",
    "Client",
    "Conn",
    "PktConn",
]

OPT_BASIC_FORMAT = 0
OPT_CHUNK_STREAM = 1
OPT_CHUNK_MASKING = 4


class Security(IntEnum):
    """Body encryption of a VMess connection."""

    AES_128_GCM = 3
    CHACHA20_POLY1305 = 4
    NONE = 5


class CmdType(IntEnum):
    """Request command."""

    TCP = 1
    UDP = 2


_SECURITY_NAMES = {
    "aes-128-gcm": Security.AES_128_GCM,
    "chacha20-poly1305": Security.CHACHA20_POLY1305,
    "none": Security.NONE,
}

_AES_FRIENDLY_MACHINES = {"x86_64", "amd64", "s390x", "aarch64", "arm64"}


def _default_security() -> Security:
    if platform.machine().lower() in _AES_FRIENDLY_MACHINES:
        return Security.AES_128_GCM
    return Security.CHACHA20_POLY1305


def _fnv1a32(data: bytes) -> int:
    h = 0x811C9DC5
    for b in data:
        h = ((h ^ b) * 0x01000193) & 0xFFFFFFFF
    return h


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def _chacha_key(key: bytes) -> bytes:
    first = hashlib.md5(key).digest()
    return first + hashlib.md5(first).digest()


def _check_resp_header(header: bytes, expected_v: int) -> None:
    if len(header) < 4:
        raise ValueError("unexpected buffer length")
    if header[0] != expected_v:
        raise ValueError("unexpected response header")
    if header[2] != 0:
        raise ValueError("dynamic port is not supported now")


class Client:
    """A VMess client holding its users and connection options."""

    def __init__(
        self, uuid: str, security: str = "", alter_id: int = 0, aead: bool = True
    ) -> None:
        user = new_user(str_to_uuid(uuid))
        self.users: list[User] = [user, *user.gen_alter_id_users(alter_id)]
        self.opt = OPT_CHUNK_STREAM | OPT_CHUNK_MASKING
        self.aead = aead

        name = security.lower()
        if name == "zero":
            self.security = Security.NONE
            self.opt = OPT_BASIC_FORMAT
        elif name == "":
            self.security = _default_security()
        elif name in _SECURITY_NAMES:
            self.security = _SECURITY_NAMES[name]
        else:
            raise ValueError(f"unknown security type: {name}")

    def new_conn(self, rc: Any, target: str, cmd: CmdType) -> Conn:
        """Open a VMess connection to ``target`` over ``rc`` and send the request."""
        conn = Conn(
            rc,
            random.choice(self.users),
            target,
            opt=self.opt,
            aead=self.aead,
            security=self.security,
        )
        if not self.aead:
            conn.auth()
        conn.request(cmd)
        return conn


class Conn:
    """A connection to a VMess server."""

    def __init__(
        self,
        rc: Any,
        user: User,
        target: str,
        *,
        opt: int,
        aead: bool,
        security: Security,
        req_body_iv: Optional[bytes] = None,
        req_body_key: Optional[bytes] = None,
        req_resp_v: Optional[int] = None,
    ) -> None:
        self.rc = rc
        self.user = user
        self.opt = opt
        self.aead = aead
        self.security = Security(security)
        self.atyp, self.addr, self.port = parse_addr(target)

        self.req_body_iv = bytes(req_body_iv) if req_body_iv is not None else os.urandom(16)
        self.req_body_key = bytes(req_body_key) if req_body_key is not None else os.urandom(16)
        self.req_resp_v = req_resp_v if req_resp_v is not None else random.randrange(256)

        if aead:
            self.resp_body_iv = hashlib.sha256(self.req_body_iv).digest()[:16]
            self.resp_body_key = hashlib.sha256(self.req_body_key).digest()[:16]
        else:
            self.resp_body_iv = hashlib.md5(self.req_body_iv).digest()
            self.resp_body_key = hashlib.md5(self.req_body_key).digest()

        self._write_sizes = ShakeSizeParser(self.req_body_iv)
        self._read_sizes = ShakeSizeParser(self.resp_body_iv)
        self._writer: Any = None
        self._reader: Any = None

    def auth(self) -> None:
        """Send the legacy auth: HMAC-MD5 of the UTC timestamp keyed by the UUID."""
        ts = struct.pack(">Q", int(time.time()) & 0xFFFFFFFFFFFFFFFF)
        self.rc.write(hmac.new(self.user.uuid, ts, hashlib.md5).digest())

    def request(self, cmd: CmdType) -> None:
        """Send the request header for ``cmd``."""
        padding_len = random.randrange(16)
        buf = bytearray()
        buf.append(1)
        buf += self.req_body_iv
        buf += self.req_body_key
        buf.append(self.req_resp_v)
        buf.append(self.opt)
        buf.append((padding_len << 4) | int(self.security))
        buf.append(0)
        buf.append(int(cmd))
        buf += struct.pack(">H", self.port)
        buf.append(int(self.atyp))
        buf += self.addr
        buf += os.urandom(padding_len)
        buf += struct.pack(">I", _fnv1a32(buf))

        if self.aead:
            self.rc.write(seal_aead_header(self.user.cmd_key, bytes(buf)))
            return

        iv = timestamp_hash(int(time.time()))
        encryptor = Cipher(algorithms.AES(self.user.cmd_key), modes.CFB(iv)).encryptor()
        self.rc.write(encryptor.update(bytes(buf)) + encryptor.finalize())

    def decode_resp_header(self) -> None:
        """Read and verify the response header; raise ``ValueError`` if it is wrong."""
        if self.aead:
            header = open_aead_header(self.resp_body_key, self.resp_body_iv, self.rc)
        else:
            decryptor = Cipher(
                algorithms.AES(self.resp_body_key), modes.CFB(self.resp_body_iv)
            ).decryptor()
            header = decryptor.update(_read_full(self.rc, 4))
        _check_resp_header(header, self.req_resp_v)

    def _body_cipher(self, key: bytes) -> Any:
        if self.security == Security.AES_128_GCM:
            return AESGCM(key)
        return ChaCha20Poly1305(_chacha_key(key))

    def _make_writer(self) -> Any:
        if not self.opt & OPT_CHUNK_STREAM:
            return self.rc
        if self.security == Security.NONE:
            return ChunkedWriter(self.rc, self._write_sizes)
        return AEADWriter(
            self.rc,
            self._body_cipher(self.req_body_key),
            self.req_body_iv,
            self._write_sizes,
        )

    def _make_reader(self) -> Any:
        if not self.opt & OPT_CHUNK_STREAM:
            return self.rc
        if self.security == Security.NONE:
            return ChunkedReader(self.rc, self._read_sizes)
        return AEADReader(
            self.rc,
            self._body_cipher(self.resp_body_key),
            self.resp_body_iv,
            self._read_sizes,
        )

    def write(self, data: bytes) -> int:
        """Write body data; return the number of bytes written."""
        if self._writer is None:
            self._writer = self._make_writer()
        n = self._writer.write(data)
        return len(data) if n is None else n

    def read(self, n: int) -> bytes:
        """Read up to ``n`` body bytes, checking the response header first."""
        if self._reader is None:
            self.decode_resp_header()
            self._reader = self._make_reader()
        return self._reader.read(n)


class PktConn:
    """Packet view of a VMess connection to a fixed target."""

    def __init__(self, conn: Conn, target: Any) -> None:
        self.conn = conn
        self.target = target

    def read_from(self, n: int) -> tuple[bytes, Any]:
        """Read a packet; return ``(data, target)``."""
        return self.conn.read(n), self.target

    def write_to(self, data: bytes, addr: Any) -> int:
        """Write a packet; ``addr`` is ignored, the target is fixed."""
        return self.conn.write(data)