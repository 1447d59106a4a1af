"""VMess AEAD header sealing and key derivation."""

from __future__ import annotations

import functools
import hashlib
import os
import struct
import time
import zlib
from typing import BinaryIO, Callable, Union

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

__all__ = [
    "AUTH_ID_ENCRYPTION_KEY",
    "RESP_HEADER_LEN_KEY",
    "RESP_HEADER_LEN_IV",
    "RESP_HEADER_PAYLOAD_KEY",
    "RESP_HEADER_PAYLOAD_IV",
    "VMESS_AEAD_KDF",
    "HEADER_PAYLOAD_KEY",
    "HEADER_PAYLOAD_IV",
    "HEADER_LENGTH_KEY",
    "HEADER_LENGTH_IV",
    "kdf",
    "create_auth_id",
    "seal_aead_header",
    "open_aead_header",
]

AUTH_ID_ENCRYPTION_KEY = "AES Auth ID Encryption"
RESP_HEADER_LEN_KEY = "AEAD Resp Header Len Key"
RESP_HEADER_LEN_IV = "AEAD Resp Header Len IV"
RESP_HEADER_PAYLOAD_KEY = "AEAD Resp Header Key"
RESP_HEADER_PAYLOAD_IV = "AEAD Resp Header IV"
VMESS_AEAD_KDF = "VMess AEAD KDF"
HEADER_PAYLOAD_KEY = "VMess Header AEAD Key"
HEADER_PAYLOAD_IV = "VMess Header AEAD Nonce"
HEADER_LENGTH_KEY = "VMess Header AEAD Key_Length"
HEADER_LENGTH_IV = "VMess Header AEAD Nonce_Length"

_BLOCK_SIZE = 64


class _Hmac:
    """HMAC over an arbitrary hash factory, so HMACs can be nested."""

    block_size = _BLOCK_SIZE
    digest_size = 32

    def __init__(self, factory: Callable[[], object], key: bytes) -> None:
        self._factory = factory
        if len(key) > _BLOCK_SIZE:
            h = factory()
            h.update(key)
            key = h.digest()
        key = key.ljust(_BLOCK_SIZE, b"\0")
        self._inner = factory()
        self._inner.update(bytes(b ^ 0x36 for b in key))
        self._outer_key = bytes(b ^ 0x5C for b in key)

    def update(self, data: bytes) -> None:
        self._inner.update(data)

    def digest(self) -> bytes:
        outer = self._factory()
        outer.update(self._outer_key)
        outer.update(self._inner.digest())
        return outer.digest()


def _as_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode() if isinstance(value, str) else bytes(value)


def kdf(key: bytes, *args: Union[str, bytes]) -> bytes:
    """Derive 32 bytes from ``key`` through HMACs nested along ``args``."""
    factory: Callable[[], object] = functools.partial(
        _Hmac, hashlib.sha256, VMESS_AEAD_KDF.encode()
    )
    for value in args:
        factory = functools.partial(_Hmac, factory, _as_bytes(value))
    h = factory()
    h.update(bytes(key))
    return h.digest()


def create_auth_id(cmd_key: bytes, timestamp: int) -> bytes:
    """Return the 16-byte encrypted auth id for ``timestamp``."""
    buf = struct.pack(">q", timestamp) + os.urandom(4)
    buf += struct.pack(">I", zlib.crc32(buf))
    key = kdf(cmd_key, AUTH_ID_ENCRYPTION_KEY)[:16]
    encryptor = Cipher(algorithms.AES(key), modes.ECB()).encryptor()
    return encryptor.update(buf) + encryptor.finalize()


def seal_aead_header(key: bytes, data: bytes) -> bytes:
    """Seal a request header: auth id, sealed length, nonce, sealed payload."""
    auth_id = create_auth_id(key, int(time.time()))
    nonce = os.urandom(8)

    length_key = kdf(key, HEADER_LENGTH_KEY, auth_id, nonce)[:16]
    length_iv = kdf(key, HEADER_LENGTH_IV, auth_id, nonce)[:12]
    sealed_length = AESGCM(length_key).encrypt(
        length_iv, struct.pack(">H", len(data) & 0xFFFF), auth_id
    )

    payload_key = kdf(key, HEADER_PAYLOAD_KEY, auth_id, nonce)[:16]
    payload_iv = kdf(key, HEADER_PAYLOAD_IV, auth_id, nonce)[:12]
    sealed_payload = AESGCM(payload_key).encrypt(payload_iv, bytes(data), auth_id)

    return auth_id + sealed_length + nonce + sealed_payload


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def open_aead_header(key: bytes, iv: bytes, stream: BinaryIO) -> bytes:
    """Read and open a sealed response header from ``stream``.

    Raises ``EOFError`` on a short stream and
    ``cryptography.exceptions.InvalidTag`` when authentication fails.
    """
    length_key = kdf(key, RESP_HEADER_LEN_KEY)[:16]
    length_iv = kdf(iv, RESP_HEADER_LEN_IV)[:12]
    sealed_length = _read_full(stream, 18)
    (length,) = struct.unpack(
        ">H", AESGCM(length_key).decrypt(length_iv, sealed_length, None)
    )

    payload_key = kdf(key, RESP_HEADER_PAYLOAD_KEY)[:16]
    payload_iv = kdf(iv, RESP_HEADER_PAYLOAD_IV)[:12]
    sealed_payload = _read_full(stream, length + 16)
    return AESGCM(payload_key).decrypt(payload_iv, sealed_payload, None)