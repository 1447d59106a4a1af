"""Length-prefixed chunk streams used by VMess.

Each chunk is ``size (2 bytes, masked) | data``. With AEAD the data is the
sealed payload and the size includes the authentication tag.
"""

from __future__ import annotations

import hashlib
import struct
from typing import BinaryIO, Protocol

__all__ = [
    "CHUNK_SIZE",
    "ShakeSizeParser",
    "ChunkedWriter",
    "ChunkedReader",
    "AEADWriter",
    "AEADReader",
]

CHUNK_SIZE = 16 << 10


class SizeEncoder(Protocol):
    size_bytes: int

    def encode(self, size: int) -> bytes: ...


class SizeDecoder(Protocol):
    size_bytes: int

    def decode(self, data: bytes) -> int: ...


class AEADCipher(Protocol):
    def encrypt(self, nonce: bytes, data: bytes, associated_data: bytes | None) -> bytes: ...

    def decrypt(self, nonce: bytes, data: bytes, associated_data: bytes | None) -> bytes: ...


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def _read_header(stream: BinaryIO, n: int) -> bytes | None:
    """Read a chunk header; ``None`` at a clean end of stream."""
    first = stream.read(n)
    if not first:
        return None
    if len(first) < n:
        first += _read_full(stream, n - len(first))
    return first


class ShakeSizeParser:
    """Masks chunk sizes with a SHAKE-128 keystream seeded by a nonce."""

    size_bytes = 2

    def __init__(self, nonce: bytes) -> None:
        self._shake = hashlib.shake_128(bytes(nonce))
        self._stream = b""
        self._pos = 0

    def _next(self) -> int:
        if self._pos + 2 > len(self._stream):
            self._stream = self._shake.digest(max(256, len(self._stream) * 2))
        (mask,) = struct.unpack_from(">H", self._stream, self._pos)
        self._pos += 2
        return mask

    def encode(self, size: int) -> bytes:
        """Return the 2-byte masked encoding of ``size``."""
        return struct.pack(">H", (self._next() ^ size) & 0xFFFF)

    def decode(self, data: bytes) -> int:
        """Return the size held in the first 2 bytes of ``data``."""
        (size,) = struct.unpack_from(">H", data)
        return self._next() ^ size


class ChunkedWriter:
    """Writes data as plain size-prefixed chunks."""

    def __init__(self, writer: BinaryIO, encoder: SizeEncoder) -> None:
        self._writer = writer
        self._encoder = encoder

    def write(self, data: bytes) -> int:
        """Write ``data`` and return the number of payload bytes written."""
        view = memoryview(data)
        written = 0
        while written < len(view):
            piece = bytes(view[written : written + CHUNK_SIZE])
            self._writer.write(self._encoder.encode(len(piece)) + piece)
            written += len(piece)
        return written


class ChunkedReader:
    """Reads plain size-prefixed chunks.

    ``read`` returns ``b""`` at a zero-size chunk or at a clean end of stream
    and raises ``EOFError`` when the stream ends inside a chunk.
    """

    def __init__(self, reader: BinaryIO, decoder: SizeDecoder) -> None:
        self._reader = reader
        self._decoder = decoder
        self._left = 0

    def read(self, n: int) -> bytes:
        if self._left == 0:
            header = _read_header(self._reader, self._decoder.size_bytes)
            if header is None:
                return b""
            self._left = self._decoder.decode(header)
            if self._left == 0:
                return b""

        data = self._reader.read(min(n, self._left))
        if not data and n > 0:
            raise EOFError("stream ended inside a chunk")
        self._left -= len(data)
        return data


def _nonce(count: int, iv: bytes, nonce_size: int) -> bytes:
    return struct.pack(">H", count) + bytes(iv[2:nonce_size])


class AEADWriter:
    """Writes data as sealed size-prefixed chunks."""

    def __init__(
        self,
        writer: BinaryIO,
        aead: AEADCipher,
        iv: bytes,
        encoder: SizeEncoder,
        *,
        nonce_size: int = 12,
        overhead: int = 16,
    ) -> None:
        self._writer = writer
        self._aead = aead
        self._iv = bytes(iv)
        self._encoder = encoder
        self._nonce_size = nonce_size
        self._overhead = overhead
        self._count = 0

    def write(self, data: bytes) -> int:
        """Seal and write ``data``; return the number of payload bytes written."""
        view = memoryview(data)
        written = 0
        max_data = CHUNK_SIZE - self._overhead
        while written < len(view):
            piece = bytes(view[written : written + max_data])
            size = self._encoder.encode(len(piece) + self._overhead)
            nonce = _nonce(self._count, self._iv, self._nonce_size)
            sealed = self._aead.encrypt(nonce, piece, None)
            self._count = (self._count + 1) & 0xFFFF
            self._writer.write(size + sealed)
            written += len(piece)
        return written


class AEADReader:
    """Reads and opens sealed size-prefixed chunks.

    ``read`` returns ``b""`` at the end of the stream or at a chunk whose size
    is out of range; a chunk that fails authentication raises
    ``cryptography.exceptions.InvalidTag``.
    """

    def __init__(
        self,
        reader: BinaryIO,
        aead: AEADCipher,
        iv: bytes,
        decoder: SizeDecoder,
        *,
        nonce_size: int = 12,
        overhead: int = 16,
    ) -> None:
        self._reader = reader
        self._aead = aead
        self._iv = bytes(iv)
        self._decoder = decoder
        self._nonce_size = nonce_size
        self._overhead = overhead
        self._count = 0
        self._buf = b""

    def _read_chunk(self) -> bytes:
        header = _read_header(self._reader, self._decoder.size_bytes)
        if header is None:
            return b""
        size = self._decoder.decode(header)
        if size <= self._overhead or size > CHUNK_SIZE:
            return b""
        sealed = _read_full(self._reader, size)
        nonce = _nonce(self._count, self._iv, self._nonce_size)
        self._count = (self._count + 1) & 0xFFFF
        return self._aead.decrypt(nonce, sealed, None)

    def read(self, n: int) -> bytes:
        if not self._buf:
            self._buf = self._read_chunk()
            if not self._buf:
                return b""
        data, self._buf = self._buf[:n], self._buf[n:]
        return data