"""WebSocket binary frames (RFC 6455, section 5.2).

Writers send every write as one final binary frame. Client writers mask
the payload; server readers unmask it.
"""

from __future__ import annotations

import os
import struct
from typing import BinaryIO, Optional

__all__ = ["FrameWriter", "FrameReader"]

_FINAL_BIT = 0x80
_OPCODE_BINARY = 0x02
_MASK_BIT = 0x80


def _read_full(stream: BinaryIO, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = stream.read(n - len(data))
        if not chunk:
            raise EOFError(f"expected {n} bytes, got {len(data)}")
        data += chunk
    return data


def _apply_mask(data: bytes, key: bytes, offset: int = 0) -> bytes:
    if not data:
        return b""
    rotated = key[offset % 4 :] + key[: offset % 4]
    stream = (rotated * (len(data) // 4 + 1))[: len(data)]
    return (int.from_bytes(data, "big") ^ int.from_bytes(stream, "big")).to_bytes(
        len(data), "big"
    )


class FrameWriter:
    """Writes data as WebSocket binary frames."""

    def __init__(
        self, writer: BinaryIO, server: bool, mask_key: Optional[bytes] = None
    ) -> None:
        self._writer = writer
        self._server = server
        self._mask_key = bytes(mask_key) if mask_key is not None else os.urandom(4)
        if len(self._mask_key) != 4:
            raise ValueError("mask key must be 4 bytes")

    def write(self, data: bytes) -> int:
        """Write ``data`` as one frame; return the number of payload bytes."""
        data = bytes(data)
        length = len(data)
        second = 0 if self._server else _MASK_BIT
        if length <= 125:
            header = bytes([_OPCODE_BINARY | _FINAL_BIT, second | length])
        elif length < 65536:
            header = bytes([_OPCODE_BINARY | _FINAL_BIT, second | 126]) + struct.pack(
                ">H", length
            )
        else:
            header = bytes([_OPCODE_BINARY | _FINAL_BIT, second | 127]) + struct.pack(
                ">Q", length
            )

        if self._server:
            self._writer.write(header + data)
        else:
            self._writer.write(
                header + self._mask_key + _apply_mask(data, self._mask_key)
            )
        return length


class FrameReader:
    """Reads WebSocket frame payloads.

    A server reader expects a masking key after each header. ``read`` returns
    ``b""`` at a clean end of stream and raises ``EOFError`` inside a frame.
    """

    def __init__(self, reader: BinaryIO, server: bool) -> None:
        self._reader = reader
        self._server = server
        self._left = 0
        self._mask_key = b"\0\0\0\0"
        self._mask_offset = 0

    def _read_header(self) -> bool:
        first = self._reader.read(2)
        if not first:
            return False
        if len(first) < 2:
            first += _read_full(self._reader, 2 - len(first))

        left = first[1] & 0x7F
        if left == 126:
            (left,) = struct.unpack(">H", _read_full(self._reader, 2))
        elif left == 127:
            (left,) = struct.unpack(">Q", _read_full(self._reader, 8))
        self._left = left

        if self._server:
            self._mask_key = _read_full(self._reader, 4)
            self._mask_offset = 0
        return True

    def read(self, n: int) -> bytes:
        if self._left == 0 and not self._read_header():
            return b""

        data = _read_full(self._reader, min(n, self._left))
        if self._server:
            data = _apply_mask(data, self._mask_key, self._mask_offset)
            self._mask_offset = (self._mask_offset + len(data)) % 4
        self._left -= len(data)
        return data