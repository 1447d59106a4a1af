import io
import os

import pytest
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from relaykit.chunk import (
    CHUNK_SIZE,
    AEADReader,
    AEADWriter,
    ChunkedReader,
    ChunkedWriter,
    ShakeSizeParser,
)

NONCE = bytes(range(16))


def read_all(reader, n=4096):
    out = b""
    while True:
        data = reader.read(n)
        if not data:
            return out
        out += data


def test_shake_round_trip_many_sizes():
    enc = ShakeSizeParser(NONCE)
    dec = ShakeSizeParser(NONCE)
    sizes = [i * 37 % 65536 for i in range(2000)]
    assert [dec.decode(enc.encode(s)) for s in sizes] == sizes


def test_shake_mask_is_xor():
    a = ShakeSizeParser(NONCE).encode(0)
    b = ShakeSizeParser(NONCE).encode(0x1234)
    assert int.from_bytes(a, "big") ^ int.from_bytes(b, "big") == 0x1234
    assert len(a) == ShakeSizeParser.size_bytes


def test_shake_depends_on_nonce():
    first = [ShakeSizeParser(NONCE).encode(0) for _ in range(1)]
    other = ShakeSizeParser(bytes(16))
    seq_a = ShakeSizeParser(NONCE)
    assert [seq_a.encode(0) for _ in range(8)] != [other.encode(0) for _ in range(8)]
    assert first[0] == ShakeSizeParser(NONCE).encode(0)


def test_chunked_round_trip():
    payload = os.urandom(40000)
    out = io.BytesIO()
    assert ChunkedWriter(out, ShakeSizeParser(NONCE)).write(payload) == len(payload)
    chunks = -(-len(payload) // CHUNK_SIZE)
    assert len(out.getvalue()) == len(payload) + 2 * chunks
    reader = ChunkedReader(io.BytesIO(out.getvalue()), ShakeSizeParser(NONCE))
    assert read_all(reader) == payload


def test_chunked_empty_write_outputs_nothing():
    out = io.BytesIO()
    assert ChunkedWriter(out, ShakeSizeParser(NONCE)).write(b"") == 0
    assert out.getvalue() == b""


def test_chunked_zero_chunk_ends():
    enc = ShakeSizeParser(NONCE)
    data = enc.encode(3) + b"abc" + enc.encode(0) + enc.encode(2) + b"zz"
    reader = ChunkedReader(io.BytesIO(data), ShakeSizeParser(NONCE))
    assert reader.read(10) == b"abc"
    assert reader.read(10) == b""


def test_chunked_truncated_body():
    enc = ShakeSizeParser(NONCE)
    reader = ChunkedReader(io.BytesIO(enc.encode(10) + b"abc"), ShakeSizeParser(NONCE))
    assert reader.read(3) == b"abc"
    with pytest.raises(EOFError):
        reader.read(3)


def test_chunked_truncated_header():
    reader = ChunkedReader(io.BytesIO(b"\x01"), ShakeSizeParser(NONCE))
    with pytest.raises(EOFError):
        reader.read(3)


@pytest.mark.parametrize(
    "make",
    [lambda: AESGCM(bytes(range(16))), lambda: ChaCha20Poly1305(bytes(range(32)))],
)
def test_aead_round_trip(make):
    payload = os.urandom(50000)
    out = io.BytesIO()
    writer = AEADWriter(out, make(), NONCE, ShakeSizeParser(NONCE))
    assert writer.write(payload) == len(payload)
    chunks = -(-len(payload) // (CHUNK_SIZE - 16))
    assert len(out.getvalue()) == len(payload) + chunks * (2 + 16)
    reader = AEADReader(io.BytesIO(out.getvalue()), make(), NONCE, ShakeSizeParser(NONCE))
    assert read_all(reader, 1000) == payload


def test_aead_multiple_writes_keep_counter():
    key = bytes(range(16))
    out = io.BytesIO()
    writer = AEADWriter(out, AESGCM(key), NONCE, ShakeSizeParser(NONCE))
    writer.write(b"hello ")
    writer.write(b"world")
    reader = AEADReader(io.BytesIO(out.getvalue()), AESGCM(key), NONCE, ShakeSizeParser(NONCE))
    assert read_all(reader, 3) == b"hello world"


def test_aead_tampered_chunk():
    key = bytes(range(16))
    out = io.BytesIO()
    AEADWriter(out, AESGCM(key), NONCE, ShakeSizeParser(NONCE)).write(b"payload")
    data = bytearray(out.getvalue())
    data[-1] ^= 0xFF
    reader = AEADReader(io.BytesIO(bytes(data)), AESGCM(key), NONCE, ShakeSizeParser(NONCE))
    with pytest.raises(InvalidTag):
        reader.read(100)


def test_aead_small_size_ends_stream():
    enc = ShakeSizeParser(NONCE)
    data = enc.encode(16) + bytes(16)
    reader = AEADReader(io.BytesIO(data), AESGCM(bytes(16)), NONCE, ShakeSizeParser(NONCE))
    assert reader.read(100) == b""


def test_aead_truncated_chunk():
    key = bytes(range(16))
    out = io.BytesIO()
    AEADWriter(out, AESGCM(key), NONCE, ShakeSizeParser(NONCE)).write(b"payload")
    reader = AEADReader(
        io.BytesIO(out.getvalue()[:-4]), AESGCM(key), NONCE, ShakeSizeParser(NONCE)
    )
    with pytest.raises(EOFError):
        reader.read(100)