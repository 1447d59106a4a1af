import io
import struct

import pytest

from relaykit.ws_frame import FrameReader, FrameWriter


def _read_all(reader, size):
    out = b""
    while True:
        piece = reader.read(size)
        if not piece:
            return out
        out += piece


def test_server_frame_wire_bytes():
    out = io.BytesIO()
    assert FrameWriter(out, server=True).write(b"hi") == 2
    assert out.getvalue() == b"\x82\x02hi"


def test_client_frame_header_and_mask_key():
    out = io.BytesIO()
    key = b"\x01\x02\x03\x04"
    assert FrameWriter(out, server=False, mask_key=key).write(b"hello") == 5
    raw = out.getvalue()
    assert raw[:2] == b"\x82\x85"
    assert raw[2:6] == key
    assert len(raw) == 11
    assert raw[6:] != b"hello"


def test_zero_mask_key_leaves_payload():
    out = io.BytesIO()
    FrameWriter(out, server=False, mask_key=bytes(4)).write(b"plain")
    assert out.getvalue()[6:] == b"plain"


def test_invalid_mask_key_length():
    with pytest.raises(ValueError):
        FrameWriter(io.BytesIO(), server=False, mask_key=b"\x01")


@pytest.mark.parametrize("length", [0, 1, 125, 126, 200, 65535, 65536, 70000])
def test_client_to_server_round_trip(length):
    data = bytes(i % 251 for i in range(length))
    out = io.BytesIO()
    FrameWriter(out, server=False).write(data)
    reader = FrameReader(io.BytesIO(out.getvalue()), server=True)
    assert reader.read(length + 10) == data


@pytest.mark.parametrize("length", [1, 125, 126, 65536])
def test_server_to_client_round_trip(length):
    data = bytes(i % 7 for i in range(length))
    out = io.BytesIO()
    FrameWriter(out, server=True).write(data)
    reader = FrameReader(io.BytesIO(out.getvalue()), server=False)
    assert reader.read(length) == data


def test_extended_16bit_length_field():
    out = io.BytesIO()
    FrameWriter(out, server=True).write(b"x" * 200)
    raw = out.getvalue()
    assert raw[1] & 0x7F == 126
    assert raw[2:4] == struct.pack(">H", 200)


def test_extended_64bit_length_field():
    out = io.BytesIO()
    FrameWriter(out, server=True).write(b"x" * 65536)
    raw = out.getvalue()
    assert raw[1] & 0x7F == 127
    assert raw[2:10] == struct.pack(">Q", 65536)


def test_partial_reads_keep_mask_offset():
    data = b"the quick brown fox jumps"
    out = io.BytesIO()
    FrameWriter(out, server=False, mask_key=b"\xaa\xbb\xcc\xdd").write(data)
    reader = FrameReader(io.BytesIO(out.getvalue()), server=True)
    assert _read_all(reader, 3) == data


def test_multiple_frames_in_sequence():
    out = io.BytesIO()
    writer = FrameWriter(out, server=False)
    writer.write(b"first")
    writer.write(b"second")
    reader = FrameReader(io.BytesIO(out.getvalue()), server=True)
    assert reader.read(100) == b"first"
    assert reader.read(100) == b"second"
    assert reader.read(100) == b""


def test_truncated_frame_raises():
    out = io.BytesIO()
    FrameWriter(out, server=True).write(b"abcdef")
    reader = FrameReader(io.BytesIO(out.getvalue()[:5]), server=False)
    with pytest.raises(EOFError):
        reader.read(10)


def test_empty_stream_reads_empty():
    assert FrameReader(io.BytesIO(b""), server=False).read(10) == b""