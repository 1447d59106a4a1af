"""VMess users and UUID handling."""

from __future__ import annotations

import hashlib
import math
import re
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

__all__ = [
    "User",
    "new_user",
    "str_to_uuid",
    "get_key",
    "timestamp_hash",
]

_KEY_SALT = b"c48619fe-8f02-49e0-b9e9-edf763e17e21"
_ALTER_ID_SALT = b"16167dc8-16b6-4e6d-b8bb-65dd68113a81"
_ALTER_ID_RETRY_SALT = b"533eff8a-4113-4b10-b5ce-0f5d76b98cd2"

_HEX_UUID_RE = re.compile(r"[0-9a-fA-F]{32}")


@dataclass(frozen=True)
class User:
    """A VMess user: its 16-byte id and command key."""

    uuid: bytes
    cmd_key: bytes

    def gen_alter_id_users(self, alter_id: int) -> list[User]:
        """Generate ``alter_id`` users sharing this user's command key."""
        users = []
        prev = self.uuid
        for _ in range(alter_id):
            prev = _next_id(prev)
            users.append(User(uuid=prev, cmd_key=self.cmd_key))
        return users


def new_user(uuid: bytes) -> User:
    """Return a user for ``uuid`` with its derived command key."""
    uuid = bytes(uuid)
    return User(uuid=uuid, cmd_key=get_key(uuid))


def _next_id(old_id: bytes) -> bytes:
    h = hashlib.md5()
    h.update(old_id)
    h.update(_ALTER_ID_SALT)
    while True:
        new_id = h.digest()
        if new_id != old_id:
            return new_id
        h.update(_ALTER_ID_RETRY_SALT)


def str_to_uuid(s: str) -> bytes:
    """Convert a UUID string, or a short name of 1 to 30 bytes, to 16 bytes.

    Short names are mapped to a name-based (version 5) UUID.
    """
    raw = s.encode()
    if 1 <= len(raw) <= 30:
        digest = bytearray(hashlib.sha1(bytes(16) + raw).digest()[:16])
        digest[6] = (digest[6] & 0x0F) | (5 << 4)
        digest[8] = (digest[8] & 0x3F) | (0x02 << 6)
        return bytes(digest)

    compact = s.replace("-", "")
    if not _HEX_UUID_RE.fullmatch(compact):
        raise ValueError(f"invalid UUID: {s}")
    return bytes.fromhex(compact)


def get_key(uuid: bytes) -> bytes:
    """Return the AES-128-CFB command key for ``uuid``."""
    return hashlib.md5(bytes(uuid) + _KEY_SALT).digest()


def _unix_seconds(t: Union[datetime, int, float]) -> int:
    if isinstance(t, datetime):
        if t.tzinfo is None:
            t = t.replace(tzinfo=timezone.utc)
        return math.floor(t.timestamp())
    return math.floor(t)


def timestamp_hash(t: Union[datetime, int, float]) -> bytes:
    """Return the AES-128-CFB IV for time ``t``: MD5 of the timestamp four times.

    ``t`` is a datetime (naive values are taken as UTC) or Unix seconds.
    """
    ts = struct.pack(">Q", _unix_seconds(t) & 0xFFFFFFFFFFFFFFFF)
    return hashlib.md5(ts * 4).digest()