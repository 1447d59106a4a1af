from datetime import datetime, timedelta, timezone

import pytest

from relaykit.vmess_user import (
    User,
    get_key,
    new_user,
    str_to_uuid,
    timestamp_hash,
)

UUID_TEXT = "b831381d-6324-4d53-ad4f-8cda48b30811"


def test_str_to_uuid_hex_form():
    assert str_to_uuid(UUID_TEXT) == bytes.fromhex(UUID_TEXT.replace("-", ""))


def test_str_to_uuid_without_dashes():
    assert str_to_uuid(UUID_TEXT.replace("-", "")) == str_to_uuid(UUID_TEXT)


def test_str_to_uuid_short_name_sets_version_bits():
    u = str_to_uuid("alice")
    assert len(u) == 16
    assert u[6] >> 4 == 5
    assert u[8] >> 6 == 2
    assert str_to_uuid("alice") == u
    assert str_to_uuid("bob") != u


@pytest.mark.parametrize("bad", ["x" * 31, "z" * 32, "", "ab cd" * 7])
def test_str_to_uuid_invalid(bad):
    with pytest.raises(ValueError):
        str_to_uuid(bad)


def test_new_user_key():
    uuid = str_to_uuid(UUID_TEXT)
    user = new_user(uuid)
    assert user.uuid == uuid
    assert user.cmd_key == get_key(uuid)
    assert len(user.cmd_key) == 16
    assert get_key(uuid) != get_key(str_to_uuid("alice"))


def test_gen_alter_id_users():
    user = new_user(str_to_uuid(UUID_TEXT))
    alters = user.gen_alter_id_users(3)
    assert len(alters) == 3
    assert all(isinstance(a, User) for a in alters)
    assert all(a.cmd_key == user.cmd_key for a in alters)
    ids = {a.uuid for a in alters} | {user.uuid}
    assert len(ids) == 4
    assert user.gen_alter_id_users(2) == alters[:2]


def test_gen_alter_id_users_chain():
    user = new_user(str_to_uuid(UUID_TEXT))
    alters = user.gen_alter_id_users(2)
    second = User(alters[0].uuid, user.cmd_key).gen_alter_id_users(1)
    assert second == alters[1:]


def test_gen_alter_id_users_zero():
    assert new_user(str_to_uuid(UUID_TEXT)).gen_alter_id_users(0) == []


def test_timestamp_hash_datetime_and_seconds_agree():
    moment = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert timestamp_hash(moment) == timestamp_hash(int(moment.timestamp()))
    assert len(timestamp_hash(moment)) == 16


def test_timestamp_hash_naive_is_utc():
    aware = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert timestamp_hash(aware.replace(tzinfo=None)) == timestamp_hash(aware)


def test_timestamp_hash_other_timezone_same_instant():
    aware = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    shifted = aware.astimezone(timezone(timedelta(hours=8)))
    assert timestamp_hash(shifted) == timestamp_hash(aware)


def test_timestamp_hash_second_resolution():
    base = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert timestamp_hash(base) == timestamp_hash(base + timedelta(milliseconds=500))
    assert timestamp_hash(base) != timestamp_hash(base + timedelta(seconds=1))