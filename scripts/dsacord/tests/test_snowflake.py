"""Tests for composite platform identifier decoding."""
from datetime import datetime, timezone

import pytest

from dsacord.config import ZERO_TIME
from dsacord.snowflake import decode_platform_uid, parse_int64, snowflake_to_time

PLATFORM_EPOCH = datetime(2015, 1, 1, tzinfo=timezone.utc)


def test_decodes_known_snowflake():
    decoded = decode_platform_uid("175928847299117063-1098765-message")

    assert decoded.snowflake_time == datetime(2016, 4, 30, 11, 18, 25, 796000, tzinfo=timezone.utc)
    assert decoded.entity_id == "1098765"
    assert decoded.entity_type == "message"


def test_zero_snowflake_is_platform_epoch():
    assert decode_platform_uid("0-1-user").snowflake_time == PLATFORM_EPOCH


@pytest.mark.parametrize("value", [0, 1, 4194304, 175928847299117063, 2 ** 63 - 1])
def test_non_negative_snowflakes_never_precede_epoch(value):
    decoded = decode_platform_uid(f"{value}-abc-guild")

    assert decoded.snowflake_time >= PLATFORM_EPOCH
    assert (decoded.entity_id, decoded.entity_type) == ("abc", "guild")


def test_extra_segments_are_ignored():
    decoded = decode_platform_uid("175928847299117063-42-message-attachment-9")

    assert decoded.entity_id == "42"
    assert decoded.entity_type == "message"


@pytest.mark.parametrize("value", ["", "175928847299117063", "175928847299117063-42"])
def test_fewer_than_three_segments_gives_defaults(value):
    assert decode_platform_uid(value) == (ZERO_TIME, "", "")


@pytest.mark.parametrize("prefix", ["abc", "", "12.5", "9223372036854775808", " 12"])
def test_unparsable_snowflake_keeps_id_and_type(prefix):
    decoded = decode_platform_uid(f"{prefix}-42-user")

    assert decoded.snowflake_time == ZERO_TIME
    assert decoded.entity_id == "42"
    assert decoded.entity_type == "user"


def test_parse_int64_bounds():
    assert parse_int64("9223372036854775807") == 2 ** 63 - 1
    assert parse_int64("-9223372036854775808") == -(2 ** 63)
    assert parse_int64("+17") == 17
    assert parse_int64("1_000") is None
    assert parse_int64("-9223372036854775809") is None


def test_snowflake_time_uses_timestamp_bits_only():
    low_bits = (1 << 22) - 1

    assert snowflake_to_time(5 << 22) == snowflake_to_time((5 << 22) | low_bits)
