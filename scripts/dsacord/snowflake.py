"""
Decoder for the composite platform identifier `<snowflake>-<entity id>-<entity type>`.

The snowflake keeps milliseconds since the platform epoch in its bits above 22.
"""
import re
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from .config import EPOCH_OFFSET_MS, ZERO_TIME

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=ZERO_TIME.tzinfo)
_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1
_SIGNED_DIGITS = re.compile(r"[+-]?[0-9]+")


class PlatformUID(NamedTuple):
    """Parts derived from a composite platform identifier."""
    snowflake_time: datetime
    entity_id: str
    entity_type: str


def snowflake_to_time(value: int) -> datetime:
    """Convert a snowflake to the UTC instant encoded in its timestamp bits."""
    return _UNIX_EPOCH + timedelta(milliseconds=(value >> 22) + EPOCH_OFFSET_MS)


def parse_int64(text: str) -> Optional[int]:
    """Parse a signed 64-bit decimal integer, returning None when it is not one."""
    if not _SIGNED_DIGITS.fullmatch(text):
        return None
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        return None
    return value


def decode_platform_uid(platform_uid: str) -> PlatformUID:
    """
    Split a composite identifier into snowflake time, entity id and entity type.

    Never raises: fewer than three '-' separated segments gives
    (ZERO_TIME, "", ""); an unparsable snowflake keeps the id and type
    but falls back to ZERO_TIME. Segments after the third are ignored.
    """
    parts = platform_uid.split("-")
    if len(parts) < 3:
        return PlatformUID(ZERO_TIME, "", "")

    entity_id, entity_type = parts[1], parts[2]
    value = parse_int64(parts[0])
    if value is None:
        return PlatformUID(ZERO_TIME, entity_id, entity_type)
    return PlatformUID(snowflake_to_time(value), entity_id, entity_type)
