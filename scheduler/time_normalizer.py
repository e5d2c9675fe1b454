"""Conversion between civil times, timezones and absolute UTC instants."""
import logging
from datetime import datetime, timezone, tzinfo
from typing import Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser

from scheduler.errors import (
    EndNotAfterStart,
    InvalidRequest,
    InvalidTimezone,
    NotUTCEncoded,
)

logger = logging.getLogger(__name__)

LOCAL_FORMAT = '%Y-%m-%d %H:%M:%S'

TimeZoneLike = Union[str, tzinfo]


def resolve_timezone(time_zone: TimeZoneLike) -> tzinfo:
    """
    Resolve an IANA timezone identifier.

    Args:
        time_zone: Identifier such as 'Asia/Kolkata', or an existing tzinfo

    Returns:
        tzinfo for the zone

    Raises:
        InvalidTimezone: If the identifier is empty, malformed or unknown
    """
    if isinstance(time_zone, tzinfo):
        return time_zone
    if not isinstance(time_zone, str) or not time_zone.strip():
        raise InvalidTimezone(time_zone)

    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        logger.debug(f"Unknown time zone '{time_zone}': {e}")
        raise InvalidTimezone(time_zone) from e


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_utc(instant: datetime) -> str:
    """
    Serialize an aware datetime as YYYY-MM-DDTHH:MM:SS.mmmZ.

    Args:
        instant: Timezone-aware datetime

    Returns:
        UTC string with millisecond precision
    """
    if instant.tzinfo is None:
        raise ValueError(f"Cannot serialize naive datetime {instant!r}")

    utc = instant.astimezone(timezone.utc)
    return (
        f"{utc.year:04d}-{utc.month:02d}-{utc.day:02d}"
        f"T{utc.hour:02d}:{utc.minute:02d}:{utc.second:02d}"
        f".{utc.microsecond // 1000:03d}Z"
    )


def parse_utc(value: str) -> datetime:
    """Parse a stored UTC string; naive values are taken as UTC."""
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_utc_encoded(value) -> bool:
    """
    Check that a value is an ISO-8601 UTC string in canonical form.

    The value must survive a parse/serialize round trip unchanged, so
    '2024-11-06T06:15:00.000Z' passes while '2024-11-06T11:45:00+05:30',
    '2024-11-06T06:15:00Z' and naive strings do not.
    """
    if not isinstance(value, str):
        return False

    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return False

    if parsed.tzinfo is None:
        return False
    return format_utc(parsed) == value


def ensure_utc_encoded(value, field_name: str) -> datetime:
    """
    Validate and parse a caller-supplied UTC instant.

    Raises:
        NotUTCEncoded: If the value is not canonical UTC
    """
    if not is_utc_encoded(value):
        raise NotUTCEncoded(field_name, value)
    return parse_utc(value)


def render_local(instant: datetime, time_zone: TimeZoneLike) -> str:
    """Render an instant as civil time in the given zone."""
    return instant.astimezone(resolve_timezone(time_zone)).strftime(LOCAL_FORMAT)


def normalize(
    value: Union[str, datetime],
    time_zone: TimeZoneLike,
    field_name: str = 'time'
) -> Tuple[datetime, str]:
    """
    Convert a date-time in a timezone to a UTC instant and local string.

    Values carrying an offset keep their instant. Values without one are
    civil time in ``time_zone``.

    Args:
        value: ISO-8601 string or datetime
        time_zone: IANA identifier or tzinfo
        field_name: Field name used in error details

    Returns:
        Tuple of (UTC datetime, 'YYYY-MM-DD HH:MM:SS' in time_zone)

    Raises:
        InvalidTimezone: If the zone does not resolve
        InvalidRequest: If the value cannot be parsed
    """
    tz = resolve_timezone(time_zone)

    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = date_parser.isoparse(value)
        except (ValueError, OverflowError, TypeError) as e:
            raise InvalidRequest(
                f"Invalid {field_name} format",
                field=field_name,
                value=value
            ) from e

    if parsed.tzinfo is None:
        local = parsed.replace(tzinfo=tz)
    else:
        local = parsed.astimezone(tz)

    return local.astimezone(timezone.utc), local.strftime(LOCAL_FORMAT)


def ensure_end_after_start(start: datetime, end: datetime) -> None:
    """
    Raises:
        EndNotAfterStart: Unless end is strictly later than start
    """
    if not end > start:
        raise EndNotAfterStart(format_utc(start), format_utc(end))
