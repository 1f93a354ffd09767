"""Wire format of remote modification times (MDTM / MFMT)."""

from datetime import datetime, timezone

WIRE_FORMAT = "%Y%m%d%H%M%S"


def format_modify_time(mtime_ms: float) -> str:
    """Format a millisecond timestamp as ``YYYYMMDDHHMMSS`` in UTC.

    Sub-second precision is truncated.

    >>> format_modify_time(1704067200000.0)
    '20240101000000'
    """
    seconds = int(mtime_ms // 1000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime(WIRE_FORMAT)


def parse_modify_time(value: str) -> int:
    """Parse an MDTM reply value into epoch seconds.

    Servers may append fractional seconds (``YYYYMMDDHHMMSS.sss``); the
    fraction is dropped.

    >>> parse_modify_time("20240101000000")
    1704067200
    """
    text = value.strip().split(".", 1)[0]
    if len(text) != 14 or not text.isdigit():
        raise ValueError(f"Invalid modify time: {value!r}")
    parsed = datetime.strptime(text, WIRE_FORMAT).replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
