from __future__ import annotations

from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_iso8601_to_ms(s: str) -> int:
    """
    Accepts the timestamp strings stores hand back, e.g.:
      - 2024-01-01T00:00:00Z
      - 2024-01-01T00:00:00.000Z
      - 2024-01-01T00:00:00+00:00
      - 2024-01-01T00:00:00 (assumed UTC)
    Returns epoch ms.
    """
    ss = s.strip()
    if ss.endswith("Z"):
        ss = ss[:-1] + "+00:00"

    dt = datetime.fromisoformat(ss)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)

    return (dt - _EPOCH) // timedelta(milliseconds=1)


def ms_to_datetime(ts_ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(ts_ms))


def ms_to_iso8601_z(ts_ms: int) -> str:
    """
    Epoch ms -> fixed-width ISO8601 Zulu string with millisecond precision,
    e.g. 1704067200000 -> "2024-01-01T00:00:00.000Z".

    Fixed width keeps lexicographic order equal to time order.
    """
    return ms_to_datetime(ts_ms).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def datetime_to_iso8601_z(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_ms() -> int:
    return (datetime.now(tz=timezone.utc) - _EPOCH) // timedelta(milliseconds=1)
