from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


# All timestamps are stored as naive UTC; conversion happens only at the edges.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a report/filter bound into naive UTC.

    Accepts a bare date ("2026-03-01", read as midnight UTC), a naive
    datetime (read as UTC), or an offset/Z-suffixed datetime (converted).
    Blank input means "no bound".
    """
    text = (value or "").strip()
    if not text:
        return None

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00") if text.endswith("Z") else text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize for to_dict(): whole seconds, trailing 'Z'."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def date_stamp(dt: datetime) -> str:
    """Compact business date used in Z-report numbers (YYYYMMDD)."""
    return dt.strftime("%Y%m%d")
