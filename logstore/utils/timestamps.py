# logstore/utils/timestamps.py
"""
Time helpers for the API and CLI boundary.

Stored `ts` values are float seconds since the epoch; users type either that
or an ISO 8601 timestamp.
"""

from __future__ import annotations

from datetime import timezone

from dateutil import parser as dtparser


def to_epoch(value: str) -> float:
    """
    Parse epoch seconds ("1635321600.5") or ISO 8601 ("2021-10-27T07:08:41Z").

    Naive ISO timestamps are taken as UTC.

    Raises:
        ValueError: if the value is neither.
    """
    text = (value or "").strip()
    if not text:
        raise ValueError("empty timestamp")
    try:
        return float(text)
    except ValueError:
        pass
    try:
        dt = dtparser.isoparse(text)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"invalid timestamp {value!r}: expected epoch seconds or ISO 8601") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()
