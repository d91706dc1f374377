"""provenance.core.time

Timestamps in the ledger are aware UTC datetimes, stored and hashed as the
string `dt_to_iso` produces. Changing that format changes every event digest.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_dt(value: str) -> datetime:
    """ISO-8601 string to aware UTC datetime.

    Takes a `Z` suffix, an explicit offset, or no zone at all (read as UTC).

    Raises:
        ValueError: not ISO-8601.
    """

    v = value.strip()
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    dt = datetime.fromisoformat(v)
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def dt_to_iso(dt: datetime | None) -> str | None:
    """Canonical form: UTC, microsecond precision kept, `+00:00` offset."""

    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()
