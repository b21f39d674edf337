"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def parse_iso_timestamp(value: object) -> datetime:
    """Parse an ISO-8601 provider timestamp, falling back to now.

    A trailing "Z" is accepted. Naive values are taken as UTC. Anything
    unparseable (None, wrong type, garbage) yields utc_now().
    """
    if not isinstance(value, str) or not value.strip():
        return utc_now()
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return utc_now()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_fr_date(value: date | datetime | None) -> str:
    """Format a date as DD/MM/YYYY (empty string for None)."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")
