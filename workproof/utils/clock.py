"""Clock utility for testability."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return current UTC time. Override in tests."""
    return datetime.now(UTC)


def to_iso_z(value: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with milliseconds and a trailing Z."""
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Current UTC time in the format stored on evidence and audit packs."""
    return to_iso_z(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z. Naive values are UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
