"""UTC timestamp helpers.

Timestamps are stored as naive UTC ISO-8601 strings, matching the column
layout used by every model.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp, returning None when it is missing or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def epoch_seconds(moment: datetime) -> int:
    """Whole seconds since the Unix epoch; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp())
