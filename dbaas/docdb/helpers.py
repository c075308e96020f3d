"""Identifier and timestamp helpers shared by every component."""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone

UNIQUE = "unique()"
ID_MAX_LENGTH = 36

_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,35}$")


class ID:
    """Document and schema identifier helpers."""

    @staticmethod
    def unique(padding: int = 7) -> str:
        """Generate a unique identifier.

        The id is a hex timestamp (microseconds) followed by random hex
        padding, so ids generated by one process sort by creation time.
        """
        now = datetime.now(timezone.utc)
        stamp = format(int(now.timestamp() * 1_000_000), "x")
        return stamp + secrets.token_hex(padding)[:padding]

    @staticmethod
    def is_valid(value: object) -> bool:
        return isinstance(value, str) and bool(_ID_PATTERN.match(value))


def now() -> str:
    """Current UTC time in the stored datetime format."""
    return format_datetime(datetime.now(timezone.utc))


def format_datetime(value: datetime) -> str:
    """Format an aware or naive (assumed UTC) datetime for storage."""
    # UTC, millisecond precision, four-digit year so strings sort by time.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="milliseconds")


def parse_datetime(value: str) -> datetime:
    """Parse a stored or ISO-8601 datetime string.

    Raises:
        ValueError: If the string is not a recognizable datetime
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid datetime: {value!r}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_datetime(value: str) -> str:
    """Normalize any accepted datetime string to the stored format."""
    return format_datetime(parse_datetime(value))
