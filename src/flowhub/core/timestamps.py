"""RFC3339 timestamp parsing for Docker API and log output.

Docker reports nanosecond precision; datetime holds microseconds, so the
fraction is truncated before parsing.
"""

import re
from datetime import UTC, datetime

_FRACTION_RE = re.compile(r"\.(\d+)")
_ZERO_TIME_PREFIX = "0001-01-01"


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC3339 timestamp. Returns None for empty or zero values."""
    if not value or value.startswith(_ZERO_TIME_PREFIX):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
