"""
Time helpers for upstream epoch values and Discord timestamp markup.

Usage:
    from worldstate_bot.time_utils import now, parse_epoch_ms

    activation = parse_epoch_ms(mission["Activation"])
    if activation <= now():
        ...

The worldState document reports instants as millisecond epochs wrapped in
strings, usually nested in Mongo-style ``{"$date": {"$numberLong": "..."}}``
objects. The arbitration schedule uses plain epoch seconds.
"""

from datetime import datetime, timezone
from typing import Any


def now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _unwrap(value: Any) -> Any:
    # {"$date": {"$numberLong": "1700000000000"}} -> "1700000000000"
    while isinstance(value, dict):
        if "$date" in value:
            value = value["$date"]
        elif "$numberLong" in value:
            value = value["$numberLong"]
        else:
            raise ValueError(f"unrecognised epoch wrapper keys={sorted(value)}")
    return value


def parse_epoch_ms(value: Any) -> datetime:
    """
    Parse a millisecond epoch (int, numeric string or Mongo wrapper).

    Raises:
        ValueError: if the value is missing, not an integer or out of range.
    """
    raw = _unwrap(value)
    if raw is None or isinstance(raw, bool):
        raise ValueError(f"invalid epoch value {value!r}")
    if isinstance(raw, str):
        raw = raw.strip()
    try:
        return datetime.fromtimestamp(int(raw) / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"epoch out of range {value!r}") from e


def from_epoch_seconds(seconds: int) -> datetime:
    try:
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"epoch out of range {seconds!r}") from e


def discord_timestamp(dt: datetime, style: str = "R") -> str:
    """Discord ``<t:epoch:style>`` markup (``R`` renders as "in 2 hours")."""
    return f"<t:{int(dt.timestamp())}:{style}>"
