"""
Shared duration utilities.

Every raw ``duration_seconds`` value read from the production log passes
through :func:`sanitize` before it is summed anywhere. An upstream clock
defect occasionally records decades-long stage durations; anything above
:data:`MAX_PLAUSIBLE_SECONDS` is treated as corrupt and counted as zero.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional, Union

from src.core.store import UNKNOWN_STAGE

# 90 days
MAX_PLAUSIBLE_SECONDS = 7_776_000

Number = Union[int, float]


def _to_number(raw: Any) -> Optional[Number]:
    """Coerce a numeric-like value, returning None when it is not a finite number."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = raw
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            return None
        if value.is_integer():
            value = int(value)
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def sanitize(raw_seconds: Any) -> Number:
    """
    Return a usable stage duration in seconds.

    Parameters
    ----------
    raw_seconds : Any
        Recorded duration; may be None, zero, negative, a numeric string or
        an implausibly large value

    Returns
    -------
    int or float
        0 for missing, non-positive, non-numeric or corrupt (> 90 days)
        input; otherwise the input unchanged. Corrupt values are zeroed
        rather than clamped to the ceiling.
    """
    value = _to_number(raw_seconds)
    if value is None or value <= 0:
        return 0
    if value > MAX_PLAUSIBLE_SECONDS:
        return 0
    return value


def is_corrupt(raw_seconds: Any) -> bool:
    """True when ``raw_seconds`` exceeds the plausibility ceiling."""
    value = _to_number(raw_seconds)
    return value is not None and value > MAX_PLAUSIBLE_SECONDS


def resolve_stage_label(
    previous_stage: Optional[str], new_stage: Optional[str]
) -> str:
    """
    Resolve the stage an event's duration belongs to.

    Precedence: ``previous_stage`` (the stage just exited), then
    ``new_stage``, then ``"Unknown"``. Blank names are skipped and the
    result is stripped of surrounding whitespace.
    """
    for candidate in (previous_stage, new_stage):
        if candidate is not None and str(candidate).strip():
            return str(candidate).strip()
    return UNKNOWN_STAGE


def format_duration(seconds: Optional[Number]) -> str:
    """
    Format seconds as a short human-readable duration.

    Examples
    --------
    >>> format_duration(3725)
    '1h 2m'
    >>> format_duration(0)
    '0m'
    """
    if not seconds or seconds <= 0:
        return "0m"
    if seconds < 60:
        return "<1m"

    seconds = int(seconds)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0 or not parts:
        parts.append(f"{minutes}m")
    return " ".join(parts)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime to a timezone-aware UTC datetime."""
    if not value:
        return None

    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None

    if ts.tzinfo is None:
        # The log store writes UTC without an offset
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def calculate_total_time(start: Any, end: Any) -> str:
    """Elapsed time between two timestamps, formatted; '---' when either is missing."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return "---"
    return format_duration(math.floor((end_dt - start_dt).total_seconds()))
