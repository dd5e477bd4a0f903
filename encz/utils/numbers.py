import math
import re
from datetime import timedelta
from typing import Optional

BYTES_PER_MB = 1048576

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|h|m|s)")

_DURATION_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def round_to(value: float, digits: int) -> float:
    """Round half away from zero to `digits` decimals (negative digits leave value as is)."""
    if digits < 0:
        return value
    factor = 10.0 ** digits
    return math.copysign(math.floor(abs(value) * factor + 0.5) / factor, value)


def bytes_to_mb(size_bytes: int) -> float:
    return size_bytes / BYTES_PER_MB


def parse_compact_duration(text: str) -> Optional[timedelta]:
    """Parse durations like '01h23m45s', '1h30m', '300s' or '1500ms'.

    A duration is a sequence of decimal numbers, each with a unit suffix
    (h, m, s, ms, us/µs, ns). Returns None when the text is not in that
    notation.
    """
    text = text.strip()
    if not text:
        return None
    seconds = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_PART_RE.match(text, pos)
        if not match:
            return None
        seconds += float(match.group(1)) * _DURATION_UNIT_SECONDS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=seconds)


def format_compact_duration(value: timedelta) -> str:
    """Render a duration as '1h2m3s', '1m30s', '45s' or '0s'."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours = int(total // 3600)
    minutes = int((total % 3600) // 60)
    seconds = round(total - hours * 3600 - minutes * 60, 6)
    sec_text = f"{int(seconds)}s" if seconds == int(seconds) else f"{seconds:g}s"
    if hours:
        return f"{sign}{hours}h{minutes}m{sec_text}"
    if minutes:
        return f"{sign}{minutes}m{sec_text}"
    return f"{sign}{sec_text}"


def truncate_seconds(value: timedelta) -> timedelta:
    """Drop the sub-second part of a duration (towards zero)."""
    return timedelta(seconds=math.trunc(value.total_seconds()))
