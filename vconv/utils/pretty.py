import math
from datetime import datetime
from typing import Optional

_TRILLION = 1_000_000_000_000
_BILLION = 1_000_000_000
_MILLION = 1_000_000
_THOUSAND = 1_000


def file_safe_timestamp(moment: Optional[datetime] = None) -> str:
    """20240131235959 style timestamp for file names."""
    return (moment or datetime.now()).strftime("%Y%m%d%H%M%S")


def hhmmss_to_milliseconds(text: str) -> int:
    """'00:00:03.24' -> 3240"""
    hours, minutes, seconds = text.strip().split(":")
    total = int(hours) * 3_600_000 + int(minutes) * 60_000 + float(seconds) * 1000
    return math.floor(round(total, 6))


def hhmmss_to_seconds(text: str) -> float:
    return hhmmss_to_milliseconds(text) / 1000


def milliseconds_to_hhmmss(ms: float) -> str:
    """Renders a duration as HH:MM:SS; hours are not wrapped at 24."""
    total_seconds = max(0, int(round(ms / 1000)))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def bytes_to_human_readable(num_bytes: float) -> str:
    """Decimal units, two decimals: 1_890_000 -> '1.89MB', 890 -> '890B'."""
    magnitude = abs(num_bytes)
    if magnitude >= _TRILLION:
        return f"{num_bytes / _TRILLION:.2f}TB"
    if magnitude >= _BILLION:
        return f"{num_bytes / _BILLION:.2f}GB"
    if magnitude >= _MILLION:
        return f"{num_bytes / _MILLION:.2f}MB"
    if magnitude >= _THOUSAND:
        return f"{num_bytes / _THOUSAND:.2f}KB"
    return f"{math.floor(num_bytes)}B"
