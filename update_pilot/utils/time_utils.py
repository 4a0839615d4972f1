"""
Time helpers shared by the engine, the step handlers and the CLI.

All workflow timestamps are timezone-aware UTC so that runs recorded on
different machines compare cleanly.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_duration(seconds: Optional[float]) -> str:
    """
    Render a duration the way the timeline shows it.

    Examples:
        0.85 -> "850ms", 12.4 -> "12s", 185 -> "3m 5s"
    """
    if seconds is None:
        return ""

    if seconds < 1:
        return f"{int(round(seconds * 1000))}ms"

    whole_seconds = int(seconds)
    if whole_seconds < 60:
        return f"{whole_seconds}s"

    minutes, remaining_seconds = divmod(whole_seconds, 60)
    return f"{minutes}m {remaining_seconds}s"

