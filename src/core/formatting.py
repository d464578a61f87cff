# src/core/formatting.py - v1
"""Human-readable formatting helpers shared across packages."""

from __future__ import annotations


def format_duration(seconds: float) -> str:
    """Format a duration as '1h 5m', '3m 12s' or '42s'."""
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
