"""
Utility helpers for the Content Audit Platform.
"""

import datetime
import math
from typing import Optional
from urllib.parse import urlparse


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (``round`` rounds to even)."""
    return int(math.floor(value + 0.5))


def percentage_change(old_value: float, new_value: float) -> float:
    """Percentage change from *old_value* to *new_value*.

    A zero baseline counts as a 100% rise when anything appeared, else 0%.
    """
    if old_value == 0:
        return 100.0 if new_value > 0 else 0.0
    return (new_value - old_value) / old_value * 100


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """Cut *text* to *max_length* characters including the suffix."""
    if len(text) <= max_length:
        return text
    return text[: max_length - len(suffix)] + suffix


def extract_domain(url: str) -> str:
    """Extract the domain from a URL."""
    parsed = urlparse(url)
    return parsed.netloc.lower().replace("www.", "")


def url_path(url: str) -> str:
    """Path component of *url*, ``/`` when empty."""
    return urlparse(url).path or "/"


def is_excluded_path(url: str, excluded_paths: Optional[list[str]]) -> bool:
    """True when the URL path starts with any of the excluded prefixes."""
    path = url_path(url)
    return any(path.startswith(prefix) for prefix in (excluded_paths or []) if prefix)


def get_date_range(days: int = 30, end: Optional[datetime.date] = None) -> tuple:
    """Get start and end dates covering the last *days* days."""
    end = end or datetime.date.today()
    start = end - datetime.timedelta(days=days)
    return start, end
