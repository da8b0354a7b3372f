"""
Helper utilities
"""
import math
from typing import Any, Iterable, Optional


def coerce_metric(value: Any) -> Optional[float]:
    """
    Coerce a provider value to a finite number.

    Missing, non-numeric and non-finite values become None ("unknown") so
    that an absent measurement is never reported as zero.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def coerce_count(value: Any) -> Optional[int]:
    """Like coerce_metric, for whole-number counters."""
    number = coerce_metric(value)
    return int(round(number)) if number is not None else None


def calculate_percentage_change(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """Calculate percentage change between two values"""
    if current is None or previous is None or previous == 0:
        return None
    return round(((current - previous) / previous) * 100, 2)


def sum_known(values: Iterable[Optional[float]]) -> Optional[float]:
    """Sum the known values; None when nothing is known."""
    known = [v for v in values if v is not None]
    if not known:
        return None
    return sum(known)


def normalize_domain(domain: str) -> str:
    """Strip scheme, www. and trailing slash from a domain"""
    value = (domain or "").strip().lower()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
    if value.startswith("www."):
        value = value[4:]
    return value.rstrip("/")
