"""
Report window keys

A date range key names the window a dashboard is showing:
``7d``/``30d``/``90d`` style rolling windows, or an explicit
``custom:YYYY-MM-DD:YYYY-MM-DD`` window. Keys are resolved against "today"
in the configured report timezone.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
import re
import pytz

from agency_dashboard.config import get_settings
from agency_dashboard.connectors.errors import InvalidRequest

settings = get_settings()

MAX_ROLLING_DAYS = 730
_ROLLING_RE = re.compile(r"^(\d{1,3})d$")


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar window a date range key resolves to"""
    key: str
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def report_today(now: Optional[datetime] = None) -> date:
    """Current date in the report timezone."""
    tz = pytz.timezone(settings.report_timezone)
    if now is None:
        return datetime.now(tz).date()
    if now.tzinfo is None:
        now = pytz.utc.localize(now)
    return now.astimezone(tz).date()


def resolve_range_key(key: str, today: Optional[date] = None) -> DateWindow:
    """
    Resolve a date range key to a concrete window.

    Raises:
        InvalidRequest: malformed key, or a custom start after its end
    """
    today = today or report_today()
    key = (key or "").strip().lower()

    rolling = _ROLLING_RE.match(key)
    if rolling:
        days = int(rolling.group(1))
        if days < 1 or days > MAX_ROLLING_DAYS:
            raise InvalidRequest(f"Date range must be between 1 and {MAX_ROLLING_DAYS} days: {key}")
        return DateWindow(key=key, start=today - timedelta(days=days), end=today)

    if key.startswith("custom:"):
        parts = key.split(":")
        if len(parts) != 3:
            raise InvalidRequest(f"Custom range must look like custom:YYYY-MM-DD:YYYY-MM-DD, got {key}")
        try:
            start = date.fromisoformat(parts[1])
            end = date.fromisoformat(parts[2])
        except ValueError:
            raise InvalidRequest(f"Invalid date in range key: {key}")

        # Future end dates are clamped to today
        end = min(end, today)
        if start > end:
            raise InvalidRequest("Start date must be before end date")
        return DateWindow(key=f"custom:{start.isoformat()}:{end.isoformat()}", start=start, end=end)

    raise InvalidRequest(f"Unknown date range key: {key}")


def week_start(day: date, start_weekday: int = 0) -> date:
    """First day of the week containing ``day`` (0 = Monday)."""
    offset = (day.weekday() - start_weekday) % 7
    return day - timedelta(days=offset)
