"""
Dashboard Summary Aggregator
Composes the per-client dashboard view model from cached snapshots

Reads the snapshot store and connection registry only; it never calls a
provider. Missing measurements stay None ("unknown") all the way to the
response, never zero.
"""
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set
from pydantic import BaseModel, Field

from agency_dashboard.config import get_settings
from agency_dashboard.models.kinds import DataKind, ProviderKind, RANGE_INDEPENDENT_KEY
from agency_dashboard.services.connection_registry import ConnectionRegistry
from agency_dashboard.services.snapshot_store import Snapshot, SnapshotStore
from agency_dashboard.utils.date_ranges import DateWindow, report_today, resolve_range_key, week_start
from agency_dashboard.utils.helpers import (
    calculate_percentage_change,
    coerce_count,
    coerce_metric,
    sum_known,
)

settings = get_settings()

HEADLINE_COUNTS = [
    "total_sessions",
    "organic_sessions",
    "active_users",
    "new_users",
    "event_count",
    "key_events",
    "engaged_sessions",
]
HEADLINE_RATES = ["bounce_rate", "avg_session_duration"]
# An analytics section missing any of these is treated as stale
REQUIRED_ANALYTICS_FIELDS = ["active_users", "new_users", "total_sessions"]


class TrendPoint(BaseModel):
    date: str
    value: Optional[int] = None


class AnalyticsSection(BaseModel):
    state: str = "not_connected"  # connected, not_connected, reconnect_required
    data_source: str = "none"  # provider, none
    fetched_at: Optional[datetime] = None

    total_sessions: Optional[int] = None
    organic_sessions: Optional[int] = None
    active_users: Optional[int] = None
    new_users: Optional[int] = None
    event_count: Optional[int] = None
    key_events: Optional[int] = None
    engaged_sessions: Optional[int] = None
    bounce_rate: Optional[float] = None
    avg_session_duration: Optional[float] = None

    active_users_trend: List[TrendPoint] = Field(default_factory=list)
    new_users_trend: List[TrendPoint] = Field(default_factory=list)

    # Percentage change versus the previous snapshot for the same range
    deltas: Dict[str, Optional[float]] = Field(default_factory=dict)


class TopPage(BaseModel):
    url: str
    keywords: Optional[int] = None
    estimated_traffic: Optional[float] = None
    pos_1: Optional[int] = None
    pos_2_3: Optional[int] = None
    pos_4_10: Optional[int] = None
    new_keywords: Optional[int] = None
    lost_keywords: Optional[int] = None


class PageMetricsSection(BaseModel):
    data_source: str = "none"
    fetched_at: Optional[datetime] = None
    pages: List[TopPage] = Field(default_factory=list)
    total_keywords: Optional[int] = None
    total_estimated_traffic: Optional[float] = None
    total_pos_1: Optional[int] = None
    total_pos_2_3: Optional[int] = None
    total_pos_4_10: Optional[int] = None


class BacklinkWeek(BaseModel):
    week_start: date
    new_backlinks: Optional[int] = None
    lost_backlinks: Optional[int] = None


class BacklinksSection(BaseModel):
    data_source: str = "none"
    fetched_at: Optional[datetime] = None
    weeks: List[BacklinkWeek] = Field(default_factory=list)  # Newest first
    new_last_n_weeks: Optional[int] = None
    lost_last_n_weeks: Optional[int] = None


class SeoSection(BaseModel):
    state: str = "not_connected"
    page_metrics: PageMetricsSection = Field(default_factory=PageMetricsSection)
    backlinks: BacklinksSection = Field(default_factory=BacklinksSection)


class DashboardSummary(BaseModel):
    client_id: str
    date_range_key: str
    range_start: date
    range_end: date
    analytics: AnalyticsSection = Field(default_factory=AnalyticsSection)
    seo: SeoSection = Field(default_factory=SeoSection)
    warnings: List[str] = Field(default_factory=list)
    recovery: str = "fresh"  # fresh, recovered, exhausted
    generated_at: datetime = Field(default_factory=datetime.utcnow)


def _sum_int(values) -> Optional[int]:
    total = sum_known(values)
    return int(total) if total is not None else None


def build_analytics_section(state: str, latest: Optional[Snapshot], previous: Optional[Snapshot]) -> AnalyticsSection:
    section = AnalyticsSection(state=state)
    if latest is None:
        return section

    payload = latest.payload
    section.data_source = "provider"
    section.fetched_at = latest.fetched_at
    for field in HEADLINE_COUNTS:
        setattr(section, field, coerce_count(payload.get(field)))
    for field in HEADLINE_RATES:
        setattr(section, field, coerce_metric(payload.get(field)))

    section.active_users_trend = [
        TrendPoint(date=point["date"], value=coerce_count(point.get("value")))
        for point in payload.get("active_users_trend") or [] if point.get("date")
    ]
    section.new_users_trend = [
        TrendPoint(date=point["date"], value=coerce_count(point.get("value")))
        for point in payload.get("new_users_trend") or [] if point.get("date")
    ]

    prior = previous.payload if previous else {}
    section.deltas = {
        field: calculate_percentage_change(
            getattr(section, field),
            coerce_metric(prior.get(field)) if previous else None,
        )
        for field in HEADLINE_COUNTS + HEADLINE_RATES
    }
    return section


def build_page_metrics_section(latest: Optional[Snapshot]) -> PageMetricsSection:
    section = PageMetricsSection()
    if latest is None:
        return section

    section.data_source = "provider"
    section.fetched_at = latest.fetched_at
    pages = []
    for raw in latest.payload.get("pages") or []:
        if not raw.get("url"):
            continue
        pages.append(TopPage(
            url=raw["url"],
            keywords=coerce_count(raw.get("keywords")),
            estimated_traffic=coerce_metric(raw.get("estimated_traffic")),
            pos_1=coerce_count(raw.get("pos_1")),
            pos_2_3=coerce_count(raw.get("pos_2_3")),
            pos_4_10=coerce_count(raw.get("pos_4_10")),
            new_keywords=coerce_count(raw.get("new_keywords")),
            lost_keywords=coerce_count(raw.get("lost_keywords")),
        ))

    section.pages = sorted(
        pages,
        key=lambda page: page.estimated_traffic if page.estimated_traffic is not None else -1,
        reverse=True,
    )[:settings.top_pages_limit]
    section.total_keywords = _sum_int(page.keywords for page in section.pages)
    section.total_estimated_traffic = sum_known(page.estimated_traffic for page in section.pages)
    section.total_pos_1 = _sum_int(page.pos_1 for page in section.pages)
    section.total_pos_2_3 = _sum_int(page.pos_2_3 for page in section.pages)
    section.total_pos_4_10 = _sum_int(page.pos_4_10 for page in section.pages)
    return section


def bucket_backlinks_by_week(days: List[dict], today: date, weeks: int, start_weekday: int = 0) -> List[BacklinkWeek]:
    """
    Group daily new/lost backlink counts into calendar weeks.

    Returns ``weeks`` buckets, newest first, the first one being the
    (possibly partial) current week. A week with no known values is None.
    """
    current = week_start(today, start_weekday)
    starts = [current - timedelta(weeks=i) for i in range(weeks)]
    new_by_week: Dict[date, list] = {start: [] for start in starts}
    lost_by_week: Dict[date, list] = {start: [] for start in starts}

    for day in days or []:
        try:
            day_date = date.fromisoformat(day.get("date") or "")
        except ValueError:
            continue
        if day_date > today:
            continue
        bucket = week_start(day_date, start_weekday)
        if bucket not in new_by_week:
            continue
        new_by_week[bucket].append(coerce_count(day.get("new_backlinks")))
        lost_by_week[bucket].append(coerce_count(day.get("lost_backlinks")))

    return [
        BacklinkWeek(
            week_start=start,
            new_backlinks=_sum_int(new_by_week[start]),
            lost_backlinks=_sum_int(lost_by_week[start]),
        )
        for start in starts
    ]


def build_backlinks_section(latest: Optional[Snapshot], today: date) -> BacklinksSection:
    section = BacklinksSection()
    if latest is None:
        return section

    section.data_source = "provider"
    section.fetched_at = latest.fetched_at
    section.weeks = bucket_backlinks_by_week(
        latest.payload.get("days") or [],
        today,
        settings.backlink_weeks,
        settings.week_start_day,
    )
    section.new_last_n_weeks = _sum_int(week.new_backlinks for week in section.weeks)
    section.lost_last_n_weeks = _sum_int(week.lost_backlinks for week in section.weeks)
    return section


class SummaryAggregator:
    """Builds DashboardSummary objects from cache and registry reads"""

    def __init__(self, registry: ConnectionRegistry, snapshots: SnapshotStore):
        self.registry = registry
        self.snapshots = snapshots

    def compose(self, client_id: str, date_range_key: str, today: Optional[date] = None) -> DashboardSummary:
        """
        Compose the dashboard for a client and date range.

        Raises:
            InvalidRequest: malformed date range key
        """
        today = today or report_today()
        window: DateWindow = resolve_range_key(date_range_key, today=today)

        summary = DashboardSummary(
            client_id=client_id,
            date_range_key=window.key,
            range_start=window.start,
            range_end=window.end,
        )

        analytics = self.registry.get(client_id, ProviderKind.ANALYTICS)
        if analytics.believed_valid:
            snapshots = self.snapshots.latest_two(client_id, DataKind.ANALYTICS_SUMMARY, window.key)
            summary.analytics = build_analytics_section(
                analytics.state,
                snapshots[0] if snapshots else None,
                snapshots[1] if len(snapshots) > 1 else None,
            )
        else:
            summary.analytics = AnalyticsSection(state=analytics.state)

        seo = self.registry.get(client_id, ProviderKind.SEO)
        summary.seo = SeoSection(state=seo.state)
        if seo.believed_valid:
            summary.seo.page_metrics = build_page_metrics_section(
                self.snapshots.latest(client_id, DataKind.PAGE_METRICS, RANGE_INDEPENDENT_KEY)
            )
            summary.seo.backlinks = build_backlinks_section(
                self.snapshots.latest(client_id, DataKind.BACKLINKS, RANGE_INDEPENDENT_KEY),
                today,
            )

        return summary


def stale_data_kinds(summary: DashboardSummary, now: Optional[datetime] = None,
                     analytics_max_age: Optional[timedelta] = None) -> Set[DataKind]:
    """Data kinds of believed-valid providers whose cached data looks incomplete or old."""
    now = now or datetime.utcnow()
    max_age = analytics_max_age or timedelta(hours=settings.analytics_max_age_hours)
    stale = set()

    analytics = summary.analytics
    if analytics.state == "connected":
        if (
            analytics.data_source == "none"
            or any(getattr(analytics, field) is None for field in REQUIRED_ANALYTICS_FIELDS)
            or (analytics.fetched_at and now - analytics.fetched_at > max_age)
        ):
            stale.add(DataKind.ANALYTICS_SUMMARY)

    if summary.seo.state == "connected":
        if summary.seo.page_metrics.data_source == "none":
            stale.add(DataKind.PAGE_METRICS)
        if summary.seo.backlinks.data_source == "none":
            stale.add(DataKind.BACKLINKS)

    return stale


def incomplete_providers(summary: DashboardSummary) -> Set[ProviderKind]:
    """Believed-valid providers whose sections still lack data (age is ignored)."""
    incomplete = set()
    analytics = summary.analytics
    if analytics.state == "connected" and (
        analytics.data_source == "none"
        or any(getattr(analytics, field) is None for field in REQUIRED_ANALYTICS_FIELDS)
    ):
        incomplete.add(ProviderKind.ANALYTICS)
    seo = summary.seo
    if seo.state == "connected" and (
        seo.page_metrics.data_source == "none" or seo.backlinks.data_source == "none"
    ):
        incomplete.add(ProviderKind.SEO)
    return incomplete
