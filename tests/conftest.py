"""
Shared fixtures: a throwaway SQLite database per test, fake provider
clients that count their calls, and a clock the test can move.
"""
import asyncio
import copy
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from agency_dashboard.connectors.base_connector import BaseProviderClient, ProbeResult
from agency_dashboard.models.base import build_engine, init_db
from agency_dashboard.models.kinds import DataKind, ProviderKind
from agency_dashboard.services.dashboard_service import DashboardService
from agency_dashboard.utils.date_ranges import report_today


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime.utcnow()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeProviderClient(BaseProviderClient):
    """Provider client returning canned payloads"""

    def __init__(self, payloads=None, fetch_error=None, probe_error=None, delay=0.0):
        super().__init__("Fake provider", timeout_seconds=5)
        self.payloads = payloads or {}
        self.fetch_error = fetch_error
        self.probe_error = probe_error
        self.delay = delay
        self.fetch_calls = []
        self.probe_calls = 0

    async def _probe(self, credential):
        self.probe_calls += 1
        if self.probe_error:
            raise self.probe_error
        return ProbeResult(account_label="fake-account")

    async def _fetch(self, data_kind, credential, window):
        self.fetch_calls.append(data_kind)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fetch_error:
            raise self.fetch_error
        return copy.deepcopy(self.payloads[data_kind])


ANALYTICS_PAYLOAD = {
    "total_sessions": 1200,
    "organic_sessions": 640,
    "active_users": 900,
    "new_users": 410,
    "event_count": 8800,
    "key_events": 37,
    "engaged_sessions": 700,
    "bounce_rate": 0.41,
    "avg_session_duration": 93.5,
    "active_users_trend": [{"date": "2026-01-01", "value": 30}, {"date": "2026-01-02", "value": 32}],
    "new_users_trend": [{"date": "2026-01-01", "value": 12}, {"date": "2026-01-02", "value": 15}],
}

PAGES_PAYLOAD = {
    "target": "example.com",
    "pages": [
        {"url": "https://example.com/", "keywords": 120, "estimated_traffic": 540.5,
         "pos_1": 10, "pos_2_3": 14, "pos_4_10": 40},
        {"url": "https://example.com/blog", "keywords": 30, "estimated_traffic": 80.0,
         "pos_1": 1, "pos_2_3": None, "pos_4_10": 6},
    ],
}


def backlinks_payload(today=None):
    today = today or report_today()
    days = []
    for offset in range(0, 35):
        day = today - timedelta(days=offset)
        days.append({"date": day.isoformat(), "new_backlinks": 2, "lost_backlinks": 1})
    return {"target": "example.com", "days": days}


def default_payloads():
    return {
        DataKind.ANALYTICS_SUMMARY: copy.deepcopy(ANALYTICS_PAYLOAD),
        DataKind.PAGE_METRICS: copy.deepcopy(PAGES_PAYLOAD),
        DataKind.BACKLINKS: backlinks_payload(),
    }


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'dashboard.db'}")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def analytics_client():
    return FakeProviderClient(payloads=default_payloads())


@pytest.fixture
def seo_client():
    return FakeProviderClient(payloads=default_payloads())


@pytest.fixture
def service(session_factory, analytics_client, seo_client, clock):
    return DashboardService(
        session_factory=session_factory,
        clients={ProviderKind.ANALYTICS: analytics_client, ProviderKind.SEO: seo_client},
        clock=clock,
        probe_base_delay=0,
    )
