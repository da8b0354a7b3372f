"""
Recovery orchestration and refresh tests.

Guards against:
1. More than one automatic recovery per (client, date range)
2. Provider calls for a provider that was never connected
3. Concurrent refreshes of the same key both reaching the provider
4. A rejected credential leaving the last good numbers on screen
5. Partial provider data replacing a good snapshot
6. A cancelled request abandoning an admitted refresh
7. A malformed provider response surfacing as a server error
8. Re-probing an unreachable provider on every dashboard load
"""
import asyncio
import json

import pytest

from agency_dashboard.connectors.errors import CredentialInvalid, ProviderPartialData, ProviderUnavailable
from agency_dashboard.models.kinds import DataKind, ProviderKind, RANGE_INDEPENDENT_KEY

from conftest import ANALYTICS_PAYLOAD


def _run(coro):
    return asyncio.run(coro)


def _connect(service, provider):
    resource = "123456" if provider == "analytics" else "example.com"
    _run(service.connect("C", provider, "token", resource))


EMPTY_ANALYTICS = {
    "total_sessions": None,
    "active_users": None,
    "new_users": None,
}


# ---------------------------------------------------------------------------
# Never connected
# ---------------------------------------------------------------------------

def test_never_connected_makes_no_provider_calls(service, analytics_client, seo_client):
    summary = _run(service.get_dashboard_summary("C", "30d"))
    status = _run(service.get_connection_status("C", "analytics"))

    assert status["connected"] is False
    assert summary.analytics.state == "not_connected"
    assert summary.seo.state == "not_connected"
    assert summary.recovery == "fresh"
    assert analytics_client.fetch_calls == [] and analytics_client.probe_calls == 0
    assert seo_client.fetch_calls == [] and seo_client.probe_calls == 0


def test_force_refresh_without_connection_is_skipped(service, seo_client, session_factory):
    result = _run(service.force_refresh("C", "backlinks"))
    assert result.applied is False
    assert "Not connected" in result.skipped_reason
    assert seo_client.fetch_calls == []
    # No cooldown consumed
    assert service.gate.last_refresh_at("C", DataKind.BACKLINKS) is None


# ---------------------------------------------------------------------------
# One-time recovery
# ---------------------------------------------------------------------------

def test_recovery_success_runs_once_and_recomposes(service, analytics_client):
    _connect(service, "analytics")
    service.snapshots.write("C", DataKind.ANALYTICS_SUMMARY, "30d", dict(EMPTY_ANALYTICS))

    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert analytics_client.fetch_calls == [DataKind.ANALYTICS_SUMMARY]
    assert summary.recovery == "recovered"
    assert summary.analytics.total_sessions == ANALYTICS_PAYLOAD["total_sessions"]
    assert service.marks.has("C", "30d")

    again = _run(service.get_dashboard_summary("C", "30d"))
    assert again.recovery == "fresh"
    assert len(analytics_client.fetch_calls) == 1


def test_recovery_failure_is_not_retried(service, analytics_client):
    _connect(service, "analytics")
    service.snapshots.write("C", DataKind.ANALYTICS_SUMMARY, "30d", dict(EMPTY_ANALYTICS))
    analytics_client.fetch_error = ProviderUnavailable("timeout", provider="Google Analytics 4")

    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert len(analytics_client.fetch_calls) == 1
    assert summary.recovery == "exhausted"
    assert summary.analytics.total_sessions is None
    assert summary.analytics.state == "connected"
    assert any("temporarily unavailable" in w for w in summary.warnings)
    assert service.marks.has("C", "30d")

    # Later loads, even after the guard window, never retry automatically
    service.gate.clock.advance(hours=1)
    for _ in range(3):
        later = _run(service.get_dashboard_summary("C", "30d"))
        assert later.recovery == "exhausted"
    assert len(analytics_client.fetch_calls) == 1


def test_recovery_marks_are_per_range_key(service, analytics_client):
    _connect(service, "analytics")
    analytics_client.fetch_error = ProviderUnavailable("down")

    _run(service.get_dashboard_summary("C", "30d"))
    service.gate.clock.advance(minutes=20)
    _run(service.get_dashboard_summary("C", "7d"))

    assert len(analytics_client.fetch_calls) == 2


def test_concurrent_loads_share_one_recovery(service, seo_client):
    _connect(service, "seo")

    async def scenario():
        return await asyncio.gather(*[service.get_dashboard_summary("C", "30d") for _ in range(5)])

    _run(scenario())

    assert sorted(k.value for k in seo_client.fetch_calls) == ["backlinks", "page_metrics"]


def test_invalidate_cache_allows_new_recovery(service, analytics_client):
    _connect(service, "analytics")
    analytics_client.fetch_error = ProviderUnavailable("down")
    _run(service.get_dashboard_summary("C", "30d"))

    result = service.invalidate_cache("C")
    assert result["recovery_marks_cleared"] == 1

    service.gate.clock.advance(minutes=20)
    analytics_client.fetch_error = None
    summary = _run(service.get_dashboard_summary("C", "30d"))
    assert summary.recovery == "recovered"
    assert len(analytics_client.fetch_calls) == 2


def test_recovery_denied_by_gate_is_not_an_error(service, seo_client):
    _connect(service, "seo")
    _run(service.force_refresh("C", "backlinks"))
    service.snapshots.invalidate("C", [DataKind.BACKLINKS])

    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert seo_client.fetch_calls.count(DataKind.BACKLINKS) == 1
    assert summary.seo.page_metrics.data_source == "provider"
    assert summary.seo.backlinks.data_source == "none"
    assert not any("unavailable" in w for w in summary.warnings)


# ---------------------------------------------------------------------------
# Credential and data failures
# ---------------------------------------------------------------------------

def test_invalid_credential_shows_unknown_fields(service, analytics_client):
    _connect(service, "analytics")
    _run(service.force_refresh("C", "analytics_summary"))
    assert _run(service.get_dashboard_summary("C", "30d")).analytics.total_sessions == 1200

    analytics_client.probe_error = CredentialInvalid("invalid_grant")
    _run(service.validator.validate("C", ProviderKind.ANALYTICS, force=True))

    summary = _run(service.get_dashboard_summary("C", "30d"))
    assert summary.analytics.state == "reconnect_required"
    assert summary.analytics.total_sessions is None
    assert summary.analytics.active_users is None


def test_credential_rejected_during_refresh_demotes(service, seo_client):
    _connect(service, "seo")
    seo_client.fetch_error = CredentialInvalid("401")

    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert summary.seo.state == "reconnect_required"
    assert summary.seo.page_metrics.data_source == "none"
    assert any("reconnected" in w for w in summary.warnings)
    assert service.registry.get("C", ProviderKind.SEO).believed_valid is False


def test_partial_data_keeps_prior_snapshot(service, seo_client, clock):
    _connect(service, "seo")
    assert _run(service.force_refresh("C", "page_metrics")).applied
    before = service.snapshots.latest("C", DataKind.PAGE_METRICS, RANGE_INDEPENDENT_KEY)

    clock.advance(hours=49)
    seo_client.fetch_error = ProviderPartialData("task returned no result")
    result = _run(service.force_refresh("C", "page_metrics"))

    assert result.applied is False
    assert "incomplete" in result.error
    after = service.snapshots.latest("C", DataKind.PAGE_METRICS, RANGE_INDEPENDENT_KEY)
    assert after.fetched_at == before.fetched_at
    assert service.registry.get("C", ProviderKind.SEO).believed_valid


def test_failed_refresh_still_consumes_cooldown(service, seo_client, clock):
    _connect(service, "seo")
    seo_client.fetch_error = ProviderUnavailable("502")
    assert _run(service.force_refresh("C", "backlinks")).applied is False

    seo_client.fetch_error = None
    clock.advance(hours=1)
    result = _run(service.force_refresh("C", "backlinks"))

    assert result.applied is False
    assert result.skipped_reason == "Using cached data; next refresh available in 47 hours"
    assert len(seo_client.fetch_calls) == 1


def test_malformed_provider_response_becomes_warning(service, seo_client):
    _connect(service, "seo")
    seo_client.fetch_error = json.JSONDecodeError("Expecting value", '{"status_code": 20000, "tasks": [', 33)

    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert summary.recovery == "exhausted"
    assert "SEO is temporarily unavailable; showing cached data" in summary.warnings
    assert service.registry.get("C", ProviderKind.SEO).believed_valid


def test_unreachable_provider_is_not_reprobed_on_every_load(service, seo_client, clock):
    seo_client.probe_error = ProviderUnavailable("503", provider="DataForSEO")
    seo_client.fetch_error = ProviderUnavailable("503", provider="DataForSEO")
    _connect(service, "seo")
    probes = seo_client.probe_calls

    for _ in range(5):
        summary = _run(service.get_dashboard_summary("C", "30d"))

    assert seo_client.probe_calls == probes
    assert "Could not verify SEO connection: 503" in summary.warnings

    clock.advance(minutes=11)
    _run(service.get_dashboard_summary("C", "30d"))
    assert seo_client.probe_calls == probes + service.validator.probe_attempts


# ---------------------------------------------------------------------------
# Force refresh concurrency and cancellation
# ---------------------------------------------------------------------------

def test_concurrent_force_refresh_calls_provider_once(service, seo_client):
    _connect(service, "seo")
    seo_client.delay = 0.05

    async def scenario():
        return await asyncio.gather(*[service.force_refresh("C", "page_metrics") for _ in range(3)])

    results = _run(scenario())

    assert sum(1 for r in results if r.applied) == 1
    assert len(seo_client.fetch_calls) == 1


def test_cancelled_caller_does_not_abort_admitted_refresh(service, seo_client):
    _connect(service, "seo")
    seo_client.delay = 0.05

    async def scenario():
        task = asyncio.create_task(service.force_refresh("C", "backlinks"))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.1)

    _run(scenario())

    assert service.snapshots.latest("C", DataKind.BACKLINKS, RANGE_INDEPENDENT_KEY) is not None


def test_stale_analytics_refreshes_on_freshness(service, analytics_client, clock):
    _connect(service, "analytics")
    _run(service.force_refresh("C", "analytics_summary", "30d"))

    clock.advance(hours=25)
    summary = _run(service.get_dashboard_summary("C", "30d"))

    assert len(analytics_client.fetch_calls) == 2
    assert summary.recovery == "fresh"
    assert not service.marks.has("C", "30d")


def test_unknown_data_kind_is_invalid_request(service):
    from agency_dashboard.connectors.errors import InvalidRequest
    with pytest.raises(InvalidRequest):
        _run(service.force_refresh("C", "keywords"))
