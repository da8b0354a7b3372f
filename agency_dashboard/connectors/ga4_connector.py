"""
Google Analytics 4 provider client
Fetches the analytics summary shown on a client dashboard

Each client authorises GA4 through OAuth; the stored credential is the
refresh token and the resource is the GA4 property id.
"""
from typing import Any, Dict, List, Optional
import asyncio
from google.analytics.data_v1beta import BetaAnalyticsDataClient
from google.analytics.data_v1beta.types import (
    DateRange,
    Dimension,
    GetMetadataRequest,
    Metric,
    OrderBy,
    RunReportRequest,
)
from google.api_core import exceptions as google_exceptions
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from agency_dashboard.connectors.base_connector import BaseProviderClient, ProbeResult, ProviderCredential
from agency_dashboard.connectors.errors import (
    CredentialInvalid,
    ProviderError,
    ProviderPartialData,
    ProviderUnavailable,
)
from agency_dashboard.config import get_settings
from agency_dashboard.models.kinds import DataKind
from agency_dashboard.utils.date_ranges import DateWindow
from agency_dashboard.utils.helpers import coerce_count, coerce_metric
from agency_dashboard.utils.logger import log

settings = get_settings()

GA4_SCOPES = ["https://www.googleapis.com/auth/analytics.readonly"]

# Order matters: metric_values come back positionally
SUMMARY_METRICS = [
    ("sessions", "total_sessions"),
    ("activeUsers", "active_users"),
    ("newUsers", "new_users"),
    ("eventCount", "event_count"),
    ("keyEvents", "key_events"),
    ("engagedSessions", "engaged_sessions"),
    ("bounceRate", "bounce_rate"),
    ("averageSessionDuration", "avg_session_duration"),
]
COUNT_FIELDS = {"total_sessions", "active_users", "new_users", "event_count", "key_events", "engaged_sessions"}
ORGANIC_CHANNEL = "Organic Search"


def _property_path(property_id: str) -> str:
    property_id = (property_id or "").strip()
    return property_id if property_id.startswith("properties/") else f"properties/{property_id}"


def _is_invalid_grant(error: Exception) -> bool:
    message = str(error).lower()
    return "invalid_grant" in message or "expired" in message or "revoked" in message


def translate_google_error(error: Exception) -> ProviderError:
    """Map Google auth/API exceptions onto the provider failure taxonomy"""
    name = "Google Analytics 4"
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, RefreshError):
        if _is_invalid_grant(error):
            return CredentialInvalid(f"GA4 token expired or revoked: {error}", provider=name)
        return ProviderUnavailable(f"GA4 token refresh failed: {error}", provider=name)
    if isinstance(error, (google_exceptions.Unauthenticated,
                          google_exceptions.PermissionDenied,
                          google_exceptions.NotFound)):
        return CredentialInvalid(f"GA4 rejected access to the property: {error}", provider=name)
    if isinstance(error, (TransportError, google_exceptions.GoogleAPIError)):
        return ProviderUnavailable(f"GA4 request failed: {error}", provider=name)
    return ProviderUnavailable(f"GA4 request failed: {type(error).__name__}: {error}", provider=name)


class GA4Client(BaseProviderClient):
    """Provider client for Google Analytics 4"""

    def __init__(self, timeout_seconds: Optional[float] = None):
        super().__init__("Google Analytics 4", timeout_seconds)

    def _credentials(self, credential: ProviderCredential) -> Credentials:
        if not settings.ga4_client_id or not settings.ga4_client_secret:
            raise ProviderUnavailable(
                "GA4 OAuth client not configured. Set GA4_CLIENT_ID and GA4_CLIENT_SECRET.",
                provider=self.name,
            )
        if not credential.token or not credential.resource:
            raise CredentialInvalid("GA4 refresh token or property id missing", provider=self.name)

        return Credentials(
            token=None,
            refresh_token=credential.token,
            client_id=settings.ga4_client_id,
            client_secret=settings.ga4_client_secret,
            token_uri=settings.ga4_token_uri,
            scopes=GA4_SCOPES,
        )

    def _client(self, credential: ProviderCredential) -> BetaAnalyticsDataClient:
        creds = self._credentials(credential)
        # Refresh up front so a revoked token surfaces as RefreshError
        creds.refresh(Request())
        return BetaAnalyticsDataClient(credentials=creds)

    async def _probe(self, credential: ProviderCredential) -> ProbeResult:
        return await asyncio.to_thread(self._probe_sync, credential)

    def _probe_sync(self, credential: ProviderCredential) -> ProbeResult:
        try:
            client = self._client(credential)
            property_path = _property_path(credential.resource)
            client.get_metadata(
                request=GetMetadataRequest(name=f"{property_path}/metadata"),
                timeout=self.timeout_seconds,
            )
            log.info(f"GA4 probe succeeded for {property_path}")
            return ProbeResult(account_label=property_path)
        except Exception as e:
            raise translate_google_error(e)

    async def _fetch(self, data_kind: DataKind, credential: ProviderCredential, window: DateWindow) -> Dict[str, Any]:
        if data_kind is not DataKind.ANALYTICS_SUMMARY:
            raise ValueError(f"GA4 does not source {data_kind.value}")
        return await asyncio.to_thread(self._fetch_summary_sync, credential, window)

    def _fetch_summary_sync(self, credential: ProviderCredential, window: DateWindow) -> Dict[str, Any]:
        try:
            client = self._client(credential)
            property_path = _property_path(credential.resource)
            date_range = DateRange(start_date=window.start.isoformat(), end_date=window.end.isoformat())

            totals = client.run_report(
                request=RunReportRequest(
                    property=property_path,
                    date_ranges=[date_range],
                    metrics=[Metric(name=metric) for metric, _ in SUMMARY_METRICS],
                ),
                timeout=self.timeout_seconds,
            )
            channels = client.run_report(
                request=RunReportRequest(
                    property=property_path,
                    date_ranges=[date_range],
                    dimensions=[Dimension(name="sessionDefaultChannelGroup")],
                    metrics=[Metric(name="sessions")],
                ),
                timeout=self.timeout_seconds,
            )
            trend = client.run_report(
                request=RunReportRequest(
                    property=property_path,
                    date_ranges=[date_range],
                    dimensions=[Dimension(name="date")],
                    metrics=[Metric(name="activeUsers"), Metric(name="newUsers")],
                    order_bys=[OrderBy(dimension=OrderBy.DimensionOrderBy(dimension_name="date"))],
                ),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            raise translate_google_error(e)

        if not totals.rows:
            raise ProviderPartialData(
                f"GA4 returned no totals for {window.start} to {window.end}",
                provider=self.name,
            )

        payload = self._parse_totals(totals.rows[0])
        payload["organic_sessions"] = self._parse_organic_sessions(channels.rows)
        active_trend, new_trend = self._parse_trend(trend.rows)
        payload["active_users_trend"] = active_trend
        payload["new_users_trend"] = new_trend

        log.info(
            f"GA4 summary fetched for {property_path} {window.start} to {window.end}: "
            f"{payload.get('total_sessions')} sessions"
        )
        return payload

    def _parse_totals(self, row) -> Dict[str, Any]:
        payload = {}
        for index, (_, field) in enumerate(SUMMARY_METRICS):
            raw = row.metric_values[index].value if index < len(row.metric_values) else None
            payload[field] = coerce_count(raw) if field in COUNT_FIELDS else coerce_metric(raw)
        return payload

    def _parse_organic_sessions(self, rows) -> Optional[int]:
        if not rows:
            return None
        for row in rows:
            if row.dimension_values[0].value == ORGANIC_CHANNEL:
                return coerce_count(row.metric_values[0].value)
        # Channel breakdown present but no organic row: zero organic sessions
        return 0

    def _parse_trend(self, rows) -> tuple[List[Dict], List[Dict]]:
        active_users, new_users = [], []
        for row in rows or []:
            raw_date = row.dimension_values[0].value  # YYYYMMDD
            if len(raw_date) != 8:
                continue
            iso_date = f"{raw_date[:4]}-{raw_date[4:6]}-{raw_date[6:]}"
            active_users.append({"date": iso_date, "value": coerce_count(row.metric_values[0].value)})
            new_users.append({"date": iso_date, "value": coerce_count(row.metric_values[1].value)})
        return active_users, new_users
