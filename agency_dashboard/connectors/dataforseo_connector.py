"""
DataForSEO provider client
Fetches relevant-page metrics and backlink new/lost time series

The stored credential is the base64 API login (falling back to the
agency-wide DATAFORSEO_BASE64 setting); the resource is the client domain.
"""
from typing import Any, Dict, List, Optional
from datetime import timedelta
import asyncio
import aiohttp
from dateutil import parser as date_parser

from agency_dashboard.connectors.base_connector import BaseProviderClient, ProbeResult, ProviderCredential
from agency_dashboard.connectors.errors import CredentialInvalid, ProviderPartialData, ProviderUnavailable
from agency_dashboard.config import get_settings
from agency_dashboard.models.kinds import DataKind
from agency_dashboard.utils.date_ranges import DateWindow, report_today
from agency_dashboard.utils.helpers import coerce_count, coerce_metric, normalize_domain
from agency_dashboard.utils.logger import log

settings = get_settings()

STATUS_OK = 20000


class DataForSEOClient(BaseProviderClient):
    """Provider client for the DataForSEO v3 API"""

    def __init__(self, timeout_seconds: Optional[float] = None, base_url: Optional[str] = None):
        super().__init__("DataForSEO", timeout_seconds)
        self.base_url = (base_url or settings.dataforseo_base_url).rstrip("/")

    def _headers(self, credential: ProviderCredential) -> Dict[str, str]:
        login = credential.token or settings.dataforseo_base64
        if not login:
            raise CredentialInvalid(
                "DataForSEO credentials not configured. Set DATAFORSEO_BASE64 or connect with an API login.",
                provider=self.name,
            )
        return {
            "Authorization": f"Basic {login}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, credential: ProviderCredential, body=None) -> Dict[str, Any]:
        headers = self._headers(credential)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(method, f"{self.base_url}{path}", headers=headers, json=body) as response:
                    if response.status in (401, 403):
                        raise CredentialInvalid(f"DataForSEO rejected credentials ({response.status})", provider=self.name)
                    if response.status != 200:
                        text = await response.text()
                        raise ProviderUnavailable(
                            f"DataForSEO API error: {response.status} - {text[:200]}",
                            provider=self.name,
                        )
                    try:
                        data = await response.json()
                    except ValueError as e:
                        raise ProviderPartialData(f"DataForSEO returned malformed JSON: {e}", provider=self.name)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailable(f"DataForSEO request failed: {type(e).__name__}: {e}", provider=self.name)

        if not isinstance(data, dict):
            raise ProviderPartialData(f"DataForSEO returned {type(data).__name__} instead of an object", provider=self.name)

        status_code = data.get("status_code")
        if status_code and 40100 <= status_code < 40200:
            raise CredentialInvalid(f"DataForSEO auth error {status_code}: {data.get('status_message')}", provider=self.name)
        if status_code and status_code != STATUS_OK:
            raise ProviderUnavailable(f"DataForSEO error {status_code}: {data.get('status_message')}", provider=self.name)
        return data

    def _first_result(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Return tasks[0].result[0], or raise when the task carries no result."""
        tasks = data.get("tasks") or []
        if not tasks:
            raise ProviderPartialData("DataForSEO response has no tasks", provider=self.name)
        task = tasks[0]
        if task.get("status_code") != STATUS_OK:
            raise ProviderPartialData(
                f"DataForSEO task error {task.get('status_code')}: {task.get('status_message')}",
                provider=self.name,
            )
        results = task.get("result") or []
        if not results or not isinstance(results[0], dict):
            raise ProviderPartialData("DataForSEO task returned no result", provider=self.name)
        return results[0]

    async def _probe(self, credential: ProviderCredential) -> ProbeResult:
        data = await self._request("GET", "/appendix/user_data", credential)
        result = self._first_result(data)
        login = result.get("login")
        log.info(f"DataForSEO probe succeeded for login {login}")
        return ProbeResult(account_label=login)

    async def _fetch(self, data_kind: DataKind, credential: ProviderCredential, window: DateWindow) -> Dict[str, Any]:
        target = normalize_domain(credential.resource or "")
        if not target:
            raise CredentialInvalid("No target domain configured for SEO connection", provider=self.name)

        if data_kind is DataKind.PAGE_METRICS:
            return await self._fetch_relevant_pages(target, credential)
        if data_kind is DataKind.BACKLINKS:
            return await self._fetch_backlink_timeseries(target, credential)
        raise ValueError(f"DataForSEO does not source {data_kind.value}")

    async def _fetch_relevant_pages(self, target: str, credential: ProviderCredential) -> Dict[str, Any]:
        body = [{
            "target": target,
            "se_type": "google",
            "location_code": settings.seo_location_code,
            "language_name": settings.seo_language_name,
            "limit": settings.top_pages_limit,
        }]
        data = await self._request("POST", "/dataforseo_labs/google/relevant_pages/live", credential, body)
        items = self._first_result(data).get("items") or []

        pages = []
        for item in items:
            url = item.get("page_address")
            if not url:
                continue
            organic = (item.get("metrics") or {}).get("organic") or {}
            paid = (item.get("metrics") or {}).get("paid") or {}
            pages.append({
                "url": url,
                "keywords": coerce_count(organic.get("count")),
                "estimated_traffic": coerce_metric(organic.get("etv")),
                "pos_1": coerce_count(organic.get("pos_1")),
                "pos_2_3": coerce_count(organic.get("pos_2_3")),
                "pos_4_10": coerce_count(organic.get("pos_4_10")),
                "new_keywords": coerce_count(organic.get("is_new")),
                "up_keywords": coerce_count(organic.get("is_up")),
                "down_keywords": coerce_count(organic.get("is_down")),
                "lost_keywords": coerce_count(organic.get("is_lost")),
                "paid_traffic": coerce_metric(paid.get("etv")),
            })

        log.info(f"Fetched {len(pages)} relevant pages for {target}")
        return {"target": target, "pages": pages}

    async def _fetch_backlink_timeseries(self, target: str, credential: ProviderCredential) -> Dict[str, Any]:
        date_to = report_today()
        date_from = date_to - timedelta(days=settings.backlink_lookback_days)
        body = [{
            "target": target,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "group_range": "day",
        }]
        data = await self._request("POST", "/backlinks/timeseries_new_lost_summary/live", credential, body)
        items = self._first_result(data).get("items") or []

        days: List[Dict[str, Any]] = []
        for item in items:
            raw_date = item.get("date")
            if not raw_date:
                continue
            try:
                day = date_parser.parse(raw_date).date()
            except (ValueError, OverflowError):
                log.warning(f"Skipping backlink row with unparseable date: {raw_date}")
                continue
            days.append({
                "date": day.isoformat(),
                "new_backlinks": coerce_count(item.get("new_backlinks")),
                "lost_backlinks": coerce_count(item.get("lost_backlinks")),
                "new_referring_domains": coerce_count(item.get("new_referring_domains")),
                "lost_referring_domains": coerce_count(item.get("lost_referring_domains")),
            })

        log.info(f"Fetched {len(days)} backlink days for {target}")
        return {
            "target": target,
            "date_from": date_from.isoformat(),
            "date_to": date_to.isoformat(),
            "days": days,
        }
