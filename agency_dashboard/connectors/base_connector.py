"""
Base class for provider clients
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional
from datetime import datetime
import asyncio

from agency_dashboard.config import get_settings
from agency_dashboard.connectors.errors import ProviderError, ProviderUnavailable
from agency_dashboard.models.kinds import DataKind
from agency_dashboard.utils.date_ranges import DateWindow
from agency_dashboard.utils.logger import log

settings = get_settings()


@dataclass(frozen=True)
class ProviderCredential:
    """Opaque credential plus the provider resource it grants access to"""
    token: Optional[str]
    resource: Optional[str]  # GA4 property id, or target domain for SEO


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a successful identity/status check"""
    account_label: Optional[str] = None


class BaseProviderClient(ABC):
    """
    Base class for provider clients.

    A client issues one logical request per call and keeps no state about
    clients or connections; failures are raised as ProviderError subclasses.
    """

    def __init__(self, name: str, timeout_seconds: Optional[float] = None):
        self.name = name
        self.timeout_seconds = timeout_seconds or settings.provider_timeout_seconds
        self.call_count = 0
        self.error_count = 0
        self.last_call_at: Optional[datetime] = None

    @abstractmethod
    async def _probe(self, credential: ProviderCredential) -> ProbeResult:
        """Cheap identity/status check, distinct from data calls"""

    @abstractmethod
    async def _fetch(self, data_kind: DataKind, credential: ProviderCredential, window: DateWindow) -> Dict[str, Any]:
        """Fetch one data kind's payload"""

    async def probe(self, credential: ProviderCredential) -> ProbeResult:
        """Validate a credential without pulling metrics."""
        return await self._call(self._probe(credential), operation="probe")

    async def fetch(self, data_kind: DataKind, credential: ProviderCredential, window: DateWindow) -> Dict[str, Any]:
        """Fetch a payload for a data kind, bounded by the provider timeout."""
        return await self._call(self._fetch(data_kind, credential, window), operation=f"fetch {data_kind.value}")

    async def _call(self, awaitable: Awaitable, operation: str):
        self.call_count += 1
        self.last_call_at = datetime.utcnow()
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.error_count += 1
            log.warning(f"{self.name} {operation} timed out after {self.timeout_seconds:.0f}s")
            raise ProviderUnavailable(f"{self.name} timed out after {self.timeout_seconds:.0f}s", provider=self.name)
        except ProviderError as e:
            self.error_count += 1
            log.warning(f"{self.name} {operation} failed: {type(e).__name__}: {e}")
            raise
        except Exception as e:
            self.error_count += 1
            log.error(f"{self.name} {operation} raised {type(e).__name__}: {e}")
            raise ProviderUnavailable(f"{self.name} {operation} failed: {type(e).__name__}: {e}", provider=self.name) from e

    def get_status(self) -> Dict[str, Any]:
        """Get client call counters"""
        return {
            "name": self.name,
            "last_call_at": self.last_call_at,
            "call_count": self.call_count,
            "error_count": self.error_count,
            "error_rate": self.error_count / max(self.call_count, 1),
            "timeout_seconds": self.timeout_seconds,
        }
