"""
Dashboard Service
Boundary operations for the dashboard refresh core

Wires the registry, throttle gate, snapshot store, validator, aggregator and
orchestrator together. Provider failures never escape as exceptions; they
come back as warnings, skip reasons or section states.
"""
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from agency_dashboard.connectors import default_provider_clients
from agency_dashboard.connectors.base_connector import BaseProviderClient, ProviderCredential
from agency_dashboard.connectors.errors import CredentialInvalid, InvalidRequest
from agency_dashboard.models.base import SessionLocal
from agency_dashboard.models.kinds import DATA_KINDS_BY_PROVIDER, DataKind, ProviderKind
from agency_dashboard.services.connection_registry import ConnectionRegistry
from agency_dashboard.services.connection_validator import ConnectionValidator, ValidationStatus
from agency_dashboard.services.recovery_marks import RecoveryAttemptMarks
from agency_dashboard.services.recovery_orchestrator import RecoveryOrchestrator
from agency_dashboard.services.snapshot_store import SnapshotStore
from agency_dashboard.services.summary_aggregator import DashboardSummary, SummaryAggregator
from agency_dashboard.services.throttle_gate import ThrottleGate
from agency_dashboard.utils.date_ranges import resolve_range_key
from agency_dashboard.utils.helpers import normalize_domain
from agency_dashboard.utils.logger import log

DEFAULT_RANGE_KEY = "30d"


@dataclass
class RefreshResult:
    applied: bool
    skipped_reason: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"applied": self.applied, "skipped_reason": self.skipped_reason, "error": self.error}


def parse_provider_kind(value: Any) -> ProviderKind:
    try:
        return ProviderKind(value)
    except ValueError:
        valid = ", ".join(kind.value for kind in ProviderKind)
        raise InvalidRequest(f"Unknown provider '{value}'. Expected one of: {valid}")


def parse_data_kind(value: Any) -> DataKind:
    try:
        return DataKind(value)
    except ValueError:
        valid = ", ".join(kind.value for kind in DataKind)
        raise InvalidRequest(f"Unknown data kind '{value}'. Expected one of: {valid}")


class DashboardService:
    """Client-facing operations over the refresh core"""

    def __init__(
        self,
        session_factory=SessionLocal,
        clients: Optional[Dict[ProviderKind, BaseProviderClient]] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        probe_base_delay: Optional[float] = None,
    ):
        self.clients = clients if clients is not None else default_provider_clients()
        self.registry = ConnectionRegistry(session_factory)
        self.snapshots = SnapshotStore(session_factory, clock=clock)
        self.gate = ThrottleGate(session_factory, clock=clock)
        self.validator = ConnectionValidator(
            self.registry,
            self.snapshots,
            self.clients,
            clock=clock,
            probe_base_delay=probe_base_delay,
        )
        self.aggregator = SummaryAggregator(self.registry, self.snapshots)
        self.marks = RecoveryAttemptMarks()
        self.orchestrator = RecoveryOrchestrator(
            self.registry,
            self.snapshots,
            self.gate,
            self.validator,
            self.aggregator,
            self.clients,
            marks=self.marks,
            clock=clock,
        )

    async def get_dashboard_summary(self, client_id: str, date_range_key: str = DEFAULT_RANGE_KEY) -> DashboardSummary:
        """
        Dashboard for a client and date range, recovering missing data once.

        Raises:
            InvalidRequest: malformed date range key
        """
        return await self.orchestrator.ensure_fresh(client_id, date_range_key)

    async def force_refresh(self, client_id: str, data_kind: Any,
                            date_range_key: str = DEFAULT_RANGE_KEY) -> RefreshResult:
        """
        User-triggered refresh of one data kind, still subject to its cooldown.

        The date range only matters for analytics; SEO data is range-independent.
        """
        data_kind = parse_data_kind(data_kind)
        window = resolve_range_key(date_range_key)
        outcome = await self.orchestrator.refresh_data_kind(client_id, data_kind, window)
        log.info(
            f"Force refresh {client_id}/{data_kind.value}: applied={outcome.applied} "
            f"skipped={outcome.skipped_reason} error={outcome.error}"
        )
        return RefreshResult(applied=outcome.applied, skipped_reason=outcome.skipped_reason, error=outcome.error)

    async def get_connection_status(self, client_id: str, provider_kind: Any, validate: bool = False) -> Dict[str, Any]:
        provider_kind = parse_provider_kind(provider_kind)
        status: Dict[str, Any] = {}
        if validate:
            outcome = await self.validator.validate(client_id, provider_kind)
            status["validation"] = outcome.to_dict()

        record = self.registry.get(client_id, provider_kind)
        status.update(record.to_dict())
        status["connected"] = record.believed_valid
        status["data_kinds"] = {
            kind.value: {"last_refresh_at": _iso(self.gate.last_refresh_at(client_id, kind))}
            for kind in DATA_KINDS_BY_PROVIDER[provider_kind]
        }
        return status

    async def connect(self, client_id: str, provider_kind: Any, token: Optional[str],
                      resource: Optional[str]) -> Dict[str, Any]:
        """
        Store a credential and confirm it with a probe.

        Raises:
            InvalidRequest: missing resource
            CredentialInvalid: the provider rejected the credential
        """
        provider_kind = parse_provider_kind(provider_kind)
        resource = (resource or "").strip()
        if provider_kind is ProviderKind.SEO:
            resource = normalize_domain(resource)
        if not resource:
            what = "GA4 property id" if provider_kind is ProviderKind.ANALYTICS else "target domain"
            raise InvalidRequest(f"A {what} is required to connect {provider_kind.value}")

        # Cached data may belong to a previous property or domain
        self.snapshots.invalidate(client_id, DATA_KINDS_BY_PROVIDER[provider_kind])
        self.orchestrator.forget_client(client_id)
        self.validator.forget(client_id, provider_kind)

        self.registry.store_credential(client_id, provider_kind, ProviderCredential(token=token, resource=resource))
        self.registry.set_valid(client_id, provider_kind)

        outcome = await self.validator.validate(client_id, provider_kind, force=True)
        if outcome.status is ValidationStatus.INVALID:
            raise CredentialInvalid(outcome.error or "Credential rejected", provider=provider_kind.value)

        warnings: List[str] = []
        if outcome.status is ValidationStatus.UNKNOWN:
            warnings.append(f"Connected, but the provider could not be reached to verify it: {outcome.error}")

        log.info(f"Connected {client_id}/{provider_kind.value} ({outcome.status.value})")
        status = await self.get_connection_status(client_id, provider_kind)
        status["validation"] = outcome.to_dict()
        status["warnings"] = warnings
        return status

    def disconnect(self, client_id: str, provider_kind: Any) -> Dict[str, Any]:
        provider_kind = parse_provider_kind(provider_kind)
        self.registry.clear_credential(client_id, provider_kind)
        cleared = self.snapshots.invalidate(client_id, DATA_KINDS_BY_PROVIDER[provider_kind])
        marks = self.orchestrator.forget_client(client_id)
        self.validator.forget(client_id, provider_kind)
        log.info(f"Disconnected {client_id}/{provider_kind.value}")
        return {
            "client_id": client_id,
            "provider_kind": provider_kind.value,
            "connected": False,
            "snapshots_cleared": cleared,
            "recovery_marks_cleared": marks,
        }

    def invalidate_cache(self, client_id: str) -> Dict[str, Any]:
        """Drop cached snapshots and recovery marks; throttle windows stay."""
        cleared = self.snapshots.invalidate(client_id)
        marks = self.orchestrator.forget_client(client_id)
        return {"client_id": client_id, "snapshots_cleared": cleared, "recovery_marks_cleared": marks}

    def get_status(self) -> Dict[str, Any]:
        return {kind.value: client.get_status() for kind, client in self.clients.items()}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@lru_cache()
def get_dashboard_service() -> DashboardService:
    """Process-wide service; recovery marks live as long as the process."""
    return DashboardService()
