"""
Auto-Recovery Orchestrator
Turns "connected but no data" into at most one automatic refresh per key

Every refresh, automatic or user-triggered, passes the throttle gate. Once
admitted it runs to completion even if the caller goes away.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional
import asyncio

from agency_dashboard.connectors.base_connector import BaseProviderClient
from agency_dashboard.connectors.errors import CredentialInvalid, ProviderError, ProviderPartialData
from agency_dashboard.models.kinds import (
    DATA_KINDS_BY_PROVIDER,
    DataKind,
    ProviderKind,
    RANGE_INDEPENDENT_KEY,
    is_range_independent,
    provider_for,
)
from agency_dashboard.services.connection_registry import ConnectionRegistry
from agency_dashboard.services.connection_validator import ConnectionValidator, ValidationStatus
from agency_dashboard.services.recovery_marks import RecoveryAttemptMarks, recovery_key
from agency_dashboard.services.snapshot_store import SnapshotStore
from agency_dashboard.services.summary_aggregator import (
    DashboardSummary,
    SummaryAggregator,
    incomplete_providers,
    stale_data_kinds,
)
from agency_dashboard.services.throttle_gate import ThrottleGate, describe_skip
from agency_dashboard.utils.date_ranges import DateWindow, resolve_range_key
from agency_dashboard.utils.logger import log

PROVIDER_LABELS = {
    ProviderKind.ANALYTICS: "Google Analytics",
    ProviderKind.SEO: "SEO",
}


@dataclass
class RefreshOutcome:
    """Result of one gated refresh of a data kind"""
    data_kind: DataKind
    applied: bool = False
    skipped_reason: Optional[str] = None  # Gate denial or missing connection
    error: Optional[str] = None  # Provider failure, as a soft warning
    credential_rejected: bool = False


class RecoveryOrchestrator:
    """Gated refreshes plus the at-most-once recovery state machine"""

    def __init__(
        self,
        registry: ConnectionRegistry,
        snapshots: SnapshotStore,
        gate: ThrottleGate,
        validator: ConnectionValidator,
        aggregator: SummaryAggregator,
        clients: Dict[ProviderKind, BaseProviderClient],
        marks: Optional[RecoveryAttemptMarks] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.registry = registry
        self.snapshots = snapshots
        self.gate = gate
        self.validator = validator
        self.aggregator = aggregator
        self.clients = clients
        self.marks = marks or RecoveryAttemptMarks()
        self.clock = clock

    async def refresh_data_kind(self, client_id: str, data_kind: DataKind, window: DateWindow) -> RefreshOutcome:
        """
        Refresh one data kind through the throttle gate.

        Provider failures come back as RefreshOutcome.error; nothing raises.
        """
        data_kind = DataKind(data_kind)
        provider_kind = provider_for(data_kind)
        record = self.registry.get(client_id, provider_kind)
        if not record.believed_valid:
            reason = "Reconnect required" if record.has_credential else "Not connected"
            return RefreshOutcome(data_kind=data_kind, skipped_reason=f"{PROVIDER_LABELS[provider_kind]}: {reason}")

        decision = self.gate.try_acquire(client_id, data_kind)
        if not decision.allowed:
            return RefreshOutcome(data_kind=data_kind, skipped_reason=describe_skip(decision))

        # Admitted: finish and cache the result even if the caller is cancelled
        task = asyncio.ensure_future(self._run_refresh(client_id, data_kind, provider_kind, window))
        return await asyncio.shield(task)

    async def _run_refresh(self, client_id: str, data_kind: DataKind, provider_kind: ProviderKind,
                           window: DateWindow) -> RefreshOutcome:
        outcome = RefreshOutcome(data_kind=data_kind)
        label = PROVIDER_LABELS[provider_kind]
        credential = self.registry.credential_for(client_id, provider_kind)
        if credential is None:
            outcome.skipped_reason = f"{label}: Not connected"
            return outcome

        try:
            payload = await self.clients[provider_kind].fetch(data_kind, credential, window)
        except CredentialInvalid as e:
            self.validator.reject(client_id, provider_kind, e)
            outcome.error = f"{label} connection needs to be reconnected"
            outcome.credential_rejected = True
            return outcome
        except ProviderPartialData as e:
            log.warning(f"Partial {data_kind.value} data for {client_id}, keeping cached snapshot: {e}")
            outcome.error = f"{label} returned incomplete data; showing cached data"
            return outcome
        except ProviderError as e:
            log.warning(f"{data_kind.value} refresh failed for {client_id}: {e}")
            outcome.error = f"{label} is temporarily unavailable; showing cached data"
            return outcome

        key = RANGE_INDEPENDENT_KEY if is_range_independent(data_kind) else window.key
        self.snapshots.write(client_id, data_kind, key, payload, window=None if is_range_independent(data_kind) else window)
        outcome.applied = True
        log.info(f"Refreshed {data_kind.value} for {client_id} ({key})")
        return outcome

    async def ensure_fresh(self, client_id: str, date_range_key: str) -> DashboardSummary:
        """
        Compose the dashboard, running the one-time recovery refresh if needed.

        Raises:
            InvalidRequest: malformed date range key
        """
        summary = self.aggregator.compose(client_id, date_range_key)
        range_key = summary.date_range_key
        window = resolve_range_key(range_key)
        warnings: List[str] = []

        incomplete = incomplete_providers(summary)
        recovery = "fresh"

        if incomplete:
            if self.marks.try_mark(client_id, range_key):
                log.info(
                    f"Recovery refresh for {recovery_key(client_id, range_key)}: "
                    f"{sorted(p.value for p in incomplete)}"
                )
                applied = False
                for provider_kind in sorted(incomplete, key=lambda p: p.value):
                    for data_kind in self._incomplete_kinds(summary, provider_kind):
                        outcome = await self.refresh_data_kind(client_id, data_kind, window)
                        applied = applied or outcome.applied
                        if outcome.error:
                            warnings.append(outcome.error)
                        elif outcome.skipped_reason:
                            log.info(f"Recovery for {client_id}/{data_kind.value} skipped: {outcome.skipped_reason}")
                summary = self.aggregator.compose(client_id, range_key)
                recovery = "recovered" if applied and not incomplete_providers(summary) else "exhausted"
            else:
                log.debug(f"Recovery already attempted for {recovery_key(client_id, range_key)}")
                recovery = "exhausted"

        # Complete but old analytics: freshness refresh, throttled by its guard window only
        aged = stale_data_kinds(summary, now=self.clock())
        if ProviderKind.ANALYTICS not in incomplete and DataKind.ANALYTICS_SUMMARY in aged:
            outcome = await self.refresh_data_kind(client_id, DataKind.ANALYTICS_SUMMARY, window)
            if outcome.error:
                warnings.append(outcome.error)
            if outcome.applied or outcome.credential_rejected:
                summary = self.aggregator.compose(client_id, range_key)

        # Believed valid yet still empty: confirm the connection is real
        demoted = False
        for provider_kind in sorted(incomplete_providers(summary), key=lambda p: p.value):
            validation = await self.validator.validate(client_id, provider_kind)
            if validation.status is ValidationStatus.INVALID:
                demoted = True
                warnings.append(f"{PROVIDER_LABELS[provider_kind]} connection needs to be reconnected")
            elif validation.status is ValidationStatus.UNKNOWN:
                warnings.append(f"Could not verify {PROVIDER_LABELS[provider_kind]} connection: {validation.error}")
        if demoted:
            summary = self.aggregator.compose(client_id, range_key)

        summary.warnings = _dedupe(warnings)
        summary.recovery = recovery
        return summary

    def _incomplete_kinds(self, summary: DashboardSummary, provider_kind: ProviderKind) -> List[DataKind]:
        if provider_kind is ProviderKind.ANALYTICS:
            return [DataKind.ANALYTICS_SUMMARY]
        kinds = stale_data_kinds(summary, now=self.clock())
        return [kind for kind in DATA_KINDS_BY_PROVIDER[provider_kind] if kind in kinds]

    def forget_client(self, client_id: str) -> int:
        """Clear a client's recovery marks."""
        cleared = self.marks.clear_client(client_id)
        if cleared:
            log.info(f"Cleared {cleared} recovery marks for {client_id}")
        return cleared


def _dedupe(messages: List[str]) -> List[str]:
    seen = []
    for message in messages:
        if message not in seen:
            seen.append(message)
    return seen
