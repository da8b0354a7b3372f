"""
Connection Validator
Checks whether a connection believed valid is actually usable

Uses each provider's cheap probe call rather than a data call. A rejected
credential demotes the connection and clears that provider's cached
metrics; a probe that can't reach the provider changes nothing and is
answered from memory until the validation interval passes.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from agency_dashboard.config import get_settings
from agency_dashboard.connectors.base_connector import BaseProviderClient
from agency_dashboard.connectors.errors import CredentialInvalid, ProviderError
from agency_dashboard.models.kinds import DATA_KINDS_BY_PROVIDER, ProviderKind
from agency_dashboard.services.connection_registry import ConnectionRegistry
from agency_dashboard.services.snapshot_store import SnapshotStore
from agency_dashboard.utils.logger import log
from agency_dashboard.utils.retry import RetryStats, retry_call
from agency_dashboard.utils.ttl_cache import TTLCache

settings = get_settings()


class ValidationStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass
class ValidationOutcome:
    status: ValidationStatus
    error: Optional[str] = None
    cached: bool = False  # Answered without a probe call
    account_label: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "error": self.error,
            "cached": self.cached,
            "account_label": self.account_label,
        }


class ConnectionValidator:
    """Probe-based validation with demotion on rejected credentials"""

    def __init__(
        self,
        registry: ConnectionRegistry,
        snapshots: SnapshotStore,
        clients: Dict[ProviderKind, BaseProviderClient],
        revoked_cache: Optional[TTLCache] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        probe_attempts: Optional[int] = None,
        probe_base_delay: Optional[float] = None,
        min_interval: Optional[timedelta] = None,
    ):
        self.registry = registry
        self.snapshots = snapshots
        self.clients = clients
        self.revoked_cache = revoked_cache or TTLCache(max_entries=500)
        self.unreachable_cache = TTLCache(max_entries=500)
        self.clock = clock
        self.probe_attempts = probe_attempts or settings.probe_max_attempts
        self.probe_base_delay = (
            probe_base_delay if probe_base_delay is not None else settings.probe_base_delay_seconds
        )
        self.min_interval = (
            min_interval if min_interval is not None
            else timedelta(minutes=settings.validation_min_interval_minutes)
        )

    @staticmethod
    def _cache_key(client_id: str, provider_kind: ProviderKind) -> str:
        return f"{client_id}:{ProviderKind(provider_kind).value}"

    def forget(self, client_id: str, provider_kind: ProviderKind) -> None:
        """Drop remembered probe results, e.g. after the client reconnects."""
        self.revoked_cache.delete(self._cache_key(client_id, provider_kind))
        self.unreachable_cache.delete(self._cache_key(client_id, provider_kind))

    def _demote(self, client_id: str, provider_kind: ProviderKind) -> None:
        self.registry.set_invalid(client_id, provider_kind)
        self.snapshots.invalidate(client_id, DATA_KINDS_BY_PROVIDER[ProviderKind(provider_kind)])

    def reject(self, client_id: str, provider_kind: ProviderKind, error: CredentialInvalid) -> ValidationOutcome:
        """Record a credential rejection observed outside a probe (e.g. on a data call)."""
        provider_kind = ProviderKind(provider_kind)
        message = str(error) or "Credential revoked"
        log.warning(f"Credential rejected for {client_id}/{provider_kind.value}: {message}")
        self.revoked_cache.set(
            self._cache_key(client_id, provider_kind), message, ttl=settings.revoked_credential_ttl_minutes * 60
        )
        self._demote(client_id, provider_kind)
        return ValidationOutcome(status=ValidationStatus.INVALID, error=message)

    async def validate(self, client_id: str, provider_kind: ProviderKind, force: bool = False) -> ValidationOutcome:
        """
        Validate a client's provider connection.

        Args:
            client_id: Client identifier
            provider_kind: Provider to check
            force: Probe even if the connection was validated recently

        Returns:
            ValidationOutcome. Never raises for provider failures.
        """
        provider_kind = ProviderKind(provider_kind)
        record = self.registry.get(client_id, provider_kind)

        if not record.has_credential:
            return ValidationOutcome(status=ValidationStatus.INVALID, error="Not connected", cached=True)

        cache_key = self._cache_key(client_id, provider_kind)
        revoked = self.revoked_cache.get(cache_key)
        if revoked:
            log.info(f"Skipping probe for {client_id}/{provider_kind.value}: credential recently revoked")
            if record.believed_valid:
                self._demote(client_id, provider_kind)
            return ValidationOutcome(status=ValidationStatus.INVALID, error=revoked, cached=True)

        if (
            not force
            and record.believed_valid
            and record.last_validated_at
            and self.clock() - record.last_validated_at < self.min_interval
        ):
            return ValidationOutcome(
                status=ValidationStatus.VALID, cached=True, account_label=record.account_label
            )

        unreachable = None if force else self.unreachable_cache.get(cache_key)
        if unreachable and self.clock() - unreachable[1] < self.min_interval:
            log.debug(f"Skipping probe for {client_id}/{provider_kind.value}: provider unreachable at {unreachable[1]}")
            return ValidationOutcome(status=ValidationStatus.UNKNOWN, error=unreachable[0], cached=True)

        credential = self.registry.credential_for(client_id, provider_kind)
        client = self.clients[provider_kind]
        stats = RetryStats()
        try:
            result = await retry_call(
                client.probe,
                credential,
                max_attempts=self.probe_attempts,
                base_delay=self.probe_base_delay,
                stats=stats,
            )
        except CredentialInvalid as e:
            log.warning(f"Validation INVALID for {client_id}/{provider_kind.value}")
            return self.reject(client_id, provider_kind, e)
        except ProviderError as e:
            log.warning(
                f"Validation UNKNOWN for {client_id}/{provider_kind.value}: {e} "
                f"(retry stats: {stats.to_dict()})"
            )
            self.unreachable_cache.set(
                cache_key, (str(e), self.clock()), ttl=self.min_interval.total_seconds()
            )
            return ValidationOutcome(status=ValidationStatus.UNKNOWN, error=str(e))

        self.unreachable_cache.delete(cache_key)
        self.registry.set_valid(client_id, provider_kind, result.account_label)
        self.registry.mark_validated(client_id, provider_kind, result.account_label, validated_at=self.clock())
        log.info(f"Validation VALID for {client_id}/{provider_kind.value} ({stats.attempts} attempts)")
        return ValidationOutcome(status=ValidationStatus.VALID, account_label=result.account_label)
