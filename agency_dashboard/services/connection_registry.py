"""
Connection Registry
Durable per-(client, provider) connection state

Pure storage: callers decide when a connection is valid. Marking a
connection invalid never touches cached metrics.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from agency_dashboard.connectors.base_connector import ProviderCredential
from agency_dashboard.models.base import SessionLocal
from agency_dashboard.models.connection import ProviderConnection
from agency_dashboard.models.kinds import ProviderKind
from agency_dashboard.utils.logger import log


@dataclass
class ConnectionRecord:
    """Read-only view of a client's provider connection"""
    client_id: str
    provider_kind: ProviderKind
    has_credential: bool = False
    believed_valid: bool = False
    last_validated_at: Optional[datetime] = None
    account_label: Optional[str] = None
    connected_at: Optional[datetime] = None

    @property
    def state(self) -> str:
        if self.believed_valid:
            return "connected"
        if self.has_credential:
            return "reconnect_required"
        return "not_connected"

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "provider_kind": self.provider_kind.value,
            "state": self.state,
            "has_credential": self.has_credential,
            "believed_valid": self.believed_valid,
            "last_validated_at": self.last_validated_at.isoformat() if self.last_validated_at else None,
            "account_label": self.account_label,
            "connected_at": self.connected_at.isoformat() if self.connected_at else None,
        }


class ConnectionRegistry:
    """Reads and writes provider_connections rows, one short session per call"""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def _find(self, db, client_id: str, provider_kind: ProviderKind) -> Optional[ProviderConnection]:
        return db.query(ProviderConnection).filter(
            ProviderConnection.client_id == client_id,
            ProviderConnection.provider_kind == ProviderKind(provider_kind).value,
        ).first()

    def _to_record(self, client_id: str, provider_kind: ProviderKind, row: Optional[ProviderConnection]) -> ConnectionRecord:
        if row is None:
            return ConnectionRecord(client_id=client_id, provider_kind=ProviderKind(provider_kind))
        return ConnectionRecord(
            client_id=client_id,
            provider_kind=ProviderKind(provider_kind),
            has_credential=bool(row.has_credential),
            # believed_valid implies has_credential
            believed_valid=bool(row.believed_valid and row.has_credential),
            last_validated_at=row.last_validated_at,
            account_label=row.account_label,
            connected_at=row.connected_at,
        )

    def get(self, client_id: str, provider_kind: ProviderKind) -> ConnectionRecord:
        """Return the connection; a missing row reads as never connected."""
        db = self.session_factory()
        try:
            return self._to_record(client_id, provider_kind, self._find(db, client_id, provider_kind))
        finally:
            db.close()

    def credential_for(self, client_id: str, provider_kind: ProviderKind) -> Optional[ProviderCredential]:
        db = self.session_factory()
        try:
            row = self._find(db, client_id, provider_kind)
            if row is None or not row.has_credential:
                return None
            return ProviderCredential(token=row.token, resource=row.resource)
        finally:
            db.close()

    def _update(self, client_id: str, provider_kind: ProviderKind, create: bool = False, **fields) -> bool:
        db = self.session_factory()
        try:
            row = self._find(db, client_id, provider_kind)
            if row is None:
                if not create:
                    return False
                row = ProviderConnection(client_id=client_id, provider_kind=ProviderKind(provider_kind).value)
                db.add(row)
            for name, value in fields.items():
                setattr(row, name, value)
            db.commit()
            return True
        except Exception as e:
            db.rollback()
            log.error(f"Failed to update connection {client_id}/{ProviderKind(provider_kind).value}: {e}")
            raise
        finally:
            db.close()

    def store_credential(self, client_id: str, provider_kind: ProviderKind, credential: ProviderCredential) -> None:
        """Save a credential from an explicit connect; validity is set separately."""
        self._update(
            client_id, provider_kind, create=True,
            token=credential.token,
            resource=credential.resource,
            has_credential=True,
            believed_valid=False,
            account_label=None,
            last_validated_at=None,
            connected_at=datetime.utcnow(),
        )
        log.info(f"Credential stored for {client_id}/{ProviderKind(provider_kind).value}")

    def set_valid(self, client_id: str, provider_kind: ProviderKind, account_label: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            row = self._find(db, client_id, provider_kind)
            if row is None or not row.has_credential:
                # A connection without a credential can't be believed valid
                log.warning(f"set_valid ignored for {client_id}/{ProviderKind(provider_kind).value}: no credential")
                return
            row.believed_valid = True
            if account_label:
                row.account_label = account_label
            db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Failed to mark connection valid for {client_id}: {e}")
            raise
        finally:
            db.close()

    def set_invalid(self, client_id: str, provider_kind: ProviderKind) -> None:
        if self._update(client_id, provider_kind, believed_valid=False):
            log.warning(f"Connection {client_id}/{ProviderKind(provider_kind).value} marked invalid")

    def mark_validated(self, client_id: str, provider_kind: ProviderKind, account_label: Optional[str] = None,
                       validated_at: Optional[datetime] = None) -> None:
        """Stamp a successful probe."""
        fields = {"last_validated_at": validated_at or datetime.utcnow()}
        if account_label:
            fields["account_label"] = account_label
        self._update(client_id, provider_kind, **fields)

    def clear_credential(self, client_id: str, provider_kind: ProviderKind) -> None:
        if self._update(
            client_id, provider_kind,
            token=None,
            resource=None,
            has_credential=False,
            believed_valid=False,
            last_validated_at=None,
            account_label=None,
        ):
            log.info(f"Credential cleared for {client_id}/{ProviderKind(provider_kind).value}")
