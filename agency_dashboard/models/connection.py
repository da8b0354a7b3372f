"""
Provider connection and refresh throttle models

One row per (client, provider) for connection state and one row per
(client, data kind) for the last admitted provider refresh.
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, UniqueConstraint
from datetime import datetime

from agency_dashboard.models.base import Base


class ProviderConnection(Base):
    """Stored credential and believed validity of a client's provider link"""
    __tablename__ = "provider_connections"
    __table_args__ = (
        UniqueConstraint("client_id", "provider_kind", name="uq_provider_connections_client_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)

    client_id = Column(String, index=True, nullable=False)
    provider_kind = Column(String, nullable=False)  # analytics, seo

    # Credential
    token = Column(Text, nullable=True)
    # OAuth refresh token (analytics) or API login (seo)
    resource = Column(String, nullable=True)
    # GA4 property id (analytics) or target domain (seo)
    has_credential = Column(Boolean, default=False, nullable=False)

    # Validity
    believed_valid = Column(Boolean, default=False, nullable=False)
    last_validated_at = Column(DateTime, nullable=True)
    account_label = Column(String, nullable=True)

    # Timestamps
    connected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ProviderConnection {self.client_id}/{self.provider_kind} valid={self.believed_valid}>"


class ThrottleWindow(Base):
    """Timestamp of the last admitted provider refresh for a data kind"""
    __tablename__ = "throttle_windows"
    __table_args__ = (
        UniqueConstraint("client_id", "data_kind", name="uq_throttle_windows_client_kind"),
    )

    id = Column(Integer, primary_key=True, index=True)

    client_id = Column(String, index=True, nullable=False)
    data_kind = Column(String, nullable=False)  # page_metrics, backlinks, analytics_summary

    # Stamped at acquisition, never rolled back on provider failure
    last_refresh_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<ThrottleWindow {self.client_id}/{self.data_kind} at={self.last_refresh_at}>"
