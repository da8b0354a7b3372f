"""
Cached provider payloads

A snapshot is written once and superseded by a newer row for the same
(client, data kind, date range key); rows are never updated in place.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from datetime import datetime

from agency_dashboard.models.base import Base


class MetricSnapshot(Base):
    """Provider payload for one client, data kind and date range"""
    __tablename__ = "metric_snapshots"
    __table_args__ = (
        Index("ix_metric_snapshots_lookup", "client_id", "data_kind", "date_range_key", "fetched_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    client_id = Column(String, nullable=False)
    data_kind = Column(String, nullable=False)
    date_range_key = Column(String, nullable=False)  # 30d, custom:2026-01-01:2026-01-31, current

    # Window the payload covers (analytics only)
    range_start = Column(String, nullable=True)
    range_end = Column(String, nullable=True)

    payload = Column(JSON, nullable=False)
    fetched_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<MetricSnapshot {self.client_id}/{self.data_kind}/{self.date_range_key} @ {self.fetched_at}>"
