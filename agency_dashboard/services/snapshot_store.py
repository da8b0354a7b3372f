"""
Snapshot store for cached provider payloads
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from agency_dashboard.models.base import SessionLocal
from agency_dashboard.models.kinds import DataKind
from agency_dashboard.models.snapshot import MetricSnapshot
from agency_dashboard.utils.date_ranges import DateWindow
from agency_dashboard.utils.logger import log

# Latest plus the one before it, for trend deltas
KEEP_PER_KEY = 2


@dataclass(frozen=True)
class Snapshot:
    data_kind: DataKind
    date_range_key: str
    payload: Dict[str, Any]
    fetched_at: datetime
    range_start: Optional[str] = None
    range_end: Optional[str] = None


def _to_snapshot(row: MetricSnapshot) -> Snapshot:
    return Snapshot(
        data_kind=DataKind(row.data_kind),
        date_range_key=row.date_range_key,
        payload=row.payload or {},
        fetched_at=row.fetched_at,
        range_start=row.range_start,
        range_end=row.range_end,
    )


class SnapshotStore:
    """Append-only metric_snapshots access, one short session per call"""

    def __init__(self, session_factory=SessionLocal, clock: Callable[[], datetime] = datetime.utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def _rows(self, db, client_id: str, data_kind: DataKind, date_range_key: str):
        return db.query(MetricSnapshot).filter(
            MetricSnapshot.client_id == client_id,
            MetricSnapshot.data_kind == DataKind(data_kind).value,
            MetricSnapshot.date_range_key == date_range_key,
        ).order_by(MetricSnapshot.fetched_at.desc(), MetricSnapshot.id.desc())

    def write(self, client_id: str, data_kind: DataKind, date_range_key: str,
              payload: Dict[str, Any], window: Optional[DateWindow] = None) -> Snapshot:
        """Store a new snapshot, superseding (and pruning) older ones for the key."""
        db = self.session_factory()
        try:
            row = MetricSnapshot(
                client_id=client_id,
                data_kind=DataKind(data_kind).value,
                date_range_key=date_range_key,
                range_start=window.start.isoformat() if window else None,
                range_end=window.end.isoformat() if window else None,
                payload=payload,
                fetched_at=self.clock(),
            )
            db.add(row)
            db.flush()

            stale = self._rows(db, client_id, data_kind, date_range_key).offset(KEEP_PER_KEY).all()
            for old in stale:
                db.delete(old)

            db.commit()
            log.debug(
                f"Snapshot written: {client_id}/{DataKind(data_kind).value}/{date_range_key} "
                f"(pruned {len(stale)})"
            )
            return _to_snapshot(row)
        except Exception as e:
            db.rollback()
            log.error(f"Failed to write snapshot for {client_id}/{DataKind(data_kind).value}: {e}")
            raise
        finally:
            db.close()

    def latest_two(self, client_id: str, data_kind: DataKind, date_range_key: str) -> List[Snapshot]:
        """Newest first."""
        db = self.session_factory()
        try:
            rows = self._rows(db, client_id, data_kind, date_range_key).limit(KEEP_PER_KEY).all()
            return [_to_snapshot(row) for row in rows]
        finally:
            db.close()

    def latest(self, client_id: str, data_kind: DataKind, date_range_key: str) -> Optional[Snapshot]:
        snapshots = self.latest_two(client_id, data_kind, date_range_key)
        return snapshots[0] if snapshots else None

    def invalidate(self, client_id: str, data_kinds: Optional[Iterable[DataKind]] = None) -> int:
        """Delete a client's snapshots, optionally only for some data kinds."""
        db = self.session_factory()
        try:
            query = db.query(MetricSnapshot).filter(MetricSnapshot.client_id == client_id)
            if data_kinds is not None:
                query = query.filter(MetricSnapshot.data_kind.in_([DataKind(k).value for k in data_kinds]))
            deleted = query.delete(synchronize_session=False)
            db.commit()
            log.info(f"Invalidated {deleted} snapshots for {client_id}")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
