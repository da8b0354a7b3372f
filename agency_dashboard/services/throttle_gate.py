"""
Throttle Gate
Per-(client, data kind) cooldown on expensive provider refreshes

The refresh timestamp is stamped when a refresh is admitted, in the same
statement that checks the cooldown, so concurrent callers can't both pass.
A failed provider call still consumes the window.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional
import math
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from agency_dashboard.config import get_settings
from agency_dashboard.models.base import SessionLocal
from agency_dashboard.models.connection import ThrottleWindow
from agency_dashboard.models.kinds import DataKind
from agency_dashboard.utils.logger import log

settings = get_settings()


@dataclass(frozen=True)
class GateDecision:
    """Outcome of an acquire attempt; a denial is not an error"""
    allowed: bool
    retry_after: Optional[timedelta] = None


def default_cooldowns() -> dict:
    return {
        DataKind.PAGE_METRICS: timedelta(hours=settings.page_metrics_cooldown_hours),
        DataKind.BACKLINKS: timedelta(hours=settings.backlinks_cooldown_hours),
        DataKind.ANALYTICS_SUMMARY: timedelta(minutes=settings.analytics_refresh_guard_minutes),
    }


def describe_skip(decision: GateDecision) -> Optional[str]:
    """Human-readable reason for a denied refresh."""
    if decision.allowed:
        return None
    remaining = decision.retry_after or timedelta(0)
    hours = remaining.total_seconds() / 3600
    if hours >= 1:
        return f"Using cached data; next refresh available in {math.ceil(hours)} hours"
    minutes = max(1, math.ceil(remaining.total_seconds() / 60))
    return f"Using cached data; next refresh available in {minutes} minutes"


class ThrottleGate:
    """Atomic acquire-and-stamp over the throttle_windows table"""

    def __init__(self, session_factory=SessionLocal, clock: Callable[[], datetime] = datetime.utcnow,
                 cooldowns: Optional[dict] = None):
        self.session_factory = session_factory
        self.clock = clock
        self.cooldowns = cooldowns or default_cooldowns()

    def cooldown_for(self, data_kind: DataKind) -> timedelta:
        return self.cooldowns[DataKind(data_kind)]

    def _stamp_if_expired(self, db, client_id: str, data_kind: DataKind, now: datetime, cooldown: timedelta) -> bool:
        result = db.execute(
            update(ThrottleWindow)
            .where(
                ThrottleWindow.client_id == client_id,
                ThrottleWindow.data_kind == data_kind.value,
                or_(
                    ThrottleWindow.last_refresh_at.is_(None),
                    ThrottleWindow.last_refresh_at <= now - cooldown,
                ),
            )
            .values(last_refresh_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _last_refresh(self, db, client_id: str, data_kind: DataKind) -> Optional[datetime]:
        row = db.query(ThrottleWindow).filter(
            ThrottleWindow.client_id == client_id,
            ThrottleWindow.data_kind == data_kind.value,
        ).first()
        return row.last_refresh_at if row else None

    def try_acquire(self, client_id: str, data_kind: DataKind) -> GateDecision:
        """
        Admit a refresh if the cooldown has elapsed, stamping it atomically.

        Returns:
            GateDecision(allowed=True) when admitted, otherwise the time
            remaining until the next refresh may run.
        """
        data_kind = DataKind(data_kind)
        now = self.clock()
        cooldown = self.cooldown_for(data_kind)

        db = self.session_factory()
        try:
            if self._stamp_if_expired(db, client_id, data_kind, now, cooldown):
                db.commit()
                log.info(f"Throttle gate admitted {data_kind.value} refresh for {client_id}")
                return GateDecision(allowed=True)
            db.rollback()

            last_refresh = self._last_refresh(db, client_id, data_kind)
            if last_refresh is None:
                # First ever acquisition for this key
                try:
                    db.add(ThrottleWindow(
                        client_id=client_id,
                        data_kind=data_kind.value,
                        last_refresh_at=now,
                        updated_at=now,
                    ))
                    db.commit()
                    log.info(f"Throttle gate admitted first {data_kind.value} refresh for {client_id}")
                    return GateDecision(allowed=True)
                except IntegrityError:
                    # Another caller inserted first; fall back to the conditional update
                    db.rollback()
                    if self._stamp_if_expired(db, client_id, data_kind, now, cooldown):
                        db.commit()
                        return GateDecision(allowed=True)
                    db.rollback()
                    last_refresh = self._last_refresh(db, client_id, data_kind)

            retry_after = (last_refresh + cooldown - now) if last_refresh else cooldown
            retry_after = max(retry_after, timedelta(0))
            log.info(
                f"Throttle gate denied {data_kind.value} refresh for {client_id}: "
                f"retry in {retry_after.total_seconds() / 3600:.1f}h"
            )
            return GateDecision(allowed=False, retry_after=retry_after)
        except Exception as e:
            db.rollback()
            log.error(f"Throttle gate failed for {client_id}/{data_kind.value}: {e}")
            raise
        finally:
            db.close()

    def last_refresh_at(self, client_id: str, data_kind: DataKind) -> Optional[datetime]:
        db = self.session_factory()
        try:
            return self._last_refresh(db, client_id, DataKind(data_kind))
        finally:
            db.close()

    def reset(self, client_id: str, data_kinds: Optional[Iterable[DataKind]] = None) -> int:
        """Delete throttle windows for a client. Administrative use only."""
        db = self.session_factory()
        try:
            query = db.query(ThrottleWindow).filter(ThrottleWindow.client_id == client_id)
            if data_kinds is not None:
                query = query.filter(ThrottleWindow.data_kind.in_([DataKind(k).value for k in data_kinds]))
            deleted = query.delete(synchronize_session=False)
            db.commit()
            log.info(f"Reset {deleted} throttle windows for {client_id}")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
