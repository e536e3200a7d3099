"""
Stale-entity reaper.

Two independent sweeps, safe to run any number of times:

* diner reclamation: active diners of active sessions whose ``last_active``
  is older than the idle threshold are deactivated (soft, never deleted);
* retention purge: abandoned cart lines and closed sessions older than the
  retention window are deleted in bounded batches, each batch its own
  transaction, under an overall wall-clock budget.

Audit logs are never purged.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from dineflow import config
from dineflow.db.models import (
    Diner, DiningSession, Notification, Order, PaymentRequest, Receipt, RestaurantTable, SplitBill,
)
from dineflow.services.events import queue_audit
from dineflow.services.splits import dissolve_order_splits
from dineflow.statuses import OrderStatus, SessionStatus
from dineflow.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

REAPER_ACTOR = "reaper"


@dataclass
class ReaperReport:
    diners_deactivated: int = 0
    deactivated: List[Dict[str, Any]] = field(default_factory=list)
    deleted: Dict[str, int] = field(default_factory=lambda: {"cart_orders": 0, "sessions": 0})
    batches: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    timed_out: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diners_deactivated": self.diners_deactivated,
            "deactivated": self.deactivated,
            "deleted": dict(self.deleted),
            "batches": self.batches,
            "errors": list(self.errors),
            "timed_out": self.timed_out,
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ---------- Transactional steps (run through storage.run) ----------

def deactivate_stale_diners(db: Session, now: datetime, stale_after: timedelta) -> List[Dict[str, Any]]:
    """
    Deactivate idle diners of active sessions. One audit entry per sweep,
    and only when something was touched.
    """
    cutoff = now - stale_after
    rows = db.execute(
        select(Diner.id, Diner.name, Diner.session_id, Diner.last_active, RestaurantTable.table_number)
        .join(DiningSession, Diner.session_id == DiningSession.id)
        .join(RestaurantTable, DiningSession.table_id == RestaurantTable.id)
        .where(
            DiningSession.status == SessionStatus.ACTIVE.value,
            Diner.is_active.is_(True),
            Diner.last_active < cutoff,
        )
        .order_by(Diner.id)
    ).all()
    if not rows:
        return []

    result = db.execute(
        update(Diner)
        .where(Diner.id.in_([r.id for r in rows]), Diner.is_active.is_(True), Diner.last_active < cutoff)
        .values(is_active=False, logout_time=now)
    )
    touched = [
        {
            "diner_id": r.id,
            "name": r.name,
            "session_id": r.session_id,
            "table_number": r.table_number,
            "idle_minutes": int((now - r.last_active).total_seconds() // 60),
        }
        for r in rows
    ]
    if result.rowcount != len(rows):
        # Someone came back between the select and the update.
        still_inactive = set(db.execute(
            select(Diner.id).where(Diner.id.in_([r.id for r in rows]), Diner.logout_time == now)
        ).scalars().all())
        touched = [t for t in touched if t["diner_id"] in still_inactive]

    if touched:
        queue_audit(
            db,
            "stale_diners_deactivated",
            None,
            {"count": len(touched), "cutoff": cutoff.isoformat(), "diners": touched},
            REAPER_ACTOR,
        )
    return touched


def delete_expired_cart_batch(db: Session, cutoff: datetime, limit: int) -> int:
    ids = list(db.execute(
        select(Order.id)
        .where(Order.status == OrderStatus.CART.value, Order.created_at < cutoff)
        .order_by(Order.id)
        .limit(limit)
    ).scalars().all())
    if not ids:
        return 0
    dissolve_order_splits(db, ids)
    result = db.execute(
        delete(Order).where(
            Order.id.in_(ids),
            Order.status == OrderStatus.CART.value,
            Order.created_at < cutoff,
        )
    )
    return result.rowcount or 0


def delete_expired_session_batch(db: Session, cutoff: datetime, limit: int) -> int:
    """Delete closed sessions (children first) that ended before ``cutoff``."""
    closed = [SessionStatus.COMPLETED.value, SessionStatus.CANCELLED.value]
    ids = list(db.execute(
        select(DiningSession.id)
        .where(
            DiningSession.status.in_(closed),
            func.coalesce(DiningSession.ended_at, DiningSession.started_at) < cutoff,
        )
        .order_by(DiningSession.id)
        .limit(limit)
    ).scalars().all())
    if not ids:
        return 0

    db.execute(delete(Notification).where(Notification.session_id.in_(ids)))
    db.execute(delete(Receipt).where(Receipt.session_id.in_(ids)))
    db.execute(delete(PaymentRequest).where(PaymentRequest.session_id.in_(ids)))
    db.execute(delete(SplitBill).where(SplitBill.session_id.in_(ids)))
    db.execute(delete(Order).where(Order.session_id.in_(ids)))
    db.execute(delete(Diner).where(Diner.session_id.in_(ids)))
    db.execute(
        update(RestaurantTable)
        .where(RestaurantTable.current_session_id.in_(ids))
        .values(occupied=False, current_session_id=None, current_pin=None)
    )
    result = db.execute(
        delete(DiningSession).where(DiningSession.id.in_(ids), DiningSession.status.in_(closed))
    )
    return result.rowcount or 0


# ---------- Orchestration ----------

class StaleEntityReaper:
    """Runs the sweeps against a storage, one transaction per step/batch."""

    def __init__(
        self,
        storage,
        *,
        stale_after: timedelta = timedelta(minutes=config.STALE_DINER_MINUTES),
        retention: timedelta = timedelta(hours=config.RETENTION_HOURS),
        batch_size: int = config.PURGE_BATCH_SIZE,
        batch_delay: float = config.PURGE_BATCH_DELAY_SECONDS,
        time_budget: float = config.PURGE_TIME_BUDGET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.storage = storage
        self.stale_after = stale_after
        self.retention = retention
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.time_budget = time_budget
        self.clock = clock
        self.sleep = sleep

    def reclaim_diners(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        return self.storage.run(deactivate_stale_diners, now or utcnow(), self.stale_after)

    def purge_expired(self, report: ReaperReport, now: Optional[datetime] = None) -> ReaperReport:
        cutoff = (now or utcnow()) - self.retention
        deadline = self.clock() + self.time_budget
        targets = (
            ("cart_orders", delete_expired_cart_batch),
            ("sessions", delete_expired_session_batch),
        )
        for name, batch in targets:
            while True:
                if self.clock() >= deadline:
                    report.timed_out = True
                    logger.warning("Reaper time budget of %ss exhausted during %s", self.time_budget, name)
                    return report
                try:
                    deleted = self.storage.run(batch, cutoff, self.batch_size)
                except Exception as e:
                    logger.error("Reaper batch for %s failed: %s", name, e)
                    report.errors.append({"target": name, "error": str(e)})
                    break
                report.batches += 1
                report.deleted[name] = report.deleted.get(name, 0) + deleted
                if deleted < self.batch_size:
                    break
                if self.batch_delay:
                    self.sleep(self.batch_delay)
        return report

    def run(self, now: Optional[datetime] = None) -> ReaperReport:
        """One full sweep. Failures are recorded in the report, never raised."""
        started = self.clock()
        now = now or utcnow()
        report = ReaperReport()
        try:
            report.deactivated = self.reclaim_diners(now)
            report.diners_deactivated = len(report.deactivated)
        except Exception as e:
            logger.error("Stale diner sweep failed: %s", e)
            report.errors.append({"target": "diners", "error": str(e)})

        self.purge_expired(report, now)
        report.duration_seconds = self.clock() - started
        logger.info(
            "Reaper run: %d diner(s) deactivated, deleted %s in %d batch(es)%s",
            report.diners_deactivated,
            report.deleted,
            report.batches,
            " (timed out)" if report.timed_out else "",
        )
        return report


def run_reaper(storage, now: Optional[datetime] = None, **options) -> ReaperReport:
    return StaleEntityReaper(storage, **options).run(now)
