"""
Split ledger: shared-cost allocation for orders marked shared.

Amounts are integer cents. ``split_price`` is the nominal per-person price
(``original / n`` rounded half up); ``shares`` is the exact allocation
actually billed, distributing the leftover cents one at a time so the
shares always sum to ``original_price``.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from dineflow.db.models import Order, SplitBill
from dineflow.errors import (
    SplitBillNotFound, SplitAlreadyActive, InvalidParticipantCount, ValidationError,
)
from dineflow.services import sessions
from dineflow.services.events import queue_audit
from dineflow.statuses import SplitStatus, TERMINAL_ORDER_STATUSES, OrderStatus
from dineflow.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def per_person_price(original: int, count: int) -> int:
    """``original / count`` in cents, rounded half up."""
    if count < 1:
        raise InvalidParticipantCount(count)
    return (2 * original + count) // (2 * count)


def allocate_shares(original: int, participants: List[str]) -> Dict[str, int]:
    base, remainder = divmod(original, len(participants))
    return {
        name: base + (1 if i < remainder else 0)
        for i, name in enumerate(participants)
    }


def _resolve_participants(db: Session, session_id: int, names: List[str]) -> List[str]:
    """Map names to the session's diners, deduplicated case-insensitively."""
    seen = set()
    unique = []
    for raw in names or []:
        diner = sessions.require_diner(db, session_id, raw, active_only=False)
        if diner.name_key not in seen:
            seen.add(diner.name_key)
            unique.append(diner.name)
    return unique


def get_split(db: Session, split_bill_id: int) -> SplitBill:
    split = db.get(SplitBill, split_bill_id)
    if split is None:
        raise SplitBillNotFound(split_bill_id)
    return split


def active_split_for(db: Session, order: Order) -> Optional[SplitBill]:
    if order.split_bill_id is None:
        return None
    split = db.get(SplitBill, order.split_bill_id)
    if split is None or split.status != SplitStatus.ACTIVE.value:
        return None
    return split


def list_splits(db: Session, session_id: int, active_only: bool = True) -> List[SplitBill]:
    stmt = select(SplitBill).where(SplitBill.session_id == session_id).order_by(SplitBill.id)
    if active_only:
        stmt = stmt.where(SplitBill.status == SplitStatus.ACTIVE.value)
    return list(db.execute(stmt).scalars().all())


def create_split(
    db: Session,
    order_id: int,
    participant_names: List[str],
    performed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SplitBill:
    """
    Split a shared order among two or more distinct diners.

    Fails with SplitAlreadyActive when the order already carries an active
    split; the order is linked with a conditional UPDATE so two concurrent
    splits of one order cannot both land.
    """
    from dineflow.services.orders import get_order

    now = now or utcnow()
    order = get_order(db, order_id)
    session = sessions.get_active_session(db, order.session_id)
    if not order.is_shared:
        raise ValidationError(f"Order {order.id} is not marked as shared", order_id=order.id)
    if OrderStatus(order.status) in TERMINAL_ORDER_STATUSES:
        raise ValidationError(f"Order {order.id} is already {order.status}", order_id=order.id)

    participants = _resolve_participants(db, session.id, participant_names)
    if len(participants) < 2:
        raise InvalidParticipantCount(len(participants))

    existing = active_split_for(db, order)
    if existing is not None:
        raise SplitAlreadyActive(order.id, existing.id)

    original = order.line_total
    split = SplitBill(
        session_id=session.id,
        order_id=order.id,
        original_price=original,
        split_count=len(participants),
        split_price=per_person_price(original, len(participants)),
        participants=participants,
        shares=allocate_shares(original, participants),
        paid_participants=[],
        status=SplitStatus.ACTIVE.value,
        created_at=now,
    )
    db.add(split)
    db.flush()

    previous = order.split_bill_id
    guard = Order.split_bill_id.is_(None) if previous is None else Order.split_bill_id == previous
    result = db.execute(
        update(Order).where(Order.id == order.id, guard).values(split_bill_id=split.id, updated_at=now)
    )
    if result.rowcount != 1:
        db.refresh(order)
        raise SplitAlreadyActive(order.id, order.split_bill_id)
    db.refresh(order)

    queue_audit(
        db,
        "split_created",
        session.id,
        {"order_id": order.id, "split_bill_id": split.id, "participants": participants, "original_price": original},
        performed_by or order.diner_name,
    )
    logger.info("Order %s split %d ways (%s each)", order.id, split.split_count, split.split_price)
    return split


def dissolve_split(db: Session, split_bill_id: int, now: Optional[datetime] = None) -> SplitBill:
    """
    Deactivate a split. The order goes back to being billed whole to its
    owner. Dissolving twice is a no-op.
    """
    split = get_split(db, split_bill_id)
    if split.status == SplitStatus.ACTIVE.value:
        split.status = SplitStatus.COMPLETED.value
        split.completed_at = now or utcnow()
        if split.order_id is not None:
            db.execute(
                update(Order)
                .where(Order.id == split.order_id, Order.split_bill_id == split.id)
                .values(split_bill_id=None)
            )
        db.flush()
    return split


def dissolve_order_splits(db: Session, order_ids: List[int], now: Optional[datetime] = None) -> int:
    """Close the active splits of orders about to be deleted."""
    if not order_ids:
        return 0
    result = db.execute(
        update(SplitBill)
        .where(SplitBill.order_id.in_(order_ids), SplitBill.status == SplitStatus.ACTIVE.value)
        .values(status=SplitStatus.COMPLETED.value, completed_at=now or utcnow())
    )
    db.execute(
        update(Order).where(Order.id.in_(order_ids)).values(split_bill_id=None)
    )
    return result.rowcount or 0


def reprice_split(db: Session, split: SplitBill, order: Order) -> SplitBill:
    """Recompute a split after its order's quantity changed."""
    original = order.line_total
    split.original_price = original
    split.split_price = per_person_price(original, split.split_count)
    split.shares = allocate_shares(original, list(split.participants))
    db.flush()
    logger.info("Split %s repriced to %s (%s each)", split.id, original, split.split_price)
    return split


def record_participant_payment(db: Session, split: SplitBill, name_key: str) -> bool:
    """
    Mark one participant's share paid. Returns True once every participant
    has paid, at which point the split is closed.
    """
    paid = list(split.paid_participants or [])
    for name in split.participants:
        if name.lower() == name_key and name not in paid:
            paid.append(name)
    split.paid_participants = paid
    if len(paid) >= len(split.participants):
        split.status = SplitStatus.COMPLETED.value
        split.completed_at = utcnow()
        return True
    return False


def participant_key_in(split: SplitBill, name_key: str) -> Optional[str]:
    for name in split.participants or []:
        if name.lower() == name_key:
            return name
    return None


def unpaid_share_total(split: SplitBill) -> int:
    paid = set(split.paid_participants or [])
    return sum(c for name, c in (split.shares or {}).items() if name not in paid)


def resolve_display_price(order: Order, split: Optional[SplitBill] = None) -> Dict[str, Any]:
    """
    Prices to show for an order line.

    ``each_price`` is always the unmodified per-unit menu price captured on
    the order. ``per_person_price`` is the split price while the split is
    active, otherwise the whole line total.
    """
    active = split is not None and split.status == SplitStatus.ACTIVE.value
    return {
        "order_id": order.id,
        "each_price": order.unit_price,
        "quantity": order.quantity,
        "line_total": order.line_total,
        "is_split": active,
        "split_count": split.split_count if active else 1,
        "per_person_price": split.split_price if active else order.line_total,
    }


def display_price(db: Session, order_id: int) -> Dict[str, Any]:
    from dineflow.services.orders import get_order

    order = get_order(db, order_id)
    return resolve_display_price(order, active_split_for(db, order))
