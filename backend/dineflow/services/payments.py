"""
Payment coordinator: bills, payment requests and settlement.

``Session.payment_status`` only moves forward: none -> pending -> completed.
It goes pending on the first request and stays pending while diners settle
individually; it completes once nothing billable is left, or when the whole
table pays at once. Outstanding requests are ``payment_requests`` rows.

Completion is idempotent: completing an already settled scope returns the
receipt produced the first time, with no further side effects.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from dineflow import config
from dineflow.db.models import (
    DiningSession, Order, PaymentRequest, Receipt, RestaurantTable, SplitBill, Notification,
    cents_to_amount,
)
from dineflow.errors import (
    SessionNotFound, SessionNotActive, PaymentAlreadyPending, PaymentAlreadyCompleted,
    NotPending, ReceiptNotFound, ValidationError,
)
from dineflow.services import sessions, splits, tables
from dineflow.services.events import queue_audit, queue_notification
from dineflow.services.notifications import complete_payment_request_notifications
from dineflow.services.orders import transition_order
from dineflow.statuses import (
    OrderStatus, PaymentStatus, PaymentType, PaymentRequestStatus, SessionStatus,
    SplitStatus, NotificationStatus, NotificationType, BILLABLE_ORDER_STATUSES, values,
)
from dineflow.utils.time_utils import utcnow, to_local, iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentScope:
    """Who is settling: one named diner, or the whole table."""

    payment_type: PaymentType
    diner_name: Optional[str] = None

    @classmethod
    def table(cls) -> "PaymentScope":
        return cls(PaymentType.TABLE)

    @classmethod
    def individual(cls, diner_name: str) -> "PaymentScope":
        if not diner_name or not diner_name.strip():
            raise ValidationError("Individual payments need a diner name")
        return cls(PaymentType.INDIVIDUAL, diner_name.strip())

    @classmethod
    def of(cls, payment_type: str, diner_name: Optional[str] = None) -> "PaymentScope":
        try:
            kind = PaymentType(payment_type)
        except ValueError:
            raise ValidationError(f"Unknown payment type '{payment_type}'", payment_type=payment_type)
        return cls.table() if kind == PaymentType.TABLE else cls.individual(diner_name)

    @property
    def is_table(self) -> bool:
        return self.payment_type == PaymentType.TABLE

    @property
    def name_key(self) -> Optional[str]:
        return self.diner_name.lower() if self.diner_name else None


def vat_for(subtotal: int, rate: float = None) -> int:
    rate = config.VAT_RATE if rate is None else rate
    return int((Decimal(subtotal) * Decimal(str(rate))).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _billable_orders(db: Session, session_id: int) -> List[Order]:
    return list(db.execute(
        select(Order)
        .where(Order.session_id == session_id, Order.status.in_(values(BILLABLE_ORDER_STATUSES)))
        .order_by(Order.created_at, Order.id)
    ).scalars().all())


def _bill_line(order: Order, amount: int, split: Optional[SplitBill] = None) -> Dict[str, Any]:
    return {
        "order_id": order.id,
        "item_name": order.item_name,
        "diner_name": order.diner_name,
        "quantity": order.quantity,
        "unit_price": order.unit_price,
        "amount": amount,
        "split_bill_id": split.id if split else None,
        "split_count": split.split_count if split else 1,
    }


def compute_bill(db: Session, session_id: int, diner_name: Optional[str] = None) -> Dict[str, Any]:
    """
    What is still owed, in cents.

    Without ``diner_name`` this is the table bill: every billable line, with
    split lines reduced by shares already paid. With a name it is that
    diner's own unsplit lines plus their unpaid shares of active splits.
    """
    session = sessions.get_session(db, session_id)
    active = {s.id: s for s in splits.list_splits(db, session.id, active_only=True)}
    key = sessions.normalize_name(diner_name)[1] if diner_name else None

    items = []
    for order in _billable_orders(db, session.id):
        split = active.get(order.split_bill_id)
        if key is None:
            amount = splits.unpaid_share_total(split) if split else order.line_total
            items.append(_bill_line(order, amount, split))
        elif split is not None:
            name = splits.participant_key_in(split, key)
            if name and name not in (split.paid_participants or []):
                items.append(_bill_line(order, split.shares[name], split))
        elif order.diner_name.lower() == key:
            items.append(_bill_line(order, order.line_total))

    subtotal = sum(i["amount"] for i in items)
    vat = vat_for(subtotal)
    return {
        "session_id": session.id,
        "diner_name": diner_name,
        "items": items,
        "subtotal": subtotal,
        "vat_rate": config.VAT_RATE,
        "vat_amount": vat,
        "total": subtotal + vat,
    }


def bill_to_dict(bill: Dict[str, Any]) -> Dict[str, Any]:
    """Cents to currency amounts for API payloads."""
    out = dict(bill)
    out["items"] = [
        dict(i, unit_price=cents_to_amount(i["unit_price"]), amount=cents_to_amount(i["amount"]))
        for i in bill["items"]
    ]
    for field in ("subtotal", "vat_amount", "total", "tip_amount"):
        if field in out:
            out[field] = cents_to_amount(out[field])
    return out


def _pending_requests(db: Session, session_id: int) -> List[PaymentRequest]:
    return list(db.execute(
        select(PaymentRequest)
        .where(PaymentRequest.session_id == session_id, PaymentRequest.status == PaymentRequestStatus.PENDING.value)
        .order_by(PaymentRequest.requested_at, PaymentRequest.id)
    ).scalars().all())


def _same_scope(request: PaymentRequest, scope: PaymentScope) -> bool:
    if request.payment_type != scope.payment_type.value:
        return False
    if scope.is_table:
        return True
    return (request.diner_name or "").lower() == scope.name_key


def request_payment(
    db: Session,
    session_id: int,
    scope: PaymentScope,
    tip_amount: int = 0,
    computed_subtotal: Optional[int] = None,
    computed_vat: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PaymentRequest:
    """
    Ask staff to come and settle.

    Re-requesting the same scope returns the outstanding request. A request
    while someone else's is outstanding fails with PaymentAlreadyPending.
    """
    now = now or utcnow()
    session = sessions.get_session(db, session_id)
    if session.payment_status == PaymentStatus.COMPLETED.value:
        raise PaymentAlreadyCompleted(session.id)
    if session.status != SessionStatus.ACTIVE.value:
        raise SessionNotActive(session.id, session.status)
    if tip_amount is None or tip_amount < 0:
        raise ValidationError("Tip cannot be negative", tip_amount=tip_amount)

    diner_name = None
    if not scope.is_table:
        diner_name = sessions.require_diner(db, session.id, scope.diner_name, active_only=False).name

    for outstanding in _pending_requests(db, session.id):
        if _same_scope(outstanding, scope):
            return outstanding
        raise PaymentAlreadyPending(session.id, outstanding.diner_name)

    if session.payment_status == PaymentStatus.NONE.value:
        result = db.execute(
            update(DiningSession)
            .where(DiningSession.id == session.id, DiningSession.payment_status == PaymentStatus.NONE.value)
            .values(payment_status=PaymentStatus.PENDING.value)
        )
        if result.rowcount != 1:
            raise PaymentAlreadyPending(session.id)
        db.refresh(session)

    bill = compute_bill(db, session.id, diner_name)
    subtotal = bill["subtotal"] if computed_subtotal is None else computed_subtotal
    vat = bill["vat_amount"] if computed_vat is None else computed_vat
    if subtotal < 0 or vat < 0:
        raise ValidationError("Amounts cannot be negative")
    if computed_subtotal is not None and computed_subtotal != bill["subtotal"]:
        logger.warning(
            "Session %s: client subtotal %s differs from server bill %s",
            session.id, computed_subtotal, bill["subtotal"],
        )

    request = PaymentRequest(
        session_id=session.id,
        payment_type=scope.payment_type.value,
        diner_name=diner_name,
        subtotal=subtotal,
        vat_amount=vat,
        tip_amount=tip_amount,
        final_total=subtotal + vat + tip_amount,
        status=PaymentRequestStatus.PENDING.value,
        requested_at=now,
    )
    db.add(request)
    session.payment_type = scope.payment_type.value
    session.payment_requested_at = now
    db.flush()

    table = db.get(RestaurantTable, session.table_id)
    table_number = table.table_number if table else session.table_id
    who = diner_name or "Whole table"
    queue_notification(
        db,
        session.id,
        NotificationType.PAYMENT_REQUEST.value,
        f"Payment request - Table {table_number}",
        f"{who} requested {scope.payment_type.value} payment: {cents_to_amount(request.final_total):.2f}",
        priority="high",
        metadata={
            "payment_request_id": request.id,
            "table_number": table_number,
            "payment_type": scope.payment_type.value,
            "diner_name": diner_name,
            "subtotal": cents_to_amount(subtotal),
            "vat_amount": cents_to_amount(vat),
            "tip_amount": cents_to_amount(tip_amount),
            "final_total": cents_to_amount(request.final_total),
        },
    )
    queue_audit(
        db,
        "payment_requested",
        session.id,
        {"payment_type": scope.payment_type.value, "diner_name": diner_name, "final_total": request.final_total},
        diner_name or "table",
    )
    return request


# ---------- Receipts ----------

def _find_receipt(db: Session, session_id: int, scope: PaymentScope) -> Optional[Receipt]:
    stmt = select(Receipt).where(
        Receipt.session_id == session_id,
        Receipt.payment_type == scope.payment_type.value,
    )
    if not scope.is_table:
        stmt = stmt.where(func.lower(Receipt.diner_name) == scope.name_key)
    return db.execute(stmt.order_by(Receipt.id.desc())).scalars().first()


def _latest_receipt(db: Session, session_id: int) -> Optional[Receipt]:
    return db.execute(
        select(Receipt).where(Receipt.session_id == session_id).order_by(Receipt.id.desc())
    ).scalars().first()


def _receipt_content(
    session: DiningSession,
    table_number: Any,
    bill: Dict[str, Any],
    tip: int,
    method: str,
    completed_by: str,
    now: datetime,
) -> Dict[str, Any]:
    content = bill_to_dict(dict(bill, tip_amount=tip, total=bill["total"] + tip))
    content.update({
        "table_number": table_number,
        "payment_method": method,
        "completed_by": completed_by,
        "paid_at": iso(now),
        "paid_at_local": to_local(now).strftime("%Y-%m-%d %H:%M"),
        "session_started_at": iso(session.started_at),
    })
    return content


def get_receipt(db: Session, session_id: int, diner_name: Optional[str] = None) -> Receipt:
    sessions.get_session(db, session_id)
    if diner_name:
        receipt = _find_receipt(db, session_id, PaymentScope.individual(diner_name))
    else:
        receipt = _find_receipt(db, session_id, PaymentScope.table()) or _latest_receipt(db, session_id)
    if receipt is None:
        raise ReceiptNotFound(session_id, diner_name)
    return receipt


# ---------- Completion ----------

def complete_payment(
    db: Session,
    session_id: int,
    scope: PaymentScope,
    method: str,
    completed_by: str,
    now: Optional[datetime] = None,
) -> Receipt:
    """
    Settle a pending payment and return its receipt.

    Table scope settles everything in one transaction: the session and its
    payment complete, the table is freed, the session's orders are removed,
    every diner is deactivated and a redirect-to-receipt notification goes
    out. Individual scope marks the diner's lines (and split shares) paid;
    the session completes once nothing billable is left.
    """
    now = now or utcnow()
    if method not in config.PAYMENT_METHODS:
        raise ValidationError(
            f"Unsupported payment method '{method}'", allowed=list(config.PAYMENT_METHODS)
        )
    if not completed_by or not str(completed_by).strip():
        raise ValidationError("completed_by is required")

    session = db.execute(
        select(DiningSession).where(DiningSession.id == session_id).with_for_update()
    ).scalar_one_or_none()
    if session is None:
        raise SessionNotFound(session_id)

    # A newer outstanding request for the same scope means a second round.
    prior = _find_receipt(db, session.id, scope)
    if prior is not None and not any(_same_scope(r, scope) for r in _pending_requests(db, session.id)):
        return prior
    if session.payment_status == PaymentStatus.COMPLETED.value:
        latest = _latest_receipt(db, session.id)
        if latest is not None:
            return latest
        raise PaymentAlreadyCompleted(session.id)
    if session.payment_status != PaymentStatus.PENDING.value:
        raise NotPending(session.id, session.payment_status)

    if scope.is_table:
        return _complete_table(db, session, method, completed_by, now)
    return _complete_individual(db, session, scope, method, completed_by, now)


def _table_number(db: Session, session: DiningSession):
    table = db.get(RestaurantTable, session.table_id)
    return table.table_number if table else session.table_id


def _finalize_session(
    db: Session,
    session: DiningSession,
    payment_type: PaymentType,
    final_total: int,
    completed_by: str,
    now: datetime,
) -> bool:
    """pending -> completed, plus table release and diner/notification cleanup."""
    result = db.execute(
        update(DiningSession)
        .where(DiningSession.id == session.id, DiningSession.payment_status == PaymentStatus.PENDING.value)
        .values(
            payment_status=PaymentStatus.COMPLETED.value,
            status=SessionStatus.COMPLETED.value,
            payment_type=payment_type.value,
            final_total=final_total,
            payment_completed_at=now,
            ended_at=now,
        )
    )
    db.refresh(session)
    if result.rowcount != 1:
        return False
    tables.clear_table(db, session.table_id, session_id=session.id)
    sessions.deactivate_all_diners(db, session.id, now=now)
    complete_payment_request_notifications(db, session.id, completed_by)
    return True


def _close_requests(db: Session, session_id: int, now: datetime, diner_key: Optional[str] = None) -> None:
    stmt = update(PaymentRequest).where(
        PaymentRequest.session_id == session_id,
        PaymentRequest.status == PaymentRequestStatus.PENDING.value,
    )
    if diner_key is not None:
        stmt = stmt.where(func.lower(PaymentRequest.diner_name) == diner_key)
    db.execute(stmt.values(status=PaymentRequestStatus.COMPLETED.value, completed_at=now))


def _notify_settled(db: Session, session: DiningSession, table_number: Any, receipt: Receipt) -> None:
    queue_notification(
        db,
        session.id,
        NotificationType.PAYMENT_COMPLETE.value,
        "Payment complete",
        f"Table {table_number} has been settled. Thank you!",
        priority="normal",
        metadata={
            "action": "redirect_to_receipt",
            "receipt_id": receipt.id,
            "table_number": table_number,
            "payment_type": receipt.payment_type,
        },
    )


def _complete_table(db: Session, session: DiningSession, method: str, completed_by: str, now: datetime) -> Receipt:
    table_number = _table_number(db, session)
    pending = _pending_requests(db, session.id)
    table_request = next((r for r in pending if r.payment_type == PaymentType.TABLE.value), None)
    tip = table_request.tip_amount if table_request else 0

    # Snapshot before anything is removed.
    bill = compute_bill(db, session.id)
    total = bill["total"] + tip
    content = _receipt_content(session, table_number, bill, tip, method, completed_by, now)

    if not _finalize_session(db, session, PaymentType.TABLE, total, completed_by, now):
        latest = _latest_receipt(db, session.id)
        if latest is not None:
            return latest
        raise NotPending(session.id, session.payment_status)

    receipt = Receipt(
        session_id=session.id,
        payment_request_id=table_request.id if table_request else None,
        payment_type=PaymentType.TABLE.value,
        payment_method=method,
        completed_by=completed_by,
        total=total,
        content=content,
        created_at=now,
    )
    db.add(receipt)
    _close_requests(db, session.id, now)
    db.execute(
        update(SplitBill)
        .where(SplitBill.session_id == session.id, SplitBill.status == SplitStatus.ACTIVE.value)
        .values(status=SplitStatus.COMPLETED.value, completed_at=now)
    )
    removed = db.execute(delete(Order).where(Order.session_id == session.id)).rowcount or 0
    db.flush()

    _notify_settled(db, session, table_number, receipt)
    queue_audit(
        db,
        "payment_completed",
        session.id,
        {
            "payment_type": PaymentType.TABLE.value,
            "payment_method": method,
            "total": total,
            "orders_removed": removed,
            "receipt_id": receipt.id,
        },
        completed_by,
    )
    logger.info("Session %s settled by table payment (%s, %s)", session.id, method, total)
    return receipt


def _complete_individual(
    db: Session,
    session: DiningSession,
    scope: PaymentScope,
    method: str,
    completed_by: str,
    now: datetime,
) -> Receipt:
    diner = sessions.require_diner(db, session.id, scope.diner_name, active_only=False)
    key = diner.name_key
    table_number = _table_number(db, session)
    request = next(
        (r for r in _pending_requests(db, session.id) if _same_scope(r, scope)),
        None,
    )
    tip = request.tip_amount if request else 0

    bill = compute_bill(db, session.id, diner.name)
    total = bill["total"] + tip
    content = _receipt_content(session, table_number, bill, tip, method, completed_by, now)

    paid_orders = []
    for order in _billable_orders(db, session.id):
        split = splits.active_split_for(db, order)
        if split is not None:
            if splits.participant_key_in(split, key) and splits.record_participant_payment(db, split, key):
                transition_order(db, order, OrderStatus.PAID, now=now, paid_at=now)
                paid_orders.append(order.id)
        elif order.diner_name.lower() == key:
            transition_order(db, order, OrderStatus.PAID, now=now, paid_at=now)
            paid_orders.append(order.id)

    receipt = Receipt(
        session_id=session.id,
        payment_request_id=request.id if request else None,
        payment_type=PaymentType.INDIVIDUAL.value,
        diner_name=diner.name,
        payment_method=method,
        completed_by=completed_by,
        total=total,
        content=content,
        created_at=now,
    )
    db.add(receipt)
    _close_requests(db, session.id, now, diner_key=key)
    _complete_diner_notifications(db, session.id, key, completed_by, now)
    db.flush()

    settled = not _billable_orders(db, session.id)
    if settled:
        grand_total = db.execute(
            select(func.coalesce(func.sum(Receipt.total), 0)).where(Receipt.session_id == session.id)
        ).scalar_one()
        if _finalize_session(db, session, PaymentType.INDIVIDUAL, grand_total, completed_by, now):
            _notify_settled(db, session, table_number, receipt)

    queue_audit(
        db,
        "payment_completed",
        session.id,
        {
            "payment_type": PaymentType.INDIVIDUAL.value,
            "diner_name": diner.name,
            "payment_method": method,
            "total": total,
            "orders_paid": paid_orders,
            "receipt_id": receipt.id,
            "session_settled": settled,
        },
        completed_by,
    )
    logger.info("Diner %s paid %s in session %s (settled=%s)", diner.name, total, session.id, settled)
    return receipt


def _complete_diner_notifications(db: Session, session_id: int, name_key: str, completed_by: str, now: datetime) -> None:
    rows = db.execute(
        select(Notification).where(
            Notification.session_id == session_id,
            Notification.type == NotificationType.PAYMENT_REQUEST.value,
            Notification.status == NotificationStatus.PENDING.value,
        )
    ).scalars().all()
    for notification in rows:
        if ((notification.extra_data or {}).get("diner_name") or "").lower() == name_key:
            notification.status = NotificationStatus.COMPLETED.value
            notification.completed_at = now
            notification.completed_by = completed_by


# ---------- Status and admin ----------

def get_payment_status(db: Session, session_id: int) -> Dict[str, Any]:
    session = sessions.get_session(db, session_id)
    receipts = list(db.execute(
        select(Receipt).where(Receipt.session_id == session.id).order_by(Receipt.id)
    ).scalars().all())
    paid_diners = sorted({r.diner_name for r in receipts if r.diner_name})
    diners = [d.name for d in session.diners]
    return {
        "session_id": session.id,
        "status": session.status,
        "payment_status": session.payment_status,
        "payment_type": session.payment_type,
        "payment_requested_at": iso(session.payment_requested_at),
        "payment_completed_at": iso(session.payment_completed_at),
        "outstanding_requests": [r.to_dict() for r in _pending_requests(db, session.id)],
        "receipts": [r.to_dict() for r in receipts],
        "paid_diners": paid_diners,
        "total_diners": len(diners),
        "all_paid": session.payment_status == PaymentStatus.COMPLETED.value,
    }


def reset_payment_status(db: Session, session_id: int, performed_by: str, now: Optional[datetime] = None) -> DiningSession:
    """
    Administrative undo of a stuck request: pending -> none and every
    outstanding request cancelled. Completed payments cannot be reset.
    """
    now = now or utcnow()
    session = sessions.get_session(db, session_id)
    if session.payment_status == PaymentStatus.COMPLETED.value:
        raise PaymentAlreadyCompleted(session.id)
    if session.payment_status != PaymentStatus.PENDING.value:
        raise NotPending(session.id, session.payment_status)

    cancelled = db.execute(
        update(PaymentRequest)
        .where(PaymentRequest.session_id == session.id, PaymentRequest.status == PaymentRequestStatus.PENDING.value)
        .values(status=PaymentRequestStatus.CANCELLED.value, completed_at=now)
    ).rowcount or 0
    session.payment_status = PaymentStatus.NONE.value
    session.payment_type = None
    session.payment_requested_at = None
    complete_payment_request_notifications(db, session.id, performed_by)

    queue_audit(db, "payment_reset", session.id, {"requests_cancelled": cancelled}, performed_by)
    return session
