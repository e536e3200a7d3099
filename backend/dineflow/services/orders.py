"""
Order pipeline: cart -> kitchen -> served -> settled.

Every status change goes through ``transition_order``, which checks the
transition table in ``dineflow.statuses`` and applies the change with a
conditional UPDATE on the current status. A concurrent writer that moved
the order first turns the second attempt into OrderTransitionError.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from dineflow import config
from dineflow.db.models import Order, MenuItem, DiningSession, RestaurantTable
from dineflow.errors import (
    OrderNotFound, MenuItemNotFound, OrderTransitionError, ValidationError,
)
from dineflow.services import sessions
from dineflow.services.events import queue_audit, queue_notification
from dineflow.statuses import (
    OrderStatus, SessionStatus, NotificationType, KITCHEN_STEPS,
    KITCHEN_QUEUE_STATUSES, can_transition_order, values,
)
from dineflow.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MAX_QUANTITY = 99


def _validate_quantity(quantity: int) -> int:
    if not isinstance(quantity, int) or quantity < 1 or quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity must be between 1 and {MAX_QUANTITY}", quantity=quantity)
    return quantity


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def transition_order(
    db: Session,
    order: Order,
    target: Union[OrderStatus, str],
    now: Optional[datetime] = None,
    **extra: Any,
) -> Order:
    """The one place an order's status is changed."""
    target = OrderStatus(target)
    current = order.status
    if not can_transition_order(current, target.value):
        raise OrderTransitionError(order.id, current, target.value)

    result = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target.value, updated_at=now or utcnow(), **extra)
    )
    db.refresh(order)
    if result.rowcount != 1:
        raise OrderTransitionError(order.id, order.status, target.value)
    return order


# ---------- Cart ----------

def add_to_cart(
    db: Session,
    session_id: int,
    diner_name: str,
    menu_item_id: int,
    quantity: int = 1,
    notes: Optional[str] = None,
    is_shared: bool = False,
    is_takeaway: bool = False,
    now: Optional[datetime] = None,
) -> Order:
    """
    Add a cart line. The menu price is captured now; later menu price
    changes never reach this order.
    """
    now = now or utcnow()
    session = sessions.get_active_session(db, session_id)
    diner = sessions.require_diner(db, session.id, diner_name)
    _validate_quantity(quantity)

    item = db.get(MenuItem, menu_item_id)
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    if not item.is_available:
        raise ValidationError(f"{item.name} is currently unavailable", menu_item_id=item.id)

    order = Order(
        session_id=session.id,
        menu_item_id=item.id,
        item_name=item.name,
        unit_price=item.price,
        quantity=quantity,
        diner_name=diner.name,
        notes=notes,
        is_shared=is_shared,
        is_takeaway=is_takeaway,
        status=OrderStatus.CART.value,
        created_at=now,
        updated_at=now,
    )
    db.add(order)
    diner.last_active = now
    db.flush()
    return order


def update_cart_item(
    db: Session,
    order_id: int,
    quantity: Optional[int] = None,
    notes: Optional[str] = None,
    is_shared: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> Optional[Order]:
    """
    Edit a cart line; quantity 0 removes it (returns None).

    An active split follows the line: a new quantity reprices it, while
    unsharing or removing the line dissolves it.
    """
    from dineflow.services import splits

    now = now or utcnow()
    order = get_order(db, order_id)
    if order.status != OrderStatus.CART.value:
        raise OrderTransitionError(order.id, order.status, OrderStatus.CART.value)
    split = splits.active_split_for(db, order)

    if quantity == 0:
        if split is not None:
            splits.dissolve_split(db, split.id, now=now)
        db.delete(order)
        db.flush()
        return None
    if quantity is not None:
        order.quantity = _validate_quantity(quantity)
    if notes is not None:
        order.notes = notes
    if is_shared is not None:
        order.is_shared = is_shared
    order.updated_at = now

    if split is not None:
        if not order.is_shared:
            splits.dissolve_split(db, split.id, now=now)
            order.split_bill_id = None
        elif order.line_total != split.original_price:
            splits.reprice_split(db, split, order)

    sessions.touch_diner_by_name(db, order.session_id, order.diner_name, now=now)
    return order


def _delete_cart_lines(db: Session, order_ids: List[int], now: Optional[datetime] = None) -> int:
    """Delete cart lines, closing any active split on them first."""
    from dineflow.services.splits import dissolve_order_splits

    if not order_ids:
        return 0
    dissolve_order_splits(db, order_ids, now=now)
    result = db.execute(
        delete(Order).where(Order.id.in_(order_ids), Order.status == OrderStatus.CART.value)
    )
    return result.rowcount or 0


def clear_cart(db: Session, session_id: int, diner_name: Optional[str] = None) -> int:
    sessions.get_session(db, session_id)
    stmt = select(Order.id).where(Order.session_id == session_id, Order.status == OrderStatus.CART.value)
    if diner_name:
        stmt = stmt.where(Order.diner_name == sessions.require_diner(db, session_id, diner_name, active_only=False).name)
    return _delete_cart_lines(db, list(db.execute(stmt).scalars().all()))


def confirm_cart(
    db: Session,
    session_id: int,
    diner_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Order]:
    """
    Send cart lines to the kitchen (cart -> waiting) in one batch.

    Confirming an empty cart is a no-op and returns an empty list, so a
    double-tapped confirm button is harmless.
    """
    now = now or utcnow()
    session = sessions.get_active_session(db, session_id)

    stmt = select(Order.id).where(Order.session_id == session.id, Order.status == OrderStatus.CART.value)
    if diner_name:
        diner = sessions.require_diner(db, session.id, diner_name, active_only=False)
        stmt = stmt.where(Order.diner_name == diner.name)
        diner.last_active = now
    ids = list(db.execute(stmt).scalars().all())
    if not ids:
        return []

    db.execute(
        update(Order)
        .where(Order.id.in_(ids), Order.status == OrderStatus.CART.value)
        .values(status=OrderStatus.WAITING.value, updated_at=now)
    )
    confirmed = list(db.execute(
        select(Order)
        .where(Order.id.in_(ids), Order.status == OrderStatus.WAITING.value)
        .order_by(Order.id)
        .execution_options(populate_existing=True)
    ).scalars().all())
    logger.info("Session %s confirmed %d order(s)", session.id, len(confirmed))
    return confirmed


def list_orders(
    db: Session,
    session_id: int,
    statuses: Optional[Iterable[Union[OrderStatus, str]]] = None,
    diner_name: Optional[str] = None,
) -> List[Order]:
    sessions.get_session(db, session_id)
    stmt = select(Order).where(Order.session_id == session_id).order_by(Order.created_at, Order.id)
    if statuses:
        try:
            wanted = [OrderStatus(s).value for s in statuses]
        except ValueError as e:
            raise ValidationError(str(e))
        stmt = stmt.where(Order.status.in_(wanted))
    if diner_name:
        _, key = sessions.normalize_name(diner_name)
        stmt = stmt.where(func.lower(Order.diner_name) == key)
    return list(db.execute(stmt).scalars().all())


# ---------- Kitchen ----------

def advance_kitchen_status(
    db: Session,
    order_id: int,
    new_status: Union[OrderStatus, str],
    performed_by: str = "kitchen",
    now: Optional[datetime] = None,
) -> Order:
    """
    Move an order one kitchen step forward. Reaching ``ready`` emits a
    kitchen-ready notification for the floor staff.
    """
    now = now or utcnow()
    try:
        target = OrderStatus(new_status)
    except ValueError:
        raise ValidationError(f"Unknown order status '{new_status}'", status=new_status)

    order = get_order(db, order_id)
    if KITCHEN_STEPS.get(OrderStatus(order.status)) != target:
        raise OrderTransitionError(order.id, order.status, target.value)
    transition_order(db, order, target, now=now)

    if target == OrderStatus.READY:
        session = db.get(DiningSession, order.session_id)
        table = db.get(RestaurantTable, session.table_id) if session else None
        table_number = table.table_number if table else "?"
        queue_notification(
            db,
            order.session_id,
            NotificationType.KITCHEN_READY.value,
            f"Order ready - Table {table_number}",
            f"Table {table_number} - {order.item_name} (Qty: {order.quantity}) is ready for pickup",
            priority="high",
            metadata={
                "order_id": order.id,
                "table_number": table_number,
                "item_name": order.item_name,
                "quantity": order.quantity,
                "diner_name": order.diner_name,
            },
        )
    logger.info("Order %s -> %s by %s", order.id, target.value, performed_by)
    return order


def kitchen_queue(db: Session) -> List[Dict[str, Any]]:
    """Confirmed, unfinished orders of active sessions, oldest first."""
    rows = db.execute(
        select(Order, RestaurantTable.table_number)
        .join(DiningSession, Order.session_id == DiningSession.id)
        .join(RestaurantTable, DiningSession.table_id == RestaurantTable.id)
        .where(
            DiningSession.status == SessionStatus.ACTIVE.value,
            Order.status.in_(values(KITCHEN_QUEUE_STATUSES)),
        )
        .order_by(Order.created_at, Order.id)
    ).all()
    queue = []
    for order, table_number in rows:
        entry = order.to_dict()
        entry["table_number"] = table_number
        queue.append(entry)
    return queue


# ---------- Voids and adjustments ----------

def void_order(
    db: Session,
    order_id: int,
    reason: str,
    performed_by: str,
    now: Optional[datetime] = None,
) -> Order:
    """Void a non-terminal order. An active split on it is dissolved."""
    from dineflow.services.splits import dissolve_split

    now = now or utcnow()
    if not reason or not reason.strip():
        raise ValidationError("A void reason is required")
    order = get_order(db, order_id)
    transition_order(db, order, OrderStatus.VOIDED, now=now, voided_at=now, void_reason=reason.strip())
    if order.split_bill_id is not None:
        dissolve_split(db, order.split_bill_id, now=now)

    queue_audit(
        db,
        "order_voided",
        order.session_id,
        {"order_id": order.id, "item_name": order.item_name, "amount": order.line_total, "reason": order.void_reason},
        performed_by,
    )
    return order


def adjust_bill(
    db: Session,
    session_id: int,
    order_ids: List[int],
    reason: str,
    performed_by: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Manager override: void a set of a session's orders in one go."""
    now = now or utcnow()
    session = sessions.get_active_session(db, session_id)
    if not order_ids:
        raise ValidationError("No orders selected")

    voided = []
    for order_id in order_ids:
        order = get_order(db, order_id)
        if order.session_id != session.id:
            raise ValidationError(f"Order {order_id} does not belong to session {session.id}", order_id=order_id)
        void_order(db, order_id, f"manager_override: {reason}", performed_by, now=now)
        voided.append(order)

    removed = sum(o.line_total for o in voided)
    queue_audit(
        db,
        "bill_adjusted",
        session.id,
        {"order_ids": [o.id for o in voided], "amount_removed": removed, "reason": reason},
        performed_by,
    )
    return {"session_id": session.id, "voided": [o.to_dict() for o in voided], "amount_removed": removed}


def purge_stale(
    db: Session,
    session_id: int,
    older_than: timedelta = timedelta(hours=config.RETENTION_HOURS),
    now: Optional[datetime] = None,
) -> int:
    """Delete a session's cart lines that were never confirmed."""
    now = now or utcnow()
    cutoff = now - older_than
    ids = list(db.execute(
        select(Order.id).where(
            Order.session_id == session_id,
            Order.status == OrderStatus.CART.value,
            Order.created_at < cutoff,
        )
    ).scalars().all())
    return _delete_cart_lines(db, ids, now=now)
