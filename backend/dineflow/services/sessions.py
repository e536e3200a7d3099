"""
Session manager: dining sessions and the diners inside them.

Diner names are unique per session among *active* diners, compared
case-insensitively on ``name_key``. The partial unique index on
``diners(session_id, name_key) WHERE is_active`` is the source of truth;
the pre-check here only gives a friendlier error on the common path.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dineflow.db.models import DiningSession, Diner, RestaurantTable, User, Order
from dineflow.errors import (
    NotFound, SessionNotFound, SessionNotActive, DinerNotFound, NameTaken,
    TableOccupied, TableNotFound, InvalidPin, ValidationError,
)
from dineflow.services import tables
from dineflow.services.events import queue_audit, queue_notification
from dineflow.statuses import SessionStatus, OrderStatus, NotificationType
from dineflow.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50


def normalize_name(name: Optional[str]) -> Tuple[str, str]:
    """Return ``(display_name, name_key)`` for a diner-entered name."""
    display = " ".join((name or "").split())
    if not display:
        raise ValidationError("Please enter your name")
    if len(display) > MAX_NAME_LENGTH:
        raise ValidationError(f"Names are limited to {MAX_NAME_LENGTH} characters", name=display)
    return display, display.lower()


def get_session(db: Session, session_id: int) -> DiningSession:
    session = db.get(DiningSession, session_id)
    if session is None:
        raise SessionNotFound(session_id)
    return session


def get_active_session(db: Session, session_id: int) -> DiningSession:
    session = get_session(db, session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise SessionNotActive(session_id, session.status)
    return session


def find_diner(db: Session, session_id: int, diner_name: str, active_only: bool = False) -> Optional[Diner]:
    """Newest diner row for a name in a session, if any."""
    _, key = normalize_name(diner_name)
    stmt = (
        select(Diner)
        .where(Diner.session_id == session_id, Diner.name_key == key)
        .order_by(Diner.is_active.desc(), Diner.last_active.desc(), Diner.id.desc())
    )
    if active_only:
        stmt = stmt.where(Diner.is_active.is_(True))
    return db.execute(stmt).scalars().first()


def require_diner(db: Session, session_id: int, diner_name: str, active_only: bool = True) -> Diner:
    diner = find_diner(db, session_id, diner_name, active_only=active_only)
    if diner is None:
        raise DinerNotFound(session_id, diner_name)
    return diner


def bind_session(
    db: Session,
    table_id: int,
    staff_id: Optional[int] = None,
    started_by_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DiningSession:
    """
    Create an active session on a free table and occupy it.

    The table row is claimed first with a conditional update, so of two
    concurrent binds exactly one succeeds and the other gets TableOccupied.
    """
    now = now or utcnow()
    if staff_id is not None and db.get(User, staff_id) is None:
        raise NotFound(f"Staff member {staff_id} not found", staff_id=staff_id)

    pin = tables.generate_pin()
    table = tables.occupy_table(db, table_id, pin)

    session = DiningSession(
        table_id=table.id,
        status=SessionStatus.ACTIVE.value,
        started_by_name=started_by_name,
        served_by=staff_id,
        started_at=now,
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError:
        # Active-session index: a stale session still holds this table.
        raise TableOccupied(table_id)
    table.current_session_id = session.id
    db.flush()

    queue_audit(
        db,
        "session_started",
        session.id,
        {"table_id": table.id, "table_number": table.table_number, "staff_id": staff_id},
        started_by_name or (f"staff:{staff_id}" if staff_id else "system"),
    )
    logger.info("Session %s bound to table %s", session.id, table.table_number)
    return session


def add_or_rejoin_diner(db: Session, session_id: int, name: str, now: Optional[datetime] = None) -> Tuple[Diner, bool]:
    """
    Add a diner to an active session, or reactivate a returning one.

    A returning diner (inactive row with the same case-insensitive name) is
    reactivated in place and keeps its id. Returns ``(diner, rejoined)``.
    """
    now = now or utcnow()
    session = get_active_session(db, session_id)
    display, key = normalize_name(name)

    rows = db.execute(
        select(Diner)
        .where(Diner.session_id == session.id, Diner.name_key == key)
        .order_by(Diner.last_active.desc(), Diner.id.desc())
    ).scalars().all()
    if any(d.is_active for d in rows):
        raise NameTaken(display)

    try:
        if rows:
            diner = rows[0]
            result = db.execute(
                update(Diner)
                .where(Diner.id == diner.id, Diner.is_active.is_(False))
                .values(is_active=True, last_active=now, logout_time=None)
            )
            if result.rowcount != 1:
                raise NameTaken(display)
            db.refresh(diner)
            queue_audit(db, "diner_rejoined", session.id, {"diner_id": diner.id, "name": diner.name}, diner.name)
            return diner, True

        diner = Diner(
            session_id=session.id,
            name=display,
            name_key=key,
            is_active=True,
            joined_at=now,
            last_active=now,
        )
        db.add(diner)
        db.flush()
    except IntegrityError:
        raise NameTaken(display)

    queue_audit(db, "diner_joined", session.id, {"diner_id": diner.id, "name": diner.name}, diner.name)
    return diner, False


def create_or_join_session(
    db: Session,
    table_id: int,
    diner_name: str,
    pin: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Diner entry point. Joins the table's active session, or binds a new one
    when the table is free. A supplied PIN must match the table's current PIN.
    """
    now = now or utcnow()
    display, _ = normalize_name(diner_name)
    table = db.get(RestaurantTable, table_id)
    if table is None or not table.is_active:
        raise TableNotFound(table_id)

    is_new = False
    session = None
    if not table.occupied:
        try:
            session = bind_session(db, table.id, started_by_name=display, now=now)
            is_new = True
        except TableOccupied:
            # Lost the race to another diner; join their session instead.
            db.refresh(table)

    if session is None:
        if table.current_session_id is None:
            raise TableOccupied(table_id)
        if pin is not None and pin != table.current_pin:
            raise InvalidPin(table.id)
        session = get_active_session(db, table.current_session_id)

    diner, rejoined = add_or_rejoin_diner(db, session.id, display, now=now)
    return {
        "session_id": session.id,
        "table_id": table.id,
        "is_new_session": is_new,
        "rejoined": rejoined,
        "diner": diner.to_dict(),
        # Only the diner who opened the table gets the PIN to share.
        "pin": table.current_pin if is_new else None,
    }


def touch_diner(db: Session, session_id: int, diner_id: int, now: Optional[datetime] = None) -> Diner:
    """Heartbeat: bump ``last_active`` and nothing else."""
    now = now or utcnow()
    result = db.execute(
        update(Diner)
        .where(Diner.id == diner_id, Diner.session_id == session_id)
        .values(last_active=now)
    )
    if result.rowcount != 1:
        raise DinerNotFound(session_id, diner_id)
    diner = db.get(Diner, diner_id)
    db.refresh(diner)
    return diner


def touch_diner_by_name(db: Session, session_id: int, diner_name: str, now: Optional[datetime] = None) -> None:
    diner = find_diner(db, session_id, diner_name, active_only=True)
    if diner is not None:
        diner.last_active = now or utcnow()


def deactivate_diner(
    db: Session,
    session_id: int,
    diner_id: int,
    reason: str = "logout",
    now: Optional[datetime] = None,
) -> Diner:
    """Soft-remove a diner. Orders and the row itself are kept."""
    now = now or utcnow()
    diner = db.get(Diner, diner_id)
    if diner is None or diner.session_id != session_id:
        raise DinerNotFound(session_id, diner_id)
    if diner.is_active:
        diner.is_active = False
        diner.logout_time = now
        queue_audit(db, "diner_deactivated", session_id, {"diner_id": diner.id, "name": diner.name, "reason": reason}, diner.name)
    return diner


def leave_session(db: Session, session_id: int, diner_name: str, now: Optional[datetime] = None) -> Diner:
    diner = require_diner(db, session_id, diner_name, active_only=False)
    return deactivate_diner(db, session_id, diner.id, reason="logout", now=now)


def deactivate_all_diners(db: Session, session_id: int, now: Optional[datetime] = None) -> int:
    result = db.execute(
        update(Diner)
        .where(Diner.session_id == session_id, Diner.is_active.is_(True))
        .values(is_active=False, logout_time=now or utcnow())
    )
    return result.rowcount or 0


def terminate_session(
    db: Session,
    session_id: int,
    outcome: Union[SessionStatus, str],
    performed_by: str = "system",
    now: Optional[datetime] = None,
) -> DiningSession:
    """Close an active session as completed or cancelled and free its table."""
    now = now or utcnow()
    outcome = SessionStatus(outcome)
    if outcome == SessionStatus.ACTIVE:
        raise ValidationError("A session cannot be terminated into 'active'")
    session = get_session(db, session_id)

    result = db.execute(
        update(DiningSession)
        .where(DiningSession.id == session_id, DiningSession.status == SessionStatus.ACTIVE.value)
        .values(status=outcome.value, ended_at=now)
    )
    if result.rowcount != 1:
        db.refresh(session)
        raise SessionNotActive(session_id, session.status)
    db.refresh(session)

    tables.clear_table(db, session.table_id, session_id=session.id)
    queue_audit(db, f"session_{outcome.value}", session.id, {"table_id": session.table_id}, performed_by)
    logger.info("Session %s %s by %s", session.id, outcome.value, performed_by)
    return session


def get_session_detail(db: Session, session_id: int) -> Dict[str, Any]:
    session = get_session(db, session_id)
    table = db.get(RestaurantTable, session.table_id)
    data = session.to_dict()
    data["table_number"] = table.table_number if table else None
    data["diners"] = [d.to_dict() for d in session.diners]
    data["active_diners"] = [d.name for d in session.diners if d.is_active]
    return data


def list_active_sessions(db: Session) -> List[DiningSession]:
    return list(db.execute(
        select(DiningSession)
        .where(DiningSession.status == SessionStatus.ACTIVE.value)
        .order_by(DiningSession.started_at)
    ).scalars().all())


def assign_staff(db: Session, session_id: int, staff_id: int, performed_by: str) -> DiningSession:
    session = get_active_session(db, session_id)
    if db.get(User, staff_id) is None:
        raise NotFound(f"Staff member {staff_id} not found", staff_id=staff_id)
    previous = session.served_by
    session.served_by = staff_id
    queue_audit(db, "staff_assigned", session.id, {"from": previous, "to": staff_id}, performed_by)
    return session


def request_assistance(db: Session, session_id: int, diner_name: str, message: Optional[str] = None) -> Dict[str, Any]:
    """Diner calls a waiter. Only emits a notification."""
    session = get_active_session(db, session_id)
    diner = require_diner(db, session.id, diner_name)
    diner.last_active = utcnow()
    table = db.get(RestaurantTable, session.table_id)
    table_number = table.table_number if table else session.table_id
    queue_notification(
        db,
        session.id,
        NotificationType.WAITER_REQUEST.value,
        f"Table {table_number} needs assistance",
        message or f"{diner.name} at table {table_number} is asking for a waiter",
        priority="high",
        metadata={"table_number": table_number, "diner_name": diner.name},
    )
    return {"session_id": session.id, "table_number": table_number, "requested_by": diner.name}


def daily_reset(db: Session, performed_by: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    End-of-day housekeeping: complete every active session, free every
    table and drop all unconfirmed carts.
    """
    now = now or utcnow()
    active_ids = list(db.execute(
        select(DiningSession.id).where(DiningSession.status == SessionStatus.ACTIVE.value)
    ).scalars().all())

    sessions_closed = 0
    if active_ids:
        sessions_closed = db.execute(
            update(DiningSession)
            .where(DiningSession.id.in_(active_ids), DiningSession.status == SessionStatus.ACTIVE.value)
            .values(status=SessionStatus.COMPLETED.value, ended_at=now)
        ).rowcount or 0
        db.execute(
            update(Diner)
            .where(Diner.session_id.in_(active_ids), Diner.is_active.is_(True))
            .values(is_active=False, logout_time=now)
        )

    tables_cleared = db.execute(
        update(RestaurantTable)
        .where(RestaurantTable.occupied.is_(True))
        .values(occupied=False, current_session_id=None, current_pin=None)
    ).rowcount or 0

    carts_deleted = db.execute(
        delete(Order).where(Order.status == OrderStatus.CART.value)
    ).rowcount or 0

    summary = {
        "sessions_closed": sessions_closed,
        "tables_cleared": tables_cleared,
        "cart_orders_deleted": carts_deleted,
    }
    queue_audit(db, "daily_reset", None, summary, performed_by)
    logger.info("Daily reset by %s: %s", performed_by, summary)
    return summary
