"""
Table registry: physical tables, occupancy and PINs.

Occupancy changes are single conditional UPDATEs (``... WHERE occupied = false``)
so two staff devices claiming the same table can never both win.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dineflow.db.models import RestaurantTable, DiningSession
from dineflow.errors import (
    Conflict, TableNotFound, TableOccupied, InvalidPin, ValidationError, SessionNotActive,
)
from dineflow.services.events import queue_audit
from dineflow.statuses import SessionStatus

logger = logging.getLogger(__name__)


def generate_pin() -> str:
    """Random 4-digit table PIN, zero padded."""
    return f"{secrets.randbelow(10000):04d}"


def get_table(db: Session, table_id: int) -> RestaurantTable:
    table = db.get(RestaurantTable, table_id)
    if table is None:
        raise TableNotFound(table_id)
    return table


def find_table(db: Session, table_ref: Union[int, str]) -> RestaurantTable:
    """Look a table up by id, falling back to its printed table number."""
    table = None
    if isinstance(table_ref, int) or str(table_ref).isdigit():
        table = db.get(RestaurantTable, int(table_ref))
    if table is None:
        table = db.execute(
            select(RestaurantTable).where(RestaurantTable.table_number == str(table_ref))
        ).scalar_one_or_none()
    if table is None or not table.is_active:
        raise TableNotFound(table_ref)
    return table


def create_table(
    db: Session,
    table_number: str,
    capacity: int = 4,
    restaurant_id: Optional[int] = None,
) -> RestaurantTable:
    if not str(table_number).strip():
        raise ValidationError("table_number is required")
    if capacity < 1:
        raise ValidationError("capacity must be at least 1", capacity=capacity)
    table = RestaurantTable(
        table_number=str(table_number).strip(),
        capacity=capacity,
        restaurant_id=restaurant_id,
    )
    db.add(table)
    try:
        db.flush()
    except IntegrityError:
        raise Conflict(f"Table number {table_number} already exists", table_number=table_number)
    return table


def list_tables(db: Session, include_inactive: bool = False) -> List[RestaurantTable]:
    stmt = select(RestaurantTable).order_by(RestaurantTable.id)
    if not include_inactive:
        stmt = stmt.where(RestaurantTable.is_active.is_(True))
    return list(db.execute(stmt).scalars().all())


def occupy_table(db: Session, table_id: int, pin: str, session_id: Optional[int] = None) -> RestaurantTable:
    """
    Mark a free table occupied, compare-and-swap style.

    Raises TableNotFound for missing/inactive tables and TableOccupied when
    another claim got there first.
    """
    result = db.execute(
        update(RestaurantTable)
        .where(
            RestaurantTable.id == table_id,
            RestaurantTable.is_active.is_(True),
            RestaurantTable.occupied.is_(False),
        )
        .values(occupied=True, current_pin=pin, current_session_id=session_id)
    )
    table = db.get(RestaurantTable, table_id)
    if result.rowcount != 1:
        if table is None or not table.is_active:
            raise TableNotFound(table_id)
        raise TableOccupied(table_id)
    db.refresh(table)
    return table


def clear_table(db: Session, table_id: int, session_id: Optional[int] = None) -> bool:
    """
    Release a table. When ``session_id`` is given the table is only cleared
    if it is still bound to that session.
    """
    stmt = update(RestaurantTable).where(RestaurantTable.id == table_id)
    if session_id is not None:
        stmt = stmt.where(RestaurantTable.current_session_id == session_id)
    result = db.execute(stmt.values(occupied=False, current_session_id=None, current_pin=None))
    return (result.rowcount or 0) > 0


def verify_pin(db: Session, table_ref: Union[int, str], pin: str) -> Dict[str, Any]:
    """Check a diner-entered PIN and report the session they would join."""
    table = find_table(db, table_ref)
    if not table.current_pin or not secrets.compare_digest(str(pin), table.current_pin):
        logger.info("PIN verification failed for table %s", table.table_number)
        raise InvalidPin(table.id)
    return {"table": table.to_dict(), "session_id": table.current_session_id}


def claim_table(db: Session, table_id: int, staff_id: Optional[int], started_by_name: Optional[str] = None) -> Dict[str, Any]:
    """Staff claim: bind a new session to a free table, returning its PIN."""
    from dineflow.services.sessions import bind_session

    session = bind_session(db, table_id, staff_id, started_by_name=started_by_name)
    table = get_table(db, table_id)
    return {"pin": table.current_pin, "session_id": session.id, "table_id": table.id}


def release_table(db: Session, table_id: int, performed_by: str) -> Dict[str, Any]:
    """
    Manually free a table. An active session bound to it is cancelled;
    releasing an already free table is a no-op.
    """
    from dineflow.services.sessions import terminate_session

    table = get_table(db, table_id)
    session_id = table.current_session_id
    if session_id is not None:
        session = db.get(DiningSession, session_id)
        if session is not None and session.status == SessionStatus.ACTIVE.value:
            terminate_session(db, session_id, SessionStatus.CANCELLED, performed_by=performed_by)
            return {"table_id": table.id, "cancelled_session_id": session_id}
    if table.occupied:
        clear_table(db, table.id)
        queue_audit(db, "table_released", session_id, {"table_id": table.id}, performed_by)
    return {"table_id": table.id, "cancelled_session_id": None}


def transfer_table(
    db: Session,
    session_id: int,
    destination_table_id: int,
    performed_by: str,
    source_table_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Move an active session (and its PIN) to a free table in one transaction."""
    session = db.get(DiningSession, session_id)
    if session is None:
        from dineflow.errors import SessionNotFound
        raise SessionNotFound(session_id)
    if session.status != SessionStatus.ACTIVE.value:
        raise SessionNotActive(session_id, session.status)
    if source_table_id is not None and session.table_id != source_table_id:
        raise ValidationError(
            "Session does not belong to source table",
            session_id=session_id,
            source_table_id=source_table_id,
        )
    if session.table_id == destination_table_id:
        raise ValidationError("Destination is the session's current table")

    source = get_table(db, session.table_id)
    pin = source.current_pin or generate_pin()

    occupy_table(db, destination_table_id, pin, session_id=session.id)
    clear_table(db, source.id, session_id=session.id)
    session.table_id = destination_table_id
    db.flush()

    queue_audit(
        db,
        "table_transferred",
        session.id,
        {"from_table_id": source.id, "to_table_id": destination_table_id},
        performed_by,
    )
    logger.info("Session %s moved from table %s to %s", session.id, source.id, destination_table_id)
    return {"session_id": session.id, "from_table_id": source.id, "to_table_id": destination_table_id}
