"""
Administrative API: reaper runs, daily reset, audit trail and manager
overrides on bills and payments.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from dineflow.db.models import User, cents_to_amount
from dineflow.db.dependencies import get_storage, require_admin, require_reaper_access
from dineflow.services import audit as audit_service
from dineflow.services import orders as order_service
from dineflow.services import payments as payment_service
from dineflow.services import sessions as session_service
from dineflow.services.reaper import run_reaper
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/admin", tags=["admin"])


class AdjustBillRequest(BaseModel):
    order_ids: List[int]
    reason: str


@router.post("/reaper/run", summary="Run the stale-entity reaper now")
def run_reaper_now(
    storage: SQLAlchemyStorage = Depends(get_storage),
    actor: str = Depends(require_reaper_access),
):
    report = run_reaper(storage)
    return {"triggered_by": actor, **report.to_dict()}


@router.post("/daily-reset", summary="Close all sessions and free all tables")
def daily_reset(storage: SQLAlchemyStorage = Depends(get_storage), admin: User = Depends(require_admin)):
    return storage.run(session_service.daily_reset, admin.username)


@router.get("/audit-logs", summary="Audit trail, newest first")
def list_audit_logs(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    action: Optional[str] = None,
    session_id: Optional[int] = None,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    rows = storage.run(audit_service.list_audit_logs, limit, offset, action, session_id)
    return [entry.to_dict() for entry in rows]


@router.post("/sessions/{session_id}/reset-payment", summary="Cancel a stuck payment request")
def reset_payment(
    session_id: int,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    return storage.run(payment_service.reset_payment_status, session_id, admin.username).to_dict()


@router.post("/sessions/{session_id}/adjust-bill", summary="Void orders from a bill (manager override)")
def adjust_bill(
    session_id: int,
    request: AdjustBillRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    result = storage.run(
        order_service.adjust_bill, session_id, request.order_ids, request.reason, admin.username
    )
    result["amount_removed"] = cents_to_amount(result["amount_removed"])
    return result
