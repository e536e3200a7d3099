"""Notifications API: the staff inbox and the diner-side feed."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from dineflow.db.models import User
from dineflow.db.dependencies import get_storage, require_staff
from dineflow.services import notifications as notification_service
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", summary="Staff notifications (pending by default)")
def list_notifications(
    status: Optional[str] = "pending",
    type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    rows = storage.run(notification_service.list_notifications, status or None, type, None, limit)
    return [n.to_dict() for n in rows]


@router.get("/session/{session_id}", summary="Notifications for one session (diner devices poll this)")
def session_notifications(
    session_id: int,
    status: Optional[str] = None,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    rows = storage.run(notification_service.list_notifications, status, None, session_id)
    return [n.to_dict() for n in rows]


@router.post("/{notification_id}/ack", summary="Mark a notification handled (staff)")
def acknowledge(
    notification_id: int,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    return storage.run(notification_service.acknowledge_notification, notification_id, staff.username).to_dict()
