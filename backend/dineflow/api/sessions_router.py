"""Session API: diners joining, heartbeats, leaving and staff control."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dineflow.db.models import User
from dineflow.db.dependencies import get_storage, require_staff
from dineflow.services import sessions as session_service
from dineflow.statuses import SessionStatus
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/sessions", tags=["sessions"])


# ---------- Request/Response Models ----------

class JoinSessionRequest(BaseModel):
    table_id: int
    diner_name: str
    pin: Optional[str] = None


class HeartbeatRequest(BaseModel):
    diner_id: int


class DinerRequest(BaseModel):
    diner_name: str


class AssistanceRequest(BaseModel):
    diner_name: str
    message: Optional[str] = None


class TerminateRequest(BaseModel):
    outcome: SessionStatus = SessionStatus.CANCELLED


class AssignStaffRequest(BaseModel):
    staff_id: int


# ---------- Diner endpoints ----------

@router.post("/join", summary="Join the table's session, starting one if the table is free")
def join_session(request: JoinSessionRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(
        session_service.create_or_join_session, request.table_id, request.diner_name, request.pin
    )


@router.get("/{session_id}", summary="Session detail with diners")
def get_session(session_id: int, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(session_service.get_session_detail, session_id)


@router.post("/{session_id}/heartbeat", summary="Record diner activity")
def heartbeat(session_id: int, request: HeartbeatRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    diner = storage.run(session_service.touch_diner, session_id, request.diner_id)
    return diner.to_dict()


@router.post("/{session_id}/leave", summary="Leave the session (diner can rejoin by name)")
def leave_session(session_id: int, request: DinerRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    diner = storage.run(session_service.leave_session, session_id, request.diner_name)
    return diner.to_dict()


@router.post("/{session_id}/assistance", summary="Call a waiter to the table")
def request_assistance(
    session_id: int,
    request: AssistanceRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    return storage.run(
        session_service.request_assistance, session_id, request.diner_name, request.message
    )


# ---------- Staff endpoints ----------

@router.get("", summary="Active sessions (staff)")
def list_sessions(storage: SQLAlchemyStorage = Depends(get_storage), staff: User = Depends(require_staff)):
    return [s.to_dict() for s in storage.run(session_service.list_active_sessions)]


@router.post("/{session_id}/terminate", summary="Close a session and free its table (staff)")
def terminate_session(
    session_id: int,
    request: TerminateRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    session = storage.run(session_service.terminate_session, session_id, request.outcome, staff.username)
    return session.to_dict()


@router.post("/{session_id}/assign", summary="Assign the serving staff member")
def assign_staff(
    session_id: int,
    request: AssignStaffRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    session = storage.run(session_service.assign_staff, session_id, request.staff_id, staff.username)
    return session.to_dict()
