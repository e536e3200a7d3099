"""Table registry API: listing, staff claims, PIN checks and transfers."""

from typing import Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dineflow.db.models import User
from dineflow.db.dependencies import get_storage, require_staff, require_admin
from dineflow.services import tables as table_service
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/tables", tags=["tables"])


# ---------- Request/Response Models ----------

class CreateTableRequest(BaseModel):
    table_number: str
    capacity: int = Field(4, ge=1)
    restaurant_id: Optional[int] = None


class ClaimTableRequest(BaseModel):
    started_by_name: Optional[str] = None


class ClaimTableResponse(BaseModel):
    pin: str
    session_id: int
    table_id: int


class VerifyPinRequest(BaseModel):
    table: Union[int, str]
    pin: str


class TransferTableRequest(BaseModel):
    session_id: int
    destination_table_id: int
    source_table_id: Optional[int] = None


# ---------- Endpoints ----------

@router.get("", summary="List tables with occupancy")
def list_tables(include_inactive: bool = False, storage: SQLAlchemyStorage = Depends(get_storage)):
    return [t.to_dict() for t in storage.run(table_service.list_tables, include_inactive)]


@router.post("", status_code=201, summary="Create a table (admin-only)")
def create_table(
    request: CreateTableRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    table = storage.run(
        table_service.create_table, request.table_number, request.capacity, request.restaurant_id
    )
    return table.to_dict()


@router.post("/{table_id}/claim", response_model=ClaimTableResponse, summary="Claim a free table for a new session")
def claim_table(
    table_id: int,
    request: Optional[ClaimTableRequest] = None,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    started_by = (request.started_by_name if request else None) or staff.username
    return storage.run(table_service.claim_table, table_id, staff.id, started_by)


@router.post("/{table_id}/release", summary="Free a table, cancelling its active session")
def release_table(
    table_id: int,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    return storage.run(table_service.release_table, table_id, staff.username)


@router.post("/verify-pin", summary="Check a table PIN before joining")
def verify_pin(request: VerifyPinRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    result = storage.run(table_service.verify_pin, request.table, request.pin)
    return {"valid": True, **result}


@router.post("/transfer", summary="Move a session to another free table")
def transfer_table(
    request: TransferTableRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    return storage.run(
        table_service.transfer_table,
        request.session_id,
        request.destination_table_id,
        staff.username,
        request.source_table_id,
    )
