"""Split bill API router."""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from dineflow.db.dependencies import get_storage
from dineflow.services import splits as split_service
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/splits", tags=["splits"])


class CreateSplitRequest(BaseModel):
    order_id: int
    participants: List[str]
    requested_by: Optional[str] = None


@router.post("", status_code=201, summary="Split a shared order between diners")
def create_split(request: CreateSplitRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    split = storage.run(split_service.create_split, request.order_id, request.participants, request.requested_by)
    return split.to_dict()


@router.get("", summary="Splits of a session")
def list_splits(session_id: int, active_only: bool = True, storage: SQLAlchemyStorage = Depends(get_storage)):
    return [s.to_dict() for s in storage.run(split_service.list_splits, session_id, active_only)]


@router.get("/{split_bill_id}", summary="One split bill")
def get_split(split_bill_id: int, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(split_service.get_split, split_bill_id).to_dict()


@router.delete("/{split_bill_id}", summary="Dissolve a split; the order is billed whole again")
def dissolve_split(split_bill_id: int, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(split_service.dissolve_split, split_bill_id).to_dict()
