"""Menu API router."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dineflow.db.models import User
from dineflow.db.dependencies import get_storage, require_admin
from dineflow.services import menu as menu_service
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/menu", tags=["menu"])


class MenuItemRequest(BaseModel):
    """Request body for creating or replacing a menu item."""
    name: str
    price: float = Field(..., ge=0)
    category: str = "main"
    hidden: bool = False
    extra_data: Optional[Dict[str, Any]] = None


class UpdateMenuItemRequest(BaseModel):
    price: Optional[float] = Field(None, ge=0)
    is_available: Optional[bool] = None


@router.get("", summary="Orderable menu items")
def list_menu(include_unavailable: bool = False, storage: SQLAlchemyStorage = Depends(get_storage)):
    return [item.to_dict() for item in storage.run(menu_service.list_menu, include_unavailable)]


@router.post("", summary="Create or update a menu item by name (admin-only)")
def upsert_menu_item(
    request: MenuItemRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    return storage.run(menu_service.upsert_menu_item, request.model_dump()).to_dict()


@router.patch("/{menu_item_id}", summary="Change price or availability (admin-only)")
def update_menu_item(
    menu_item_id: int,
    request: UpdateMenuItemRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    admin: User = Depends(require_admin),
):
    item = storage.run(menu_service.update_menu_item, menu_item_id, request.price, request.is_available)
    return item.to_dict()
