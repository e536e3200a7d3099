"""
Orders API router.

Diner-side cart management and confirmation, and the kitchen's view of
confirmed orders.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from dineflow.db.models import User, cents_to_amount
from dineflow.db.dependencies import get_storage, require_staff
from dineflow.services import orders as order_service
from dineflow.services import splits as split_service
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/orders", tags=["orders"])


# ---------- Request/Response Models ----------

class AddToCartRequest(BaseModel):
    session_id: int
    diner_name: str
    menu_item_id: int
    quantity: int = Field(1, ge=1, le=order_service.MAX_QUANTITY)
    notes: Optional[str] = None
    is_shared: bool = False
    is_takeaway: bool = False


class UpdateCartItemRequest(BaseModel):
    quantity: Optional[int] = Field(None, ge=0, le=order_service.MAX_QUANTITY)
    notes: Optional[str] = None
    is_shared: Optional[bool] = None


class ConfirmCartRequest(BaseModel):
    session_id: int
    diner_name: Optional[str] = None


class KitchenStatusRequest(BaseModel):
    status: str


class VoidOrderRequest(BaseModel):
    reason: str


# ---------- Cart ----------

@router.post("/cart", status_code=201, summary="Add a menu item to a diner's cart")
def add_to_cart(request: AddToCartRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    order = storage.run(
        order_service.add_to_cart,
        request.session_id,
        request.diner_name,
        request.menu_item_id,
        request.quantity,
        request.notes,
        request.is_shared,
        request.is_takeaway,
    )
    return order.to_dict()


@router.patch("/cart/{order_id}", summary="Edit a cart line (quantity 0 removes it)")
def update_cart_item(
    order_id: int,
    request: UpdateCartItemRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    order = storage.run(
        order_service.update_cart_item, order_id, request.quantity, request.notes, request.is_shared
    )
    return {"removed": True, "order_id": order_id} if order is None else order.to_dict()


@router.delete("/cart", summary="Clear a session's (or one diner's) cart")
def clear_cart(
    session_id: int,
    diner_name: Optional[str] = None,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    return {"removed": storage.run(order_service.clear_cart, session_id, diner_name)}


@router.post("/confirm", summary="Send cart lines to the kitchen")
def confirm_cart(request: ConfirmCartRequest, storage: SQLAlchemyStorage = Depends(get_storage)):
    confirmed = storage.run(order_service.confirm_cart, request.session_id, request.diner_name)
    return {"confirmed": [o.to_dict() for o in confirmed]}


@router.get("", summary="Orders of a session")
def list_orders(
    session_id: int,
    status: Optional[List[str]] = Query(None),
    diner_name: Optional[str] = None,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    return [o.to_dict() for o in storage.run(order_service.list_orders, session_id, status, diner_name)]


@router.get("/{order_id}/price", summary="Display prices for an order line")
def order_price(order_id: int, storage: SQLAlchemyStorage = Depends(get_storage)):
    prices = storage.run(split_service.display_price, order_id)
    for field in ("each_price", "line_total", "per_person_price"):
        prices[field] = cents_to_amount(prices[field])
    return prices


# ---------- Kitchen ----------

@router.get("/kitchen", summary="Kitchen queue (staff)")
def kitchen_queue(storage: SQLAlchemyStorage = Depends(get_storage), staff: User = Depends(require_staff)):
    return storage.run(order_service.kitchen_queue)


@router.post("/{order_id}/status", summary="Advance an order one kitchen step (staff)")
def advance_status(
    order_id: int,
    request: KitchenStatusRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    order = storage.run(order_service.advance_kitchen_status, order_id, request.status, staff.username)
    return order.to_dict()


@router.post("/{order_id}/void", summary="Void an order (staff)")
def void_order(
    order_id: int,
    request: VoidOrderRequest,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    return storage.run(order_service.void_order, order_id, request.reason, staff.username).to_dict()
