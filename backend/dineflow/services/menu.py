"""Menu utilities for listing, seeding and upserting menu items."""

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dineflow.db.models import MenuItem
from dineflow.errors import MenuItemNotFound, ValidationError


def to_cents(amount: Any) -> int:
    """Convert a decimal price (e.g. 12.5) to integer cents."""
    try:
        cents = int(round(float(amount) * 100))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid price {amount!r}", price=amount)
    if cents < 0:
        raise ValidationError("Price cannot be negative", price=amount)
    return cents


def normalize_item_name(name: str) -> str:
    return name.lower().strip()


def list_menu(db: Session, include_unavailable: bool = False) -> List[MenuItem]:
    stmt = select(MenuItem).order_by(MenuItem.category, MenuItem.name)
    if not include_unavailable:
        stmt = stmt.where(MenuItem.is_available.is_(True))
    return list(db.execute(stmt).scalars().all())


def upsert_menu_item(db: Session, item_dict: Dict[str, Any]) -> MenuItem:
    """
    Create a menu item, or update the one with the same (case-insensitive)
    name. Existing orders keep the price they captured.
    """
    name = (item_dict.get("name") or "").strip()
    if not name:
        raise ValidationError("Menu items need a name")
    price_cents = to_cents(item_dict.get("price", 0))
    category = item_dict.get("category") or "main"
    is_available = not bool(item_dict.get("hidden"))
    extra_data = item_dict.get("extra_data") or item_dict.get("metadata")

    existing = db.execute(
        select(MenuItem).where(func.lower(MenuItem.name) == normalize_item_name(name))
    ).scalars().first()
    if existing:
        existing.name = name
        existing.price = price_cents
        existing.category = category
        existing.is_available = is_available
        existing.extra_data = extra_data
        return existing

    item = MenuItem(
        name=name,
        price=price_cents,
        category=category,
        is_available=is_available,
        extra_data=extra_data,
    )
    db.add(item)
    db.flush()
    return item


def update_menu_item(
    db: Session,
    menu_item_id: int,
    price: Optional[float] = None,
    is_available: Optional[bool] = None,
) -> MenuItem:
    item = db.get(MenuItem, menu_item_id)
    if item is None:
        raise MenuItemNotFound(menu_item_id)
    if price is not None:
        item.price = to_cents(price)
    if is_available is not None:
        item.is_available = is_available
    return item
