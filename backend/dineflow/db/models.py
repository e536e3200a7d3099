"""
Canonical relational database models for DineFlow.

These models represent the full relational schema and are used by Alembic
for migration generation. Money is stored as integer cents.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, JSON, ForeignKey, Index, Text, text,
)
from sqlalchemy.orm import declarative_base, relationship

from dineflow.statuses import (
    OrderStatus, SessionStatus, PaymentStatus, SplitStatus,
    NotificationStatus, PaymentRequestStatus,
)
from dineflow.utils.time_utils import iso, utcnow

Base = declarative_base()


def cents_to_amount(cents):
    """Convert stored cents to a currency amount for API payloads."""
    return round((cents or 0) / 100.0, 2)


class User(Base):
    """Staff users: waiters, kitchen, managers, admin."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    roles = Column(JSON, default=list, nullable=False)  # e.g., ["waiter", "manager"]
    pin = Column(String(6), nullable=True)  # Optional PIN for quick login
    created_at = Column(DateTime, default=utcnow, nullable=False)

    served_sessions = relationship("DiningSession", back_populates="server")

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username})>"


class RestaurantTable(Base):
    """A physical table. Long-lived; occupancy follows the bound session."""

    __tablename__ = "restaurant_tables"

    id = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, nullable=True, index=True)
    table_number = Column(String(20), nullable=False, unique=True)
    capacity = Column(Integer, nullable=False, default=4)
    is_active = Column(Boolean, nullable=False, default=True)
    occupied = Column(Boolean, nullable=False, default=False)
    # Weak reference: no FK so sessions can be purged independently.
    current_session_id = Column(Integer, nullable=True)
    current_pin = Column(String(4), nullable=True)

    sessions = relationship("DiningSession", back_populates="table")

    def to_dict(self):
        return {
            "id": self.id,
            "table_number": self.table_number,
            "capacity": self.capacity,
            "is_active": self.is_active,
            "occupied": self.occupied,
            "current_session_id": self.current_session_id,
        }

    def __repr__(self):
        return f"<RestaurantTable(id={self.id}, number={self.table_number}, occupied={self.occupied})>"


class DiningSession(Base):
    """A dining occasion bound to one table, from claim to settlement."""

    __tablename__ = "dining_sessions"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, ForeignKey("restaurant_tables.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE.value)
    started_by_name = Column(String(255), nullable=True)
    served_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.NONE.value)
    payment_type = Column(String(20), nullable=True)
    final_total = Column(Integer, nullable=True)  # cents
    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    payment_requested_at = Column(DateTime, nullable=True)
    payment_completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        # At most one active session per table.
        Index(
            "uq_dining_sessions_active_table",
            "table_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
        Index("idx_dining_sessions_status", "status"),
        Index("idx_dining_sessions_ended", "ended_at"),
    )

    table = relationship("RestaurantTable", back_populates="sessions")
    server = relationship("User", back_populates="served_sessions")
    diners = relationship("Diner", back_populates="session", order_by="Diner.id")

    def to_dict(self):
        return {
            "id": self.id,
            "table_id": self.table_id,
            "status": self.status,
            "started_by_name": self.started_by_name,
            "served_by": self.served_by,
            "payment_status": self.payment_status,
            "payment_type": self.payment_type,
            "final_total": cents_to_amount(self.final_total) if self.final_total is not None else None,
            "started_at": iso(self.started_at),
            "ended_at": iso(self.ended_at),
            "payment_requested_at": iso(self.payment_requested_at),
            "payment_completed_at": iso(self.payment_completed_at),
        }

    def __repr__(self):
        return f"<DiningSession(id={self.id}, table_id={self.table_id}, status={self.status})>"


class Diner(Base):
    """A named participant of a session. Deactivated, never deleted."""

    __tablename__ = "diners"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    name_key = Column(String(100), nullable=False)  # lower(trim(name))
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime, default=utcnow, nullable=False)
    last_active = Column(DateTime, default=utcnow, nullable=False)
    logout_time = Column(DateTime, nullable=True)

    __table_args__ = (
        # At most one active diner per (session, case-insensitive name).
        Index(
            "uq_diners_active_name",
            "session_id",
            "name_key",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("idx_diners_last_active", "last_active"),
    )

    session = relationship("DiningSession", back_populates="diners")

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "name": self.name,
            "is_active": self.is_active,
            "joined_at": iso(self.joined_at),
            "last_active": iso(self.last_active),
            "logout_time": iso(self.logout_time),
        }

    def __repr__(self):
        return f"<Diner(id={self.id}, name={self.name}, active={self.is_active})>"


class MenuItem(Base):
    """Orderable menu item. Price changes never touch existing orders."""

    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)  # Stored as cents (int) for accuracy
    category = Column(String(100), nullable=False, index=True)
    is_available = Column(Boolean, default=True, nullable=False)
    extra_data = Column(JSON, nullable=True)  # allergens, prep_time, etc.

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "price": cents_to_amount(self.price),
            "category": self.category,
            "is_available": self.is_available,
        }

    def __repr__(self):
        return f"<MenuItem(id={self.id}, name={self.name}, price={self.price})>"


class Order(Base):
    """One ordered menu line, from cart through kitchen to settlement."""

    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False, index=True)
    item_name = Column(String(255), nullable=False)  # Snapshot at order time
    unit_price = Column(Integer, nullable=False)  # Cents, captured at order time
    quantity = Column(Integer, nullable=False, default=1)
    diner_name = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    is_shared = Column(Boolean, nullable=False, default=False)
    is_takeaway = Column(Boolean, nullable=False, default=False)
    # Weak reference to the active SplitBill, if any.
    split_bill_id = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.CART.value)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    voided_at = Column(DateTime, nullable=True)
    void_reason = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_orders_session_status", "session_id", "status"),
        Index("idx_orders_status_created", "status", "created_at"),
    )

    menu_item = relationship("MenuItem")

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "menu_item_id": self.menu_item_id,
            "item_name": self.item_name,
            "unit_price": cents_to_amount(self.unit_price),
            "quantity": self.quantity,
            "line_total": cents_to_amount(self.line_total),
            "diner_name": self.diner_name,
            "notes": self.notes,
            "is_shared": self.is_shared,
            "is_takeaway": self.is_takeaway,
            "split_bill_id": self.split_bill_id,
            "status": self.status,
            "created_at": iso(self.created_at),
            "voided_at": iso(self.voided_at),
            "void_reason": self.void_reason,
        }

    def __repr__(self):
        return f"<Order(id={self.id}, item={self.item_name}, qty={self.quantity}, status={self.status})>"


class SplitBill(Base):
    """Shared-cost allocation for one order marked shared."""

    __tablename__ = "split_bills"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=False, index=True)
    # Settled orders are deleted at table payment; the split row outlives them.
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    original_price = Column(Integer, nullable=False)  # cents
    split_count = Column(Integer, nullable=False)
    split_price = Column(Integer, nullable=False)  # cents, nominal per-person price
    participants = Column(JSON, nullable=False, default=list)
    shares = Column(JSON, nullable=False, default=dict)  # name -> cents, sums to original_price
    paid_participants = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default=SplitStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "order_id": self.order_id,
            "original_price": cents_to_amount(self.original_price),
            "split_count": self.split_count,
            "split_price": cents_to_amount(self.split_price),
            "participants": list(self.participants or []),
            "shares": {name: cents_to_amount(c) for name, c in (self.shares or {}).items()},
            "paid_participants": list(self.paid_participants or []),
            "status": self.status,
            "created_at": iso(self.created_at),
            "completed_at": iso(self.completed_at),
        }

    def __repr__(self):
        return f"<SplitBill(id={self.id}, order_id={self.order_id}, count={self.split_count})>"


class PaymentRequest(Base):
    """A diner's (or the table's) request to settle, awaiting staff."""

    __tablename__ = "payment_requests"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=False, index=True)
    payment_type = Column(String(20), nullable=False)
    diner_name = Column(String(100), nullable=True)
    subtotal = Column(Integer, nullable=False, default=0)
    vat_amount = Column(Integer, nullable=False, default=0)
    tip_amount = Column(Integer, nullable=False, default=0)
    final_total = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False, default=PaymentRequestStatus.PENDING.value)
    requested_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_payment_requests_session_status", "session_id", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "payment_type": self.payment_type,
            "diner_name": self.diner_name,
            "subtotal": cents_to_amount(self.subtotal),
            "vat_amount": cents_to_amount(self.vat_amount),
            "tip_amount": cents_to_amount(self.tip_amount),
            "final_total": cents_to_amount(self.final_total),
            "status": self.status,
            "requested_at": iso(self.requested_at),
            "completed_at": iso(self.completed_at),
        }


class Receipt(Base):
    """Settlement record returned by (and replayed for) completePayment."""

    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=False, index=True)
    payment_request_id = Column(Integer, ForeignKey("payment_requests.id"), nullable=True)
    payment_type = Column(String(20), nullable=False)
    diner_name = Column(String(100), nullable=True)
    payment_method = Column(String(20), nullable=False)
    completed_by = Column(String(255), nullable=False)
    total = Column(Integer, nullable=False, default=0)  # cents
    content = Column(JSON, nullable=False)  # Itemised snapshot
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "payment_type": self.payment_type,
            "diner_name": self.diner_name,
            "payment_method": self.payment_method,
            "completed_by": self.completed_by,
            "total": cents_to_amount(self.total),
            "content": self.content,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Receipt(id={self.id}, session_id={self.session_id}, type={self.payment_type})>"


class Notification(Base):
    """Staff/diner notification written by the notification emitter."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("dining_sessions.id"), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(20), nullable=False, default="normal")
    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value)
    extra_data = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_notifications_type_status", "type", "status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "priority": self.priority,
            "status": self.status,
            "metadata": self.extra_data or {},
            "created_at": iso(self.created_at),
            "completed_at": iso(self.completed_at),
            "completed_by": self.completed_by,
        }


class AuditLog(Base):
    """Write-only compliance trail. session_id is kept after purges."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(100), nullable=False, index=True)
    session_id = Column(Integer, nullable=True, index=True)
    details = Column(JSON, nullable=True)
    performed_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "session_id": self.session_id,
            "details": self.details or {},
            "performed_by": self.performed_by,
            "created_at": iso(self.created_at),
        }
