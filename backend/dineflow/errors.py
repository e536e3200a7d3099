"""
Domain error taxonomy for DineFlow.

Every error carries a stable machine ``code`` (for the UI to branch on) and the
HTTP status it maps to. Routers never catch these; the handler registered in
``dineflow.main`` turns them into JSON responses.
"""

from typing import Any, Dict, Optional


class DineflowError(Exception):
    """Base class for all expected business failures."""

    status_code = 500
    code = "error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            body["context"] = self.details
        return body


# ---------- Families ----------

class NotFound(DineflowError):
    status_code = 404
    code = "not_found"


class Conflict(DineflowError):
    status_code = 409
    code = "conflict"


class InvalidTransition(DineflowError):
    status_code = 409
    code = "invalid_transition"


class ValidationError(DineflowError):
    status_code = 400
    code = "validation_error"


class DependencyUnavailable(DineflowError):
    status_code = 503
    code = "dependency_unavailable"


# ---------- NotFound ----------

class TableNotFound(NotFound):
    code = "table_not_found"

    def __init__(self, table_id: Any):
        super().__init__(f"Table {table_id} not found", table_id=table_id)


class SessionNotFound(NotFound):
    code = "session_not_found"

    def __init__(self, session_id: Any):
        super().__init__(f"Session {session_id} not found", session_id=session_id)


class DinerNotFound(NotFound):
    code = "diner_not_found"

    def __init__(self, session_id: Any, diner: Any):
        super().__init__(
            f"Diner {diner} not found in session {session_id}",
            session_id=session_id,
            diner=diner,
        )


class OrderNotFound(NotFound):
    code = "order_not_found"

    def __init__(self, order_id: Any):
        super().__init__(f"Order {order_id} not found", order_id=order_id)


class MenuItemNotFound(NotFound):
    code = "menu_item_not_found"

    def __init__(self, menu_item_id: Any):
        super().__init__(f"Menu item {menu_item_id} not found", menu_item_id=menu_item_id)


class SplitBillNotFound(NotFound):
    code = "split_bill_not_found"

    def __init__(self, split_bill_id: Any):
        super().__init__(f"Split bill {split_bill_id} not found", split_bill_id=split_bill_id)


class NotificationNotFound(NotFound):
    code = "notification_not_found"

    def __init__(self, notification_id: Any):
        super().__init__(
            f"Notification {notification_id} not found", notification_id=notification_id
        )


class ReceiptNotFound(NotFound):
    code = "receipt_not_found"

    def __init__(self, session_id: Any, diner_name: Optional[str] = None):
        target = f" for {diner_name}" if diner_name else ""
        super().__init__(
            f"No receipt{target} in session {session_id}",
            session_id=session_id,
            diner_name=diner_name,
        )


# ---------- Conflict ----------

class TableOccupied(Conflict):
    code = "table_occupied"

    def __init__(self, table_id: Any):
        super().__init__(
            f"Table {table_id} is already occupied by an active session", table_id=table_id
        )


class NameTaken(Conflict):
    code = "name_taken"

    def __init__(self, name: str):
        super().__init__(
            f"The name '{name}' is already in use at this table. Please choose another.",
            name=name,
        )


class PaymentAlreadyPending(Conflict):
    code = "payment_already_pending"

    def __init__(self, session_id: Any, requested_by: Optional[str] = None):
        who = requested_by or "the table"
        super().__init__(
            f"A payment request from {who} is already pending for this session",
            session_id=session_id,
            requested_by=requested_by,
        )


class PaymentAlreadyCompleted(Conflict):
    code = "payment_already_completed"

    def __init__(self, session_id: Any):
        super().__init__(
            f"Payment for session {session_id} has already been completed",
            session_id=session_id,
        )


class SplitAlreadyActive(Conflict):
    code = "split_already_active"

    def __init__(self, order_id: Any, split_bill_id: Any):
        super().__init__(
            f"Order {order_id} is already split (split bill {split_bill_id})",
            order_id=order_id,
            split_bill_id=split_bill_id,
        )


# ---------- InvalidTransition ----------

class OrderTransitionError(InvalidTransition):
    code = "invalid_order_transition"

    def __init__(self, order_id: Any, current: str, target: str):
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{target}'",
            order_id=order_id,
            current=current,
            target=target,
        )


class SessionNotActive(InvalidTransition):
    code = "session_not_active"

    def __init__(self, session_id: Any, status: str):
        super().__init__(
            f"Session {session_id} is {status}, not active",
            session_id=session_id,
            status=status,
        )


class NotPending(InvalidTransition):
    code = "payment_not_pending"

    def __init__(self, session_id: Any, payment_status: str):
        super().__init__(
            f"Payment is not pending (current status: {payment_status})",
            session_id=session_id,
            payment_status=payment_status,
        )


# ---------- ValidationError ----------

class InvalidParticipantCount(ValidationError):
    code = "invalid_participant_count"

    def __init__(self, count: int):
        super().__init__(
            f"A split needs at least 2 distinct participants, got {count}", count=count
        )


class InvalidPin(ValidationError):
    code = "invalid_pin"
    status_code = 403

    def __init__(self, table_id: Any):
        super().__init__(
            "Invalid PIN. Please check with your server.", table_id=table_id
        )
