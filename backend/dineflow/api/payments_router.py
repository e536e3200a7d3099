"""
Payments API router.

Diners fetch bills and request payment; staff complete payments, which
produces (or replays) a receipt.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from dineflow.db.models import User
from dineflow.db.dependencies import get_storage, require_staff
from dineflow.services import payments as payment_service
from dineflow.services.menu import to_cents
from dineflow.services.payments import PaymentScope
from dineflow.statuses import PaymentType
from dineflow.storage import SQLAlchemyStorage


router = APIRouter(prefix="/api/payments", tags=["payments"])


# ---------- Request/Response Models ----------

class PaymentRequestBody(BaseModel):
    payment_type: PaymentType
    diner_name: Optional[str] = None
    tip_amount: float = Field(0, ge=0)
    computed_subtotal: Optional[float] = Field(None, ge=0)
    computed_vat: Optional[float] = Field(None, ge=0)


class CompletePaymentBody(BaseModel):
    payment_type: PaymentType
    diner_name: Optional[str] = None
    payment_method: str = "cash"


# ---------- Endpoints ----------

@router.get("/{session_id}/bill", summary="Current bill for the table or one diner")
def get_bill(session_id: int, diner_name: Optional[str] = None, storage: SQLAlchemyStorage = Depends(get_storage)):
    return payment_service.bill_to_dict(storage.run(payment_service.compute_bill, session_id, diner_name))


@router.post("/{session_id}/request", status_code=201, summary="Ask staff to settle")
def request_payment(
    session_id: int,
    body: PaymentRequestBody,
    storage: SQLAlchemyStorage = Depends(get_storage),
):
    scope = PaymentScope.of(body.payment_type.value, body.diner_name)
    request = storage.run(
        payment_service.request_payment,
        session_id,
        scope,
        to_cents(body.tip_amount),
        None if body.computed_subtotal is None else to_cents(body.computed_subtotal),
        None if body.computed_vat is None else to_cents(body.computed_vat),
    )
    return request.to_dict()


@router.post("/{session_id}/complete", summary="Complete a pending payment (staff)")
def complete_payment(
    session_id: int,
    body: CompletePaymentBody,
    storage: SQLAlchemyStorage = Depends(get_storage),
    staff: User = Depends(require_staff),
):
    scope = PaymentScope.of(body.payment_type.value, body.diner_name)
    receipt = storage.run(
        payment_service.complete_payment, session_id, scope, body.payment_method, staff.username
    )
    return receipt.to_dict()


@router.get("/{session_id}/status", summary="Payment status, outstanding requests and receipts")
def payment_status(session_id: int, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(payment_service.get_payment_status, session_id)


@router.get("/{session_id}/receipt", summary="Receipt for the table or one diner")
def get_receipt(session_id: int, diner_name: Optional[str] = None, storage: SQLAlchemyStorage = Depends(get_storage)):
    return storage.run(payment_service.get_receipt, session_id, diner_name).to_dict()
