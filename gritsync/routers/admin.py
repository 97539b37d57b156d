from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gritsync.core.admin import require_admin
from gritsync.db.session import get_db
from gritsync.models.user import User
from gritsync.schemas.admin import PaymentApprovalOut, PaymentRejectIn
from gritsync.schemas.payment import PaymentOut
from gritsync.services import review

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/payments/pending", response_model=list[PaymentOut])
def list_pending_payments(
    db: Session = Depends(get_db), admin: User = Depends(require_admin)
):
    return review.pending_payments(db)


@router.post("/payments/{payment_id}/approve", response_model=PaymentApprovalOut)
def approve_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    payment, settlement = review.approve_payment(db, payment_id)
    return PaymentApprovalOut(
        payment=PaymentOut.model_validate(payment),
        total_amount_paid=settlement.total_amount_paid,
        receipt_number=settlement.receipt.receipt_number if settlement.receipt else None,
    )


@router.post("/payments/{payment_id}/reject", response_model=PaymentOut)
def reject_payment(
    payment_id: str,
    payload: PaymentRejectIn | None = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return review.reject_payment(db, payment_id, payload.reason if payload else None)
