from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from gritsync.core.deps import get_current_user
from gritsync.db.session import get_db
from gritsync.models.user import User
from gritsync.schemas.payment import (
    PaymentCompleteIn,
    PaymentIntentIn,
    PaymentIntentOut,
    PaymentOutcomeOut,
    ReceiptOut,
)
from gritsync.services import checkout

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{payment_id}/intent", response_model=PaymentIntentOut)
async def create_intent(
    payment_id: str,
    payload: PaymentIntentIn | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await checkout.create_payment_intent(
        db, user, payment_id, amount=payload.amount if payload else None
    )
    return PaymentIntentOut(
        client_secret=result.client_secret, payment_intent_id=result.payment_intent_id
    )


@router.post("/{payment_id}/complete", response_model=PaymentOutcomeOut)
async def complete(
    payment_id: str,
    payload: PaymentCompleteIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """
    Called by the checkout page once Stripe confirms on the client.
    Best effort only; the webhook settles the payment either way.
    """
    outcome = await checkout.complete_payment(
        db, user, payment_id, payload.payment_intent_id, payload.status
    )
    return PaymentOutcomeOut(**outcome.__dict__)


@router.post("/{payment_id}/manual", response_model=PaymentOutcomeOut)
async def submit_manual(
    payment_id: str,
    payment_method: str = Form(...),
    reference: str | None = Form(None),
    proof: UploadFile | None = File(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    outcome = await checkout.submit_manual_payment(
        db, user, payment_id, payment_method, reference=reference, proof=proof
    )
    return PaymentOutcomeOut(**outcome.__dict__)


@router.get("/{payment_id}/receipt", response_model=ReceiptOut)
def receipt(
    payment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return checkout.get_receipt(db, user, payment_id)
