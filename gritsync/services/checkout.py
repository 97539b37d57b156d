"""
Payment intent creation and client-side completion.

Nothing here is authoritative: the webhook reconciler settles payments.
The completion path only writes when Stripe confirms an intent created
for this payment and its full amount, and never reports a local
bookkeeping failure as a failed payment.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import stripe
from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from gritsync.core.classifier import AppError, ErrorSeverity, ErrorType, log_error, normalize_error
from gritsync.core.config import settings
from gritsync.core.retry import retry_with_backoff
from gritsync.core.stripe_client import amount_to_cents, stripe_configured
from gritsync.models.payment import (
    FAILED,
    MANUAL_METHODS,
    PAID,
    PENDING,
    PENDING_APPROVAL,
    Payment,
)
from gritsync.models.receipt import Receipt
from gritsync.models.user import User
from gritsync.services.settlement import mark_paid, total_paid, upsert_timeline_steps

logger = logging.getLogger("gritsync.checkout")

MIN_CHARGE_CENTS = 50

SUCCEEDED = "succeeded"
PROCESSING = "processing"
REQUIRES_ACTION = "requires_action"

STATUS_MESSAGES = {
    SUCCEEDED: "Payment completed successfully!",
    PROCESSING: "Payment is being processed. Please wait for confirmation.",
    REQUIRES_ACTION: "Payment requires additional authentication. Please complete the verification.",
}

MANUAL_MESSAGES = {
    "mobile_banking": (
        "Mobile banking payment submitted! Your proof of payment has been uploaded. "
        "An admin will review and approve your payment."
    ),
    "gcash": (
        "GCash payment submitted! An admin will verify your reference number "
        "and approve your payment."
    ),
}

PROOF_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "application/pdf": ".pdf",
}


@dataclass
class IntentResult:
    client_secret: str
    payment_intent_id: str


@dataclass
class CompletionOutcome:
    payment_id: str
    status: str
    message: str
    settled: bool = False


def status_message(status: str) -> str:
    return STATUS_MESSAGES.get(
        status, f"Payment status: {status}. Please contact support if this persists."
    )


def _invalid(message: str) -> AppError:
    return AppError(message, error_type=ErrorType.VALIDATION, severity=ErrorSeverity.LOW)


def load_payment(db: Session, payment_id: str, user: User) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise AppError(
            "Payment not found.", error_type=ErrorType.NOT_FOUND, severity=ErrorSeverity.LOW
        )
    if payment.user_id != user.id and not user.is_admin:
        raise AppError(
            "You do not have permission to access this payment.",
            error_type=ErrorType.AUTHORIZATION,
            severity=ErrorSeverity.MEDIUM,
        )
    return payment


async def create_payment_intent(
    db: Session,
    user: User,
    payment_id: str,
    amount: Decimal | None = None,
    sleep=asyncio.sleep,
) -> IntentResult:
    payment = load_payment(db, payment_id, user)

    if payment.status not in (PENDING, FAILED):
        raise _invalid(f"Payment cannot be paid (status={payment.status}).")
    if amount is not None and Decimal(str(amount)) != payment.amount:
        raise _invalid("Amount does not match the payment.")

    cents = amount_to_cents(payment.amount)
    if cents <= 0:
        raise _invalid("Invalid amount.")
    if cents < MIN_CHARGE_CENTS:
        raise _invalid("Amount must be at least $0.50.")

    if not stripe_configured():
        raise AppError(
            "Card payments are not available right now.",
            error_type=ErrorType.SERVER,
            severity=ErrorSeverity.HIGH,
        )

    metadata = {
        "payment_id": payment.id,
        "application_id": str(payment.application_id),
        "user_id": str(payment.user_id or ""),
        "payment_type": payment.payment_type,
    }

    async def create():
        return await run_in_threadpool(
            stripe.PaymentIntent.create,
            amount=cents,
            currency=settings.STRIPE_CURRENCY.lower(),
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            # same key for the same payment+amount, so a retried create reuses the intent
            idempotency_key=f"payment-{payment.id}-{cents}",
        )

    try:
        intent = await retry_with_backoff(create, sleep=sleep)
    except Exception as e:
        raise normalize_error(e, {"payment_id": payment.id, "stage": "create_intent"}) from e

    payment.stripe_payment_intent_id = intent["id"]
    payment.payment_method = "stripe"
    db.add(payment)
    db.commit()

    logger.info("payment intent created payment_id=%s intent=%s cents=%s", payment.id, intent["id"], cents)
    return IntentResult(client_secret=intent["client_secret"], payment_intent_id=intent["id"])


async def _fetch_intent(payment: Payment, payment_intent_id: str) -> dict | None:
    """Stripe's copy of the intent, or None when it could not be fetched."""
    try:
        return await run_in_threadpool(stripe.PaymentIntent.retrieve, payment_intent_id)
    except Exception as e:
        log_error(e, {"payment_id": payment.id, "stage": "retrieve_intent"})
        return None


def _confirms(payment: Payment, intent: dict) -> bool:
    """True when the intent was created for this payment and collected its full amount."""
    owner = (intent.get("metadata") or {}).get("payment_id")
    if owner != payment.id:
        logger.warning(
            "intent %s belongs to payment_id=%s, not %s", intent.get("id"), owner, payment.id
        )
        return False

    expected = amount_to_cents(payment.amount)
    received = intent.get("amount_received")
    if received != expected:
        logger.warning(
            "intent %s received %s cents, payment_id=%s expects %s",
            intent.get("id"),
            received,
            payment.id,
            expected,
        )
        return False
    return True


def _record_success(db: Session, payment: Payment, payment_intent_id: str | None) -> bool:
    method = payment.payment_method or "stripe"
    try:
        changed = mark_paid(db, payment, method, intent_id=payment_intent_id, only_if_unpaid=True)
        if changed:
            upsert_timeline_steps(db, payment, total_paid(db, payment.application_id), method)
        db.commit()
        return changed
    except Exception as e:
        db.rollback()
        log_error(e, {"payment_id": payment.id, "stage": "client_completion"})
        return False


async def complete_payment(
    db: Session,
    user: User,
    payment_id: str,
    payment_intent_id: str | None,
    reported_status: str,
) -> CompletionOutcome:
    payment = load_payment(db, payment_id, user)

    if payment.status == PAID:
        return CompletionOutcome(payment.id, SUCCEEDED, status_message(SUCCEEDED))

    status = reported_status
    intent = None
    if payment_intent_id and stripe_configured():
        intent = await _fetch_intent(payment, payment_intent_id)
        if intent is not None:
            status = intent["status"]

    if status != SUCCEEDED:
        return CompletionOutcome(payment.id, status, status_message(status))

    # only Stripe's word counts; the client-reported status never writes
    settled = False
    if intent is not None and _confirms(payment, intent):
        settled = _record_success(db, payment, payment_intent_id)
    else:
        logger.info("leaving payment_id=%s to the webhook, intent not confirmed", payment.id)

    return CompletionOutcome(payment.id, SUCCEEDED, status_message(SUCCEEDED), settled=settled)


async def _save_proof(payment: Payment, proof: UploadFile) -> str:
    ext = PROOF_TYPES.get((proof.content_type or "").lower())
    if ext is None:
        raise _invalid("Proof of payment must be an image (JPEG, PNG, WebP) or PDF.")

    data = await proof.read()
    if not data:
        raise _invalid("Proof of payment file is empty.")
    if len(data) > settings.MAX_PROOF_BYTES:
        raise _invalid("Proof of payment must be 10MB or smaller.")

    relative = Path("payments") / str(payment.application_id) / f"{payment.id}-{int(time.time() * 1000)}{ext}"
    target = Path(settings.UPLOAD_DIR) / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    await run_in_threadpool(target.write_bytes, data)
    return relative.as_posix()


async def submit_manual_payment(
    db: Session,
    user: User,
    payment_id: str,
    payment_method: str,
    reference: str | None = None,
    proof: UploadFile | None = None,
) -> CompletionOutcome:
    """
    Record a payment made outside Stripe. The payment waits for an admin;
    this path never marks anything paid.
    """
    payment = load_payment(db, payment_id, user)

    if payment_method not in MANUAL_METHODS:
        raise _invalid("Unsupported payment method.")
    # a rejected submission may be sent again
    if payment.status not in (PENDING, FAILED):
        raise _invalid(f"Payment cannot be submitted (status={payment.status}).")

    reference = (reference or "").strip()
    if payment_method == "gcash":
        if not reference:
            raise _invalid("GCash reference number is required.")
        payment.transaction_id = f"GCASH-{reference}"
        if proof is not None:
            payment.proof_of_payment_file_path = await _save_proof(payment, proof)
    else:
        if proof is None:
            raise _invalid("Proof of payment is required for mobile banking.")
        payment.proof_of_payment_file_path = await _save_proof(payment, proof)
        payment.transaction_id = reference or None

    payment.payment_method = payment_method
    payment.status = PENDING_APPROVAL
    payment.admin_note = None
    db.add(payment)
    db.commit()

    logger.info("manual payment submitted payment_id=%s method=%s", payment.id, payment_method)
    return CompletionOutcome(payment.id, PENDING_APPROVAL, MANUAL_MESSAGES[payment_method])


def get_receipt(db: Session, user: User, payment_id: str) -> Receipt:
    payment = load_payment(db, payment_id, user)
    receipt = db.query(Receipt).filter(Receipt.payment_id == payment.id).first()
    if receipt is None:
        raise AppError(
            "Receipt not found.", error_type=ErrorType.NOT_FOUND, severity=ErrorSeverity.LOW
        )
    return receipt
