import logging

from sqlalchemy.orm import Session

from gritsync.core.classifier import AppError, ErrorSeverity, ErrorType
from gritsync.models.payment import FAILED, PENDING_APPROVAL, Payment
from gritsync.services.settlement import (
    Settlement,
    format_amount,
    mark_paid,
    notify,
    payment_label,
    settle,
)

logger = logging.getLogger("gritsync.review")

REJECTED = "REJECTED"


def pending_payments(db: Session) -> list[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.status == PENDING_APPROVAL)
        .order_by(Payment.created_at.asc())
        .all()
    )


def _awaiting_review(db: Session, payment_id: str) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise AppError(
            "Payment not found.", error_type=ErrorType.NOT_FOUND, severity=ErrorSeverity.LOW
        )
    if payment.status != PENDING_APPROVAL:
        raise AppError(
            f"Payment is not awaiting approval (status={payment.status}).",
            error_type=ErrorType.VALIDATION,
            severity=ErrorSeverity.LOW,
        )
    return payment


def approve_payment(db: Session, payment_id: str) -> tuple[Payment, Settlement]:
    payment = _awaiting_review(db, payment_id)
    method = payment.payment_method or "mobile_banking"

    mark_paid(db, payment, method, only_if_unpaid=True)
    settlement = settle(
        db,
        payment,
        method,
        notification_title="Payment Approved",
        notification_message=(
            f"Your {payment_label(payment)} of {format_amount(payment.amount)} "
            "has been approved."
        ),
    )
    db.commit()

    logger.info("payment approved payment_id=%s total_paid=%s", payment.id, settlement.total_amount_paid)
    db.refresh(payment)
    return payment, settlement


def reject_payment(db: Session, payment_id: str, reason: str | None = None) -> Payment:
    payment = _awaiting_review(db, payment_id)
    reason = (reason or "").strip() or None

    payment.status = FAILED
    payment.transaction_id = REJECTED
    payment.admin_note = reason
    db.add(payment)

    message = f"Your {payment_label(payment)} of {format_amount(payment.amount)} was rejected."
    if reason:
        message = f"{message} Reason: {reason}"
    notify(db, payment, "Payment Rejected", message)
    db.commit()
    db.refresh(payment)

    logger.info("payment rejected payment_id=%s", payment.id)
    return payment
