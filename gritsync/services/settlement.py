"""
Side effects of a payment becoming paid.

Every function here is safe to run again for the same payment:
the running total is recomputed from paid rows, timeline steps are
looked up by (application_id, step_key), and a receipt is only issued
when the payment has none. Nothing commits; callers own the transaction.
"""
import logging
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gritsync.core.feature_flags import utcnow
from gritsync.models.notification import Notification
from gritsync.models.payment import PAID, Payment
from gritsync.models.receipt import Receipt
from gritsync.models.timeline_step import TimelineStep

logger = logging.getLogger("gritsync.settlement")

STEP_PAID = "app_paid"
STEP2_PAID = "app_step2_paid"

STEP_NAMES = {
    STEP_PAID: "Application Step 1 payment paid",
    STEP2_PAID: "Application Step 2 payment paid",
}

STEP_KEYS = {
    "step1": (STEP_PAID,),
    "step2": (STEP2_PAID,),
    "full": (STEP_PAID, STEP2_PAID),
}

PAYMENT_TYPE_NAMES = {
    "step1": "Step 1",
    "step2": "Step 2",
    "full": "Full Payment",
}

# fee schedule used when the payment row carries no line items
DEFAULT_ITEMS = {
    "step1": [
        {"name": "NCLEX NY BON Application Fee", "amount": 143},
        {"name": "NCLEX NY Mandatory Courses", "amount": 54.99},
        {"name": "NCLEX NY Bond Fee", "amount": 70},
    ],
    "step2": [
        {"name": "NCLEX PV Application Fee", "amount": 200},
        {"name": "NCLEX PV NCSBN Exam Fee", "amount": 150},
        {"name": "NCLEX GritSync Service Fee", "amount": 150},
        {"name": "NCLEX NY Quick Results", "amount": 8},
    ],
    "full": [
        {"name": "NCLEX PV Application Fee", "amount": 200},
        {"name": "NCLEX PV NCSBN Exam Fee", "amount": 150},
        {"name": "NCLEX GritSync Service Fee", "amount": 100},
        {"name": "NCLEX NY Quick Results", "amount": 8},
    ],
}


@dataclass
class Settlement:
    total_amount_paid: Decimal
    steps: list[TimelineStep]
    receipt: Receipt | None
    notification: Notification | None

    @property
    def first_settlement(self) -> bool:
        return self.receipt is not None


def step_keys_for(payment_type: str) -> tuple[str, ...]:
    return STEP_KEYS.get(payment_type, ())


def format_amount(amount: Decimal | float) -> str:
    return f"${Decimal(str(amount)):,.2f}"


def payment_label(payment: Payment) -> str:
    return PAYMENT_TYPE_NAMES.get(payment.payment_type, "payment")


def new_receipt_number() -> str:
    return f"RCP-{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


def mark_paid(
    db: Session,
    payment: Payment,
    payment_method: str,
    intent_id: str | None = None,
    only_if_unpaid: bool = False,
) -> bool:
    """
    Set status=paid. With only_if_unpaid the update is conditional
    (status != paid) so a second writer turns into a no-op.
    Returns True when a row changed.
    """
    values = {
        "status": PAID,
        "payment_method": payment_method,
        "paid_at": func.coalesce(Payment.paid_at, func.now()),
    }
    if intent_id:
        values["stripe_payment_intent_id"] = intent_id
        values["transaction_id"] = intent_id

    stmt = update(Payment).where(Payment.id == payment.id)
    if only_if_unpaid:
        stmt = stmt.where(Payment.status != PAID)

    result = db.execute(
        stmt.values(**values).execution_options(synchronize_session=False)
    )
    db.refresh(payment)
    return result.rowcount > 0


def total_paid(db: Session, application_id) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.application_id == application_id, Payment.status == PAID)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.01"))


def upsert_timeline_steps(
    db: Session, payment: Payment, total: Decimal, payment_method: str
) -> list[TimelineStep]:
    now = utcnow()
    steps: list[TimelineStep] = []

    for key in step_keys_for(payment.payment_type):
        step = (
            db.query(TimelineStep)
            .filter(
                TimelineStep.application_id == payment.application_id,
                TimelineStep.step_key == key,
            )
            .first()
        )
        if step is None:
            step = TimelineStep(application_id=payment.application_id, step_key=key)
            db.add(step)

        completed_at = step.completed_at or now
        step.step_name = STEP_NAMES[key]
        step.status = "completed"
        step.completed_at = completed_at
        step.data = {
            "amount": float(payment.amount),
            "total_amount_paid": float(total),
            "payment_method": payment_method,
            "completed_at": completed_at.isoformat(),
        }
        steps.append(step)

    db.flush()
    return steps


def receipt_exists(db: Session, payment_id: str) -> bool:
    return db.query(Receipt.id).filter(Receipt.payment_id == payment_id).first() is not None


def issue_receipt(db: Session, payment: Payment) -> Receipt | None:
    """
    Insert the payment's receipt unless one exists.

    The insert runs in a SAVEPOINT so that losing a race on the unique
    payment_id constraint is a no-op and the caller's transaction survives.
    """
    if receipt_exists(db, payment.id):
        return None

    receipt = Receipt(
        payment_id=payment.id,
        application_id=payment.application_id,
        user_id=payment.user_id,
        receipt_number=new_receipt_number(),
        amount=payment.amount,
        payment_type=payment.payment_type,
        items=payment.items or DEFAULT_ITEMS.get(payment.payment_type, []),
    )
    try:
        with db.begin_nested():
            db.add(receipt)
            db.flush()
    except IntegrityError:
        if not receipt_exists(db, payment.id):
            raise
        logger.info("receipt already issued payment_id=%s", payment.id)
        return None
    return receipt


def notify(
    db: Session, payment: Payment, title: str, message: str, kind: str = "payment"
) -> Notification | None:
    if payment.user_id is None:
        return None
    notification = Notification(
        user_id=payment.user_id,
        application_id=payment.application_id,
        type=kind,
        title=title,
        message=message,
        read=False,
    )
    db.add(notification)
    return notification


def settle(
    db: Session,
    payment: Payment,
    payment_method: str,
    notification_title: str,
    notification_message: str,
) -> Settlement:
    """
    Apply the paid-payment side effects. The notification is tied to the
    receipt, so a replay that finds the receipt already issued adds nothing.
    """
    total = total_paid(db, payment.application_id)
    steps = upsert_timeline_steps(db, payment, total, payment_method)
    receipt = issue_receipt(db, payment)
    notification = None
    if receipt is not None:
        notification = notify(db, payment, notification_title, notification_message)
    return Settlement(
        total_amount_paid=total, steps=steps, receipt=receipt, notification=notification
    )
