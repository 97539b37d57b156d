import secrets
import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gritsync.db.base import Base

PAYMENT_TYPES = ("full", "step1", "step2")

PENDING = "pending"
PENDING_APPROVAL = "pending_approval"
PAID = "paid"
FAILED = "failed"
REFUNDED = "refunded"

# payment methods that skip the processor and wait for an admin
MANUAL_METHODS = ("mobile_banking", "gcash")


def new_payment_id() -> str:
    return f"PAY{secrets.randbelow(9_000_000_000) + 1_000_000_000}"


class Payment(Base):
    """
    One payable installment of an application.
    pending -> paid | failed via the Stripe webhook, or
    pending -> pending_approval -> paid | failed for manual methods.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(40), primary_key=True, default=new_payment_id)

    application_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    # full | step1 | step2
    payment_type: Mapped[str] = mapped_column(String(8), nullable=False)
    # pending | pending_approval | paid | failed | refunded
    status: Mapped[str] = mapped_column(String(24), nullable=False, server_default=PENDING)

    payment_method: Mapped[str | None] = mapped_column(String(24), nullable=True)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(
        String(120), index=True, nullable=True
    )
    transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    items: Mapped[list | None] = mapped_column(JSON, nullable=True)

    proof_of_payment_file_path: Mapped[str | None] = mapped_column(String(400), nullable=True)
    admin_note: Mapped[str | None] = mapped_column(String(400), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
