import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gritsync.db.base import Base


class Receipt(Base):
    """
    Issued once per settled payment and never modified.
    The unique payment_id is what makes webhook replays safe.
    """

    __tablename__ = "receipts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    payment_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("payments.id"), unique=True, index=True, nullable=False
    )
    application_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)

    receipt_number: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(8), nullable=False)
    items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
