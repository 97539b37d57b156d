import uuid
from datetime import datetime
from sqlalchemy import DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gritsync.db.base import Base


class StripeWebhookEvent(Base):
    __tablename__ = "stripe_webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Stripe event id like "evt_..."
    event_id: Mapped[str] = mapped_column(
        String(120), unique=True, index=True, nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(40), nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(24), nullable=False, server_default="received"
    )  # received|processed|ignored|error
    error: Mapped[str | None] = mapped_column(String(400), nullable=True)
