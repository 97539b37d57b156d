import uuid
from datetime import datetime
from sqlalchemy import JSON, DateTime, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from gritsync.db.base import Base


class TimelineStep(Base):
    __tablename__ = "timeline_steps"
    __table_args__ = (
        UniqueConstraint("application_id", "step_key", name="uq_timeline_steps_app_step"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    application_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    # app_paid | app_step2_paid | ...
    step_key: Mapped[str] = mapped_column(String(40), nullable=False)
    step_name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # pending | completed
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="pending")
    data: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
