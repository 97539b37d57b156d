from decimal import Decimal
from pydantic import BaseModel, Field

from gritsync.schemas.payment import PaymentOut


class PaymentRejectIn(BaseModel):
    reason: str | None = Field(default=None, max_length=400)


class PaymentApprovalOut(BaseModel):
    payment: PaymentOut
    total_amount_paid: Decimal
    receipt_number: str | None  # None when a receipt already existed
