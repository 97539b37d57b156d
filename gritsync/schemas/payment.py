import uuid
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field


class PaymentIntentIn(BaseModel):
    amount: Decimal | None = Field(default=None, gt=0)  # dollars; must match the payment


class PaymentIntentOut(BaseModel):
    client_secret: str
    payment_intent_id: str


class PaymentCompleteIn(BaseModel):
    payment_intent_id: str | None = Field(default=None, max_length=120)
    status: str = Field(min_length=1, max_length=40)


class PaymentOutcomeOut(BaseModel):
    payment_id: str
    status: str
    message: str
    settled: bool


class ReceiptItem(BaseModel):
    name: str
    amount: float


class ReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    receipt_number: str
    payment_id: str
    application_id: uuid.UUID
    amount: Decimal
    payment_type: str
    items: list[ReceiptItem]
    created_at: datetime | None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    application_id: uuid.UUID
    user_id: uuid.UUID | None
    amount: Decimal
    payment_type: str
    status: str
    payment_method: str | None
    transaction_id: str | None
    proof_of_payment_file_path: str | None
    admin_note: str | None
    paid_at: datetime | None
    created_at: datetime | None
