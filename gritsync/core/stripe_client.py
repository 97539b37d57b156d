import json
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from gritsync.core.config import settings

stripe.api_key = settings.STRIPE_API_KEY


def stripe_configured() -> bool:
    return bool(settings.STRIPE_API_KEY)


def verify_event(payload: bytes, sig_header: str) -> dict[str, Any]:
    """
    Check the Stripe-Signature header against the webhook secret and
    return the event as a plain dict.

    Raises stripe.SignatureVerificationError on a bad signature and
    ValueError on a body that is not a JSON object.
    """
    text = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(
        text,
        sig_header,
        settings.STRIPE_WEBHOOK_SECRET,
        settings.STRIPE_WEBHOOK_TOLERANCE,
    )
    event = json.loads(text)
    if not isinstance(event, dict):
        raise ValueError("Invalid payload")
    return event


def amount_to_cents(amount: Any) -> int:
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
