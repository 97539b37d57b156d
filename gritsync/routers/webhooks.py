import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from gritsync.core.config import settings
from gritsync.core.feature_flags import SettingsSnapshot, get_settings_snapshot
from gritsync.core.stripe_client import verify_event
from gritsync.db.session import get_db
from gritsync.services.email import EmailSender, get_email_sender
from gritsync.services.reconciler import PaymentReconciler

logger = logging.getLogger("gritsync.webhooks")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def get_reconciler(
    db: Session = Depends(get_db),
    flags: SettingsSnapshot = Depends(get_settings_snapshot),
    email_sender: EmailSender = Depends(get_email_sender),
) -> PaymentReconciler:
    return PaymentReconciler(db, flags, email_sender)


@router.post("/stripe")
async def stripe_webhook(
    request: Request, reconciler: PaymentReconciler = Depends(get_reconciler)
):
    # the caller is Stripe, so error bodies carry the raw message
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe webhook called but STRIPE_WEBHOOK_SECRET is not set")
        return _error("Webhook not configured", status.HTTP_503_SERVICE_UNAVAILABLE)

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        return _error("Missing stripe-signature header")

    payload = await request.body()
    try:
        event = verify_event(payload, sig_header)
    except Exception as e:
        logger.warning("rejected stripe webhook: %s", e)
        return _error(str(e) or "Invalid signature")

    try:
        await reconciler.handle(event)
    except Exception as e:
        return _error(str(e) or e.__class__.__name__)

    return {"received": True}
