"""
Stripe webhook reconciliation.

State per payment: pending -> paid | failed. Each handled delivery is
recorded in stripe_webhook_events; a delivery whose event id already
reached processed/ignored is acknowledged without doing anything.

For payment_intent.succeeded the status update, timeline upsert, receipt
and notification are written in one transaction. The receipt email goes
out after commit, only for the delivery that issued the receipt, and its
failure is logged, never raised.
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gritsync.core.classifier import log_error
from gritsync.core.config import settings
from gritsync.core.feature_flags import SettingsSnapshot, utcnow
from gritsync.core.retry import retry_with_backoff
from gritsync.core.stripe_client import amount_to_cents
from gritsync.models.payment import FAILED, PAID, REFUNDED, Payment
from gritsync.models.stripe_event import StripeWebhookEvent
from gritsync.models.user import User
from gritsync.services.email import EmailSender, render_payment_email, sender_identity
from gritsync.services.settlement import (
    Settlement,
    format_amount,
    mark_paid,
    payment_label,
    settle,
)

logger = logging.getLogger("gritsync.reconciler")

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
HANDLED_EVENTS = (PAYMENT_SUCCEEDED, PAYMENT_FAILED)

EMAIL_SUBJECT = "Payment Successful - GritSync"
EMAIL_ATTEMPTS = 2
EMAIL_RETRY_DELAY_MS = 500


@dataclass
class ReconcileResult:
    event_id: str | None
    event_type: str | None
    # processed | ignored | duplicate | unhandled
    outcome: str
    payment_id: str | None = None
    settlement: Settlement | None = None
    email_sent: bool = False
    reason: str | None = None


class PaymentReconciler:
    def __init__(
        self,
        db: Session,
        flags: SettingsSnapshot,
        email_sender: EmailSender,
        site_url: str | None = None,
    ):
        self.db = db
        self.flags = flags
        self.email_sender = email_sender
        self.site_url = (site_url or settings.SITE_URL).rstrip("/")

    async def handle(self, event: dict[str, Any]) -> ReconcileResult:
        event_id = event.get("id")
        event_type = event.get("type")

        if event_type not in HANDLED_EVENTS:
            logger.info("unhandled event type=%s id=%s", event_type, event_id)
            return ReconcileResult(event_id, event_type, "unhandled")

        intent = (event.get("data") or {}).get("object") or {}
        payment_id = (intent.get("metadata") or {}).get("payment_id")

        if event_id and not self._claim(event_id, event_type, payment_id):
            logger.info("duplicate event id=%s type=%s", event_id, event_type)
            return ReconcileResult(event_id, event_type, "duplicate", payment_id)

        try:
            if event_type == PAYMENT_SUCCEEDED:
                result = self._apply_succeeded(event_id, intent, payment_id)
            else:
                result = self._apply_failed(event_id, payment_id)
        except Exception as e:
            self.db.rollback()
            log_error(e, {"event_id": event_id, "event_type": event_type, "payment_id": payment_id})
            self._record_error(event_id, e)
            raise

        settlement = result.settlement
        if settlement is not None and settlement.first_settlement:
            if self.flags.payment_emails_enabled:
                result.email_sent = await self._send_receipt_email(settlement)
            else:
                logger.info("payment emails disabled payment_id=%s", payment_id)

        return result

    def _claim(self, event_id: str, event_type: str, payment_id: str | None) -> bool:
        try:
            self.db.add(
                StripeWebhookEvent(
                    event_id=event_id,
                    event_type=event_type,
                    payment_id=payment_id,
                    status="received",
                )
            )
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()

        prior = (
            self.db.query(StripeWebhookEvent)
            .filter(StripeWebhookEvent.event_id == event_id)
            .first()
        )
        if prior is not None and prior.status in ("processed", "ignored"):
            return False

        # errored or interrupted earlier; every write below is safe to repeat
        logger.info(
            "re-running event id=%s previous_status=%s",
            event_id,
            prior.status if prior else None,
        )
        return True

    def _finish(self, event_id: str | None, status: str, error: str | None = None) -> None:
        if not event_id:
            return
        self.db.query(StripeWebhookEvent).filter(
            StripeWebhookEvent.event_id == event_id
        ).update(
            {"status": status, "processed_at": utcnow(), "error": error[:400] if error else None}
        )

    def _record_error(self, event_id: str | None, error: Exception) -> None:
        if not event_id:
            return
        try:
            self._finish(event_id, "error", str(error))
            self.db.commit()
        except Exception as ledger_error:
            self.db.rollback()
            log_error(ledger_error, {"event_id": event_id, "stage": "record_event_error"})

    def _ignore(
        self, event_id: str | None, event_type: str, payment_id: str | None, reason: str
    ) -> ReconcileResult:
        logger.warning("ignoring event id=%s payment_id=%s reason=%s", event_id, payment_id, reason)
        self._finish(event_id, "ignored", reason)
        self.db.commit()
        return ReconcileResult(event_id, event_type, "ignored", payment_id, reason=reason)

    def _apply_succeeded(
        self, event_id: str | None, intent: dict[str, Any], payment_id: str | None
    ) -> ReconcileResult:
        if not payment_id:
            return self._ignore(event_id, PAYMENT_SUCCEEDED, None, "missing payment_id")

        payment = self.db.get(Payment, payment_id)
        if payment is None:
            return self._ignore(event_id, PAYMENT_SUCCEEDED, payment_id, "payment not found")
        if payment.status == REFUNDED:
            return self._ignore(event_id, PAYMENT_SUCCEEDED, payment_id, "payment refunded")

        received = intent.get("amount_received") or intent.get("amount")
        if received is not None and int(received) != amount_to_cents(payment.amount):
            logger.warning(
                "amount mismatch payment_id=%s expected_cents=%s received_cents=%s",
                payment_id,
                amount_to_cents(payment.amount),
                received,
            )

        mark_paid(self.db, payment, payment_method="stripe", intent_id=intent.get("id"))
        settlement = settle(
            self.db,
            payment,
            payment.payment_method or "stripe",
            notification_title="Payment Successful",
            notification_message=(
                f"Your {payment_label(payment)} of {format_amount(payment.amount)} "
                "has been processed successfully."
            ),
        )
        self._finish(event_id, "processed")
        self.db.commit()

        logger.info(
            "payment settled payment_id=%s total_paid=%s receipt=%s",
            payment_id,
            settlement.total_amount_paid,
            settlement.receipt.receipt_number if settlement.receipt else "existing",
        )
        return ReconcileResult(
            event_id, PAYMENT_SUCCEEDED, "processed", payment_id, settlement=settlement
        )

    def _apply_failed(self, event_id: str | None, payment_id: str | None) -> ReconcileResult:
        if not payment_id:
            return self._ignore(event_id, PAYMENT_FAILED, None, "missing payment_id")

        # a late failure must not undo a payment that already went through
        changed = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status.notin_((PAID, REFUNDED)))
            .values(status=FAILED)
            .execution_options(synchronize_session=False)
        ).rowcount
        self._finish(event_id, "processed")
        self.db.commit()

        logger.info("payment failed payment_id=%s updated=%s", payment_id, bool(changed))
        return ReconcileResult(event_id, PAYMENT_FAILED, "processed", payment_id)

    async def _send_receipt_email(self, settlement: Settlement) -> bool:
        receipt = settlement.receipt
        user = self.db.get(User, receipt.user_id) if receipt.user_id else None
        if user is None or not user.email:
            return False

        body = render_payment_email(
            user.display_name,
            format_amount(receipt.amount),
            f"{self.site_url}/applications/{receipt.application_id}",
        )
        sender = sender_identity(self.flags.email_from_name, self.flags.email_from)

        try:
            await retry_with_backoff(
                lambda: self.email_sender.send(user.email, EMAIL_SUBJECT, body, from_=sender),
                max_retries=EMAIL_ATTEMPTS,
                initial_delay_ms=EMAIL_RETRY_DELAY_MS,
            )
        except Exception as e:
            log_error(e, {"payment_id": receipt.payment_id, "stage": "receipt_email"})
            return False
        return True
