"""Webhook handler — the PayPal → database → Telegram pipeline.

    rate limit → verify → parse → record_if_new → notify → log → respond

Collaborators are injected, so tests (and create_app) decide which rate
limiter, verifier, store, notifier and access log are used. Every terminal
path writes exactly one access log entry.

Duplicate policy: a delivery whose payment_id is already stored is
acknowledged with 200 and is NOT re-notified.
"""

import logging
from dataclasses import dataclass

from payrelay.errors import InvalidPaymentData, PersistenceFailure, RateLimitExceeded
from payrelay.extensions import db
from payrelay.services.payment_store import ALREADY_EXISTS
from payrelay.services.paypal_service import is_payment_event, payment_from_event

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    status_code: int
    message: str

    def to_dict(self):
        return {"status": self.status_code, "message": self.message}


class WebhookHandler:

    def __init__(self, rate_limiter, verifier, store, notifier, log_manager,
                 notify_async=False):
        self.rate_limiter = rate_limiter
        self.verifier = verifier
        self.store = store
        self.notifier = notifier
        self.log_manager = log_manager
        self.notify_async = notify_async

    def handle(self, client_key, headers, raw_payload):
        """Process one webhook delivery and return the response to send.

        Args:
            client_key:  Rate-limit key (client IP or "global").
            headers:     Request headers.
            raw_payload: Raw request body as text.
        """
        try:
            response, entry, level = self._process(client_key, headers, raw_payload)
        except Exception as e:
            logger.error(f"Unhandled error processing webhook: {e}", exc_info=True)
            db.session.rollback()
            response = WebhookResponse(500, "Internal Server Error")
            entry, level = f"Error: {e}", logging.ERROR

        self.log_manager.append(entry, level)
        return response

    def _process(self, client_key, headers, raw_payload):
        """Run the pipeline. Returns (response, access log entry, log level)."""

        # --- Rate limit ---
        try:
            self.rate_limiter.check(client_key)
        except RateLimitExceeded as e:
            return (
                WebhookResponse(429, "Too Many Requests"),
                f"Rate limit exceeded for {client_key}: {e}",
                logging.WARNING,
            )

        # --- Verify ---
        result = self.verifier.verify(headers, raw_payload)
        if not result.verified:
            if result.reason == "malformed_payload":
                response = WebhookResponse(400, "Invalid Payload")
            else:
                response = WebhookResponse(401, "Invalid Webhook Signature")
            return (
                response,
                f"Rejected webhook from {client_key}: {result.reason} ({result.detail})",
                logging.WARNING,
            )

        event = result.event
        event_type = event.get("event_type")
        if not event_type:
            return (
                WebhookResponse(400, "Invalid Payload"),
                "Rejected webhook: event_type missing",
                logging.WARNING,
            )

        if not is_payment_event(event):
            return (
                WebhookResponse(200, "No relevant webhook event"),
                f"Received irrelevant webhook event: {event_type}",
                logging.INFO,
            )

        # --- Parse ---
        try:
            payment = payment_from_event(event)
        except InvalidPaymentData as e:
            return (
                WebhookResponse(400, str(e)),
                f"Rejected {event_type}: {e}",
                logging.WARNING,
            )

        # --- Persist (idempotent) ---
        payment_id = payment.payment_id
        try:
            outcome = self.store.record_if_new(payment)
        except PersistenceFailure as e:
            return (
                WebhookResponse(500, "Internal Server Error"),
                f"Failed to store payment {payment_id}: {e}",
                logging.ERROR,
            )

        if outcome == ALREADY_EXISTS:
            return (
                WebhookResponse(200, "Payment already processed"),
                f"Duplicate delivery for payment {payment_id}, not re-notified",
                logging.INFO,
            )

        # --- Notify (best-effort) ---
        entry = f"Payment {payment_id} processed successfully" + self._announce(payment)
        return WebhookResponse(200, "Payment processed successfully"), entry, logging.INFO

    def _announce(self, payment):
        """Notify about a freshly stored payment. Returns a suffix for the log entry.

        The row is already committed, so nothing in here may fail the
        request: a retry would be a duplicate and never notify.
        """
        notes = ""
        try:
            stats = self.store.stats(payment.currency)
        except Exception as e:
            logger.warning(f"Stats unavailable for payment {payment.payment_id}: {e}")
            db.session.rollback()
            stats = None
            notes += f" (stats unavailable: {e})"

        try:
            if self.notify_async:
                if self.notifier.notify_async(payment, stats) is None:
                    return notes + " (notification failed: message could not be rendered)"
                return notes + " (notification queued)"

            sent = self.notifier.notify(payment, stats)
            if not sent.sent:
                notes += f" (notification failed: {sent.reason})"
        except Exception as e:
            logger.error(
                f"Notification for payment {payment.payment_id} raised: {e}", exc_info=True
            )
            notes += f" (notification failed: {e})"
        return notes
