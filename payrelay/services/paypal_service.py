"""PayPal service — webhook verification and payload parsing.

Responsible for:
- Checking the PayPal transmission headers on incoming webhooks
- Verifying the signature through PayPal's verify-webhook-signature API
- Turning a verified payment event into a Payment record

Nothing here ever treats an unverifiable message as valid: missing headers,
stale transmissions, unreachable PayPal and a non-SUCCESS answer all come
back as a rejected VerificationResult.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import requests

from payrelay.errors import (
    ExpiredTransmission,
    InvalidPaymentData,
    MalformedHeaders,
    MalformedPayload,
    SignatureRejected,
    VerificationFailed,
    VerificationUnavailable,
)
from payrelay.models.payment import Payment

logger = logging.getLogger(__name__)

LIVE_API_BASE = "https://api-m.paypal.com"
SANDBOX_API_BASE = "https://api-m.sandbox.paypal.com"
VERIFY_PATH = "/v1/notifications/verify-webhook-signature"

DEFAULT_AUTH_ALGO = "SHA256withRSA"

# Largest value payments.amount (Numeric(12, 2)) can hold
MAX_AMOUNT = Decimal("9999999999.99")

# header name -> field name in the verification request
REQUIRED_HEADERS = {
    "PayPal-Transmission-Id": "transmission_id",
    "PayPal-Transmission-Time": "transmission_time",
    "PayPal-Cert-Url": "cert_url",
    "PayPal-Transmission-Sig": "transmission_sig",
}

# Event types that carry a completed payment. v1 sales use resource.state and
# amount.total/currency, v2 captures use resource.status and
# amount.value/currency_code.
PAYMENT_EVENTS = {
    "PAYMENT.SALE.COMPLETED",
    "PAYMENT.CAPTURE.COMPLETED",
}

# PayPal sale/capture state -> Payment.STATUSES
STATE_MAP = {
    "completed": "COMPLETED",
    "pending": "PENDING",
    "denied": "FAILED",
    "failed": "FAILED",
    "declined": "FAILED",
    "reversed": "FAILED",
    "refunded": "REFUNDED",
    "partially_refunded": "REFUNDED",
}


@dataclass
class VerificationResult:
    """Outcome of PayPalVerifier.verify: Verified(event) or Rejected(reason)."""

    verified: bool
    event: dict = None
    reason: str = None
    detail: str = None

    @classmethod
    def accept(cls, event):
        return cls(verified=True, event=event)

    @classmethod
    def reject(cls, reason, detail=None):
        return cls(verified=False, reason=reason, detail=detail)


def api_base_for(app_config):
    """Resolve the PayPal REST base URL (explicit override, else by PAYPAL_MODE)."""
    if app_config.get("PAYPAL_API_BASE"):
        return app_config["PAYPAL_API_BASE"].rstrip("/")
    if app_config.get("PAYPAL_MODE", "live") == "sandbox":
        return SANDBOX_API_BASE
    return LIVE_API_BASE


def parse_timestamp(value):
    """Parse a PayPal ISO-8601 timestamp ("2024-01-01T00:00:00Z") to aware UTC.

    Raises ValueError on anything unparseable.
    """
    value = (value or "").strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _get_header(headers, name):
    """Case-insensitive header lookup that works on Flask headers and plain dicts."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, val in headers.items():
            if key.lower() == lowered:
                value = val
                break
    return (value or "").strip()


class PayPalVerifier:
    """Verifies PayPal webhook deliveries against the PayPal REST API."""

    def __init__(self, webhook_id, client_id, client_secret,
                 api_base=LIVE_API_BASE, timeout=15, max_transmission_age=0,
                 clock=None):
        self.webhook_id = webhook_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_transmission_age = max_transmission_age
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_config(cls, app_config):
        return cls(
            webhook_id=app_config.get("PAYPAL_WEBHOOK_ID"),
            client_id=app_config.get("PAYPAL_CLIENT_ID"),
            client_secret=app_config.get("PAYPAL_CLIENT_SECRET"),
            api_base=api_base_for(app_config),
            timeout=app_config.get("PAYPAL_TIMEOUT", 15),
            max_transmission_age=app_config.get("PAYPAL_MAX_TRANSMISSION_AGE", 0),
        )

    def verify(self, headers, raw_payload):
        """Verify a webhook delivery.

        Args:
            headers:     Request headers (Flask headers or a dict).
            raw_payload: Raw request body as text.

        Returns a VerificationResult; never raises for a bad delivery.
        """
        try:
            event = self._verify(headers, raw_payload)
        except VerificationFailed as e:
            logger.warning(f"Webhook verification failed ({e.reason}): {e}")
            return VerificationResult.reject(e.reason, str(e))
        return VerificationResult.accept(event)

    def _verify(self, headers, raw_payload):
        metadata = self.extract_metadata(headers)
        self._check_transmission_age(metadata["transmission_time"])
        event = self.parse_payload(raw_payload)
        self._call_verification_api(metadata, event)
        return event

    def extract_metadata(self, headers):
        """Pull the transmission metadata out of the headers.

        Raises MalformedHeaders if any required header is missing.
        """
        metadata = {}
        missing = []
        for header, field in REQUIRED_HEADERS.items():
            value = _get_header(headers, header)
            if not value:
                missing.append(header)
            metadata[field] = value
        if missing:
            raise MalformedHeaders(f"Missing headers: {', '.join(missing)}")

        metadata["auth_algo"] = _get_header(headers, "PayPal-Auth-Algo") or DEFAULT_AUTH_ALGO
        return metadata

    def _check_transmission_age(self, transmission_time):
        try:
            sent_at = parse_timestamp(transmission_time)
        except ValueError:
            raise MalformedHeaders(f"Unparseable transmission time: {transmission_time!r}")

        if not self.max_transmission_age:
            return
        age = (self.clock() - sent_at).total_seconds()
        if age > self.max_transmission_age:
            raise ExpiredTransmission(
                f"Transmission is {int(age)}s old (limit {self.max_transmission_age}s)"
            )

    def parse_payload(self, raw_payload):
        """Decode the webhook body. Raises MalformedPayload unless it's a JSON object."""
        try:
            event = json.loads(raw_payload)
        except (TypeError, ValueError):
            raise MalformedPayload("Body is not valid JSON")
        if not isinstance(event, dict):
            raise MalformedPayload("Body is not a JSON object")
        return event

    def _call_verification_api(self, metadata, event):
        if not (self.webhook_id and self.client_id and self.client_secret):
            raise VerificationUnavailable("PayPal credentials are not configured")

        body = dict(metadata, webhook_id=self.webhook_id, webhook_event=event)
        try:
            resp = requests.post(
                f"{self.api_base}{VERIFY_PATH}",
                json=body,
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise VerificationUnavailable(f"PayPal verification request failed: {e}")

        if resp.status_code != 200:
            raise VerificationUnavailable(
                f"PayPal verification returned HTTP {resp.status_code}"
            )

        try:
            status = resp.json().get("verification_status")
        except (ValueError, AttributeError):
            raise VerificationUnavailable("PayPal verification returned an unreadable body")

        if status != "SUCCESS":
            raise SignatureRejected(f"verification_status={status}")

        logger.info(f"Verified PayPal transmission {metadata['transmission_id']}")


# ──────────────────────────────────────────────
# Event Parsing
# ──────────────────────────────────────────────

def is_payment_event(event):
    return event.get("event_type") in PAYMENT_EVENTS


def payment_from_event(event):
    """Build an (unsaved) Payment from a verified payment event.

    Raises InvalidPaymentData naming the first problem found.
    """
    resource = event.get("resource")
    if not isinstance(resource, dict):
        raise InvalidPaymentData("Missing required field: resource")

    for field in ("id", "amount", "create_time"):
        if resource.get(field) in (None, ""):
            raise InvalidPaymentData(f"Missing required field: {field}")

    state = resource.get("state") or resource.get("status")
    if not state:
        raise InvalidPaymentData("Missing required field: state")

    amount = resource["amount"]
    if not isinstance(amount, dict):
        raise InvalidPaymentData("Invalid amount")
    total = amount.get("total", amount.get("value"))
    currency = amount.get("currency", amount.get("currency_code"))

    if total is None or isinstance(total, bool):
        raise InvalidPaymentData("Invalid amount")
    try:
        value = Decimal(str(total)).quantize(Decimal("0.01"))
        valid = value.is_finite() and 0 <= value <= MAX_AMOUNT
    except InvalidOperation:
        valid = False
    if not valid:
        raise InvalidPaymentData("Invalid amount")

    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        raise InvalidPaymentData("Invalid currency")

    status = STATE_MAP.get(str(state).lower())
    if status is None:
        raise InvalidPaymentData(f"Unknown payment state: {state}")

    try:
        create_time = parse_timestamp(str(resource["create_time"]))
    except ValueError:
        raise InvalidPaymentData("Invalid create_time")

    return Payment(
        payment_id=str(resource["id"]),
        amount=value,
        currency=currency.upper(),
        status=status,
        create_time=create_time,
        event_type=event.get("event_type"),
    )
