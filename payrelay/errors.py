"""Relay error taxonomy.

Every failure the webhook pipeline can hit has a class here with a short
``reason`` code. The reason code is what ends up in the access log and in
VerificationResult / NotificationResult, so keep them stable.

A duplicate delivery is deliberately absent: it is the "already_exists"
outcome of PaymentStore.record_if_new, not an error.
"""


class RelayError(Exception):
    """Base class for all payrelay errors."""

    reason = "relay_error"

    def __init__(self, message=None):
        super().__init__(message or self.reason)


class RateLimitExceeded(RelayError):
    reason = "rate_limited"


# ──────────────────────────────────────────────
# Verification
# ──────────────────────────────────────────────

class VerificationFailed(RelayError):
    reason = "verification_failed"


class MalformedHeaders(VerificationFailed):
    reason = "malformed_headers"


class ExpiredTransmission(VerificationFailed):
    reason = "expired_transmission"


class MalformedPayload(VerificationFailed):
    reason = "malformed_payload"


class SignatureRejected(VerificationFailed):
    reason = "signature_rejected"


class VerificationUnavailable(VerificationFailed):
    reason = "verification_unavailable"


# ──────────────────────────────────────────────
# Processing
# ──────────────────────────────────────────────

class InvalidPaymentData(RelayError):
    """The verified event is missing fields or carries bad values."""

    reason = "invalid_payment_data"


class PersistenceFailure(RelayError):
    """Storage unavailable, or a constraint violation other than a duplicate."""

    reason = "persistence_failure"


class NotificationFailure(RelayError):
    """Never escapes the notifier; logged and reported as a failed result."""

    reason = "notification_failure"
