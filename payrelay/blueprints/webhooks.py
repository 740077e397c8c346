"""Webhooks blueprint — /paypal/webhooks

Receives PayPal webhook events. Raw body is required for verification.
/cppp is kept as an alias so existing PayPal webhook registrations that
point at the old script path keep working.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_limiter.util import get_remote_address

from payrelay.services.rate_limiter import GLOBAL_KEY

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)


def _client_key():
    """Rate-limit key for this request: client IP, or one shared bucket."""
    if current_app.config.get("RATELIMIT_SCOPE", "ip") == "global":
        return GLOBAL_KEY
    return get_remote_address()


@webhooks_bp.route("/paypal/webhooks", methods=["POST"])
@webhooks_bp.route("/cppp", methods=["POST"])
def paypal_webhook():
    """Receive and process a PayPal webhook delivery.

    1. Rate-limit by client
    2. Verify transmission headers + signature with PayPal
    3. Record the payment (idempotent via payments.payment_id)
    4. Notify Telegram (best-effort)
    5. Return 200 to acknowledge receipt, or an error status so PayPal retries
    """
    payload = request.get_data(as_text=True)
    handler = current_app.extensions["webhook_handler"]

    response = handler.handle(_client_key(), request.headers, payload)

    if response.status_code >= 500:
        logger.error(f"Webhook processing failed: {response.message}")
    return jsonify(response.to_dict()), response.status_code
