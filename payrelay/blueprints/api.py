"""API blueprint — /api/*

Read-only diagnostics for operators.

Route Map:
  GET /api/health                  — liveness probe
  GET /api/payments/<payment_id>   — stored payment record (token required)
"""

import logging

from flask import Blueprint, current_app, jsonify

from payrelay.decorators import api_token_required
from payrelay.extensions import limiter

api_bp = Blueprint("api", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)


def _api_rate_limit():
    return current_app.config.get("API_RATE_LIMIT", "60 per minute")


@api_bp.route("/health", methods=["GET"])
@limiter.exempt
def health():
    return jsonify(ok=True), 200


@api_bp.route("/payments/<payment_id>", methods=["GET"])
@limiter.limit(_api_rate_limit)
@api_token_required
def get_payment(payment_id):
    """Return the stored record for a PayPal payment ID.

    Returns: { ok: true, payment: {...} } or 404 { ok: false, error: "..." }
    """
    store = current_app.extensions["payment_store"]
    payment = store.find_by_payment_id(payment_id)
    if payment is None:
        return jsonify(ok=False, error="Payment not found."), 404

    return jsonify(ok=True, payment=payment.to_dict()), 200
