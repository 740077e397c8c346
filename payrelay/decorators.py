"""
Custom route decorators for access control.

- api_token_required: ensures the request carries
  "Authorization: Bearer <ADMIN_API_TOKEN>".
"""

import hmac
from functools import wraps

from flask import current_app, jsonify, request


def api_token_required(f):
    """Require the admin API bearer token. 403 when unset or wrong."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("ADMIN_API_TOKEN")
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")

        # No token configured means the API is closed, not open
        if not expected or scheme.lower() != "bearer" or not hmac.compare_digest(
            token.strip().encode(), expected.encode()
        ):
            return jsonify(ok=False, error="Forbidden"), 403

        return f(*args, **kwargs)

    return decorated
