"""Payment provider webhooks. Authenticated by HMAC signature only, no session."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from storefront.services.payment_service import SIGNATURE_HEADER


webhooks_bp = Blueprint("storefront_webhooks", __name__, url_prefix="/webhooks")


@webhooks_bp.post("/payment")
def payment_webhook():
    payments = current_app.extensions["storefront_components"]["payments"]
    # signature is computed over the exact bytes received
    raw_body = request.get_data(cache=False)
    result = payments.handle_webhook(raw_body, request.headers.get(SIGNATURE_HEADER))
    return jsonify(result), 200
