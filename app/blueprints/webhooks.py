"""Webhooks blueprint — /paypal/webhook

Receives PayPal subscription webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import json
import logging

from flask import Blueprint, current_app, jsonify, request

from app.extensions import paypal
from app.services.paypal_service import TRANSMISSION_HEADERS
from app.services.webhook_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/paypal")


@webhooks_bp.route("/webhook", methods=["POST"])
def paypal_webhook():
    """Receive and process PayPal webhook events.

    1. Read the raw body once (verification runs against these bytes)
    2. Decode UTF-8 and parse JSON; malformed -> 400
    3. Verify the signature with PayPal when PAYPAL_VERIFY_WEBHOOKS is on
       and PAYPAL_WEBHOOK_ID is set; invalid -> 401
    4. Dispatch to handle_webhook_event (idempotent via paypal_events table)
    5. Return 200 — handler failures are logged, not surfaced, so PayPal
       does not keep redelivering a half-handled event

    CSRF is exempted for this blueprint in create_app().
    """
    raw_body = request.get_data()

    try:
        # PayPal sends UTF-8; the verifier splices these bytes in as text
        event = json.loads(raw_body.decode("utf-8"))
    except ValueError:
        logger.warning("[PayPal Webhook] Malformed JSON body")
        return jsonify({"error": "Invalid JSON"}), 400
    if not isinstance(event, dict):
        logger.warning("[PayPal Webhook] Body is not a JSON object")
        return jsonify({"error": "Invalid JSON"}), 400

    # --- Verify signature ---
    webhook_id = current_app.config.get("PAYPAL_WEBHOOK_ID")
    if current_app.config.get("PAYPAL_VERIFY_WEBHOOKS") and webhook_id:
        headers = {
            key: request.headers.get(header, "")
            for key, header in TRANSMISSION_HEADERS.items()
        }
        if not paypal.verify_webhook_signature(webhook_id, headers, raw_body):
            logger.error(
                f"[PayPal Webhook] Invalid signature "
                f"(transmission {headers['transmission_id'] or '-'})"
            )
            return jsonify({"error": "Invalid signature"}), 401
    else:
        logger.debug("[PayPal Webhook] Signature verification disabled")

    # --- Process event (idempotent) ---
    status = handle_webhook_event(event)
    if status == "failed":
        logger.error(f"[PayPal Webhook] Processing failed for event {event.get('id')}")

    return jsonify({"received": True, "status": status}), 200
