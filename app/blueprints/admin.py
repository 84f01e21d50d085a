"""Admin blueprint — /admin/*

Billing administration. All routes protected by @admin_required.

Route Map:
  POST /admin/subscription-plans/sync-paypal     — push plan catalog to PayPal
  POST /admin/subscriptions/<id>/suspend          — suspend at PayPal + locally
  POST /admin/subscriptions/<id>/reactivate       — reactivate at PayPal + locally
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from app.decorators import admin_required
from app.extensions import db, paypal
from app.models.billing import BusinessSubscription
from app.services.billing_service import log_billing_audit, set_subscription_status
from app.services.paypal_service import PayPalError
from app.services.plan_sync_service import sync_plans_to_paypal

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# ══════════════════════════════════════════════
#  PLAN CATALOG
# ══════════════════════════════════════════════

@admin_bp.route("/subscription-plans/sync-paypal", methods=["POST"])
@admin_required
def sync_paypal_plans():
    """Create PayPal products/plans for every active paid plan."""
    if not paypal.is_configured():
        return jsonify({
            "error": "PayPal is not configured. Check your environment variables."
        }), 400

    try:
        product_id, results = sync_plans_to_paypal()
    except PayPalError as e:
        logger.error(f"[PayPal Sync] Error: {e}")
        return jsonify({"error": "Failed to sync plans to PayPal"}), 502

    return jsonify({
        "success": True,
        "mode": paypal.mode,
        "productId": product_id,
        "results": results,
    })


# ══════════════════════════════════════════════
#  SUBSCRIPTION OVERRIDES
# ══════════════════════════════════════════════

def _override(subscription_id, action):
    """Shared body for suspend / reactivate."""
    sub = db.session.get(BusinessSubscription, subscription_id)
    if not sub:
        return jsonify({"error": "Subscription not found"}), 404
    if not sub.paypal_subscription_id:
        return jsonify({"error": "Subscription has no PayPal ID"}), 400

    body = request.get_json(silent=True) or {}
    if action == "suspend":
        call, status = paypal.suspend_subscription, "suspended"
        reason = body.get("reason") or "Suspended by admin"
    else:
        call, status = paypal.reactivate_subscription, "active"
        reason = body.get("reason") or "Reactivated by admin"

    try:
        call(sub.paypal_subscription_id, reason)
    except PayPalError as e:
        logger.error(f"[PayPal] Admin {action} of {sub.paypal_subscription_id} failed: {e}")
        return jsonify({"error": f"Failed to {action} subscription with PayPal"}), 502

    set_subscription_status(sub, status)
    log_billing_audit(sub.business_id, f"admin.subscription_{action}", {
        "paypal_subscription_id": sub.paypal_subscription_id,
        "reason": reason,
    }, actor_user_id=current_user.id)
    db.session.commit()

    return jsonify({"success": True, "subscription": sub.to_dict()})


@admin_bp.route("/subscriptions/<int:subscription_id>/suspend", methods=["POST"])
@admin_required
def suspend_subscription(subscription_id):
    return _override(subscription_id, "suspend")


@admin_bp.route("/subscriptions/<int:subscription_id>/reactivate", methods=["POST"])
@admin_required
def reactivate_subscription(subscription_id):
    return _override(subscription_id, "reactivate")
