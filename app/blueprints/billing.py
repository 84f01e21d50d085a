"""Billing blueprint — /paypal/*

JSON endpoints used by the business dashboard's payment pages.

Routes:
- POST /paypal/create-subscription   — start a PayPal subscription, return approval URL
- POST /paypal/cancel-subscription   — cancel at PayPal and locally, drop to free plan
- GET  /paypal/subscription-status   — local subscription + live PayPal status
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from app.extensions import db, paypal
from app.models.business import Business
from app.models.plan import SubscriptionPlan
from app.services.billing_service import (
    cancel_subscription_record,
    get_current_subscription,
    log_billing_audit,
)
from app.services.paypal_service import PayPalError
from app.services.webhook_service import CustomData

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/paypal")


def _to_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _load_owned_business(business_id, action):
    """Return (business, None) or (None, error_response)."""
    business = db.session.get(Business, business_id)
    if not business:
        return None, (jsonify({"error": "Business not found"}), 404)

    if not current_user.is_admin and business.user_id != current_user.id:
        return None, (
            jsonify({"error": f"You don't have permission to {action}"}),
            403,
        )
    return business, None


# ──────────────────────────────────────────────
# POST /paypal/create-subscription
# ──────────────────────────────────────────────

@billing_bp.route("/create-subscription", methods=["POST"])
@login_required
def create_subscription():
    """Create a PayPal subscription for a business listing.

    Body: {"planId": int, "businessId": int, "billingCycle": "monthly"|"yearly"}
    Returns {"subscriptionId", "approvalUrl"}; the listing is upgraded when
    the BILLING.SUBSCRIPTION.ACTIVATED webhook arrives.
    """
    if not paypal.is_configured():
        return jsonify({"error": "Payment system not configured"}), 503

    body = request.get_json(silent=True) or {}
    plan_id = _to_int(body.get("planId"))
    business_id = _to_int(body.get("businessId"))
    billing_cycle = body.get("billingCycle")

    if not plan_id or not business_id or not billing_cycle:
        return jsonify({
            "error": "Missing required fields: planId, businessId, billingCycle"
        }), 400

    if billing_cycle not in SubscriptionPlan.BILLING_CYCLES:
        return jsonify({
            "error": "Invalid billing cycle. Must be 'monthly' or 'yearly'"
        }), 400

    plan = db.session.get(SubscriptionPlan, plan_id)
    if not plan:
        return jsonify({"error": "Plan not found"}), 404
    if not plan.is_active:
        return jsonify({"error": "This plan is no longer available"}), 400

    paypal_plan_id = plan.paypal_plan_id(billing_cycle, paypal.mode)
    if not paypal_plan_id:
        return jsonify({
            "error": "PayPal plan not configured for this billing cycle"
        }), 400

    business, error = _load_owned_business(business_id, "upgrade this business")
    if error:
        return error

    app_base_url = current_app.config["APP_BASE_URL"]
    custom = CustomData(business.id, current_user.id, billing_cycle)

    try:
        subscription_id, approval_url = paypal.create_subscription(
            paypal_plan_id,
            return_url=f"{app_base_url}/dashboard/business/{business.id}/subscription-success",
            cancel_url=f"{app_base_url}/dashboard/business/{business.id}/subscription-cancelled",
            custom_id=custom.to_json(),
        )
    except PayPalError as e:
        logger.error(f"[PayPal] Error creating subscription: {e}", exc_info=True)
        return jsonify({"error": "Failed to create subscription with PayPal"}), 502

    return jsonify({
        "subscriptionId": subscription_id,
        "approvalUrl": approval_url,
    })


# ──────────────────────────────────────────────
# POST /paypal/cancel-subscription
# ──────────────────────────────────────────────

@billing_bp.route("/cancel-subscription", methods=["POST"])
@login_required
def cancel_subscription():
    """Cancel a business's subscription.

    Body: {"businessId": int, "reason": str (optional)}
    Cancels at PayPal first; the local row is only touched if that worked.
    The CANCELLED webhook that follows finds the row already cancelled.
    """
    body = request.get_json(silent=True) or {}
    business_id = _to_int(body.get("businessId"))
    reason = body.get("reason") or "Cancelled by user"

    if not business_id:
        return jsonify({"error": "businessId is required"}), 400

    business, error = _load_owned_business(business_id, "cancel this subscription")
    if error:
        return error

    sub = get_current_subscription(business.id)
    if not sub:
        return jsonify({"error": "No subscription found for this business"}), 404
    if sub.status == "cancelled":
        return jsonify({"error": "Subscription is already cancelled"}), 400

    if sub.paypal_subscription_id:
        try:
            paypal.cancel_subscription(sub.paypal_subscription_id, reason)
        except PayPalError as e:
            logger.error(f"[PayPal] Error cancelling subscription: {e}")
            return jsonify({"error": "Failed to cancel subscription with PayPal"}), 502

    cancel_subscription_record(sub)
    log_billing_audit(business.id, "subscription.cancelled", {
        "paypal_subscription_id": sub.paypal_subscription_id,
        "reason": reason,
    }, actor_user_id=current_user.id)
    db.session.commit()

    return jsonify({
        "success": True,
        "message": "Subscription cancelled successfully",
        # Paid features remain until the end of the current period
        "endDate": sub.to_dict()["endDate"],
    })


# ──────────────────────────────────────────────
# GET /paypal/subscription-status?businessId=123
# ──────────────────────────────────────────────

@billing_bp.route("/subscription-status")
@login_required
def subscription_status():
    """Subscription status for a business, with PayPal's view when available."""
    business_id = _to_int(request.args.get("businessId"))
    if not business_id:
        return jsonify({"error": "businessId is required"}), 400

    business, error = _load_owned_business(business_id, "view this subscription")
    if error:
        return error

    current_plan = (
        db.session.get(SubscriptionPlan, business.subscription_plan_id)
        if business.subscription_plan_id else None
    )
    sub = get_current_subscription(business.id)

    if not sub:
        return jsonify({
            "hasSubscription": False,
            "currentPlan": current_plan.to_dict() if current_plan else None,
            "subscription": None,
            "paypalStatus": None,
        })

    paypal_status = None
    if sub.paypal_subscription_id:
        try:
            paypal_status = paypal.get_subscription(sub.paypal_subscription_id)
        except PayPalError as e:
            logger.warning(f"[PayPal] Could not fetch live status for {sub.paypal_subscription_id}: {e}")

    return jsonify({
        "hasSubscription": True,
        "currentPlan": current_plan.to_dict() if current_plan else None,
        "subscription": sub.to_dict(),
        "paypalStatus": paypal_status,
    })
