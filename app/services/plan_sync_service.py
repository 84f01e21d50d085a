"""Plan sync — push the local plan catalog to PayPal.

1. Get or create the PayPal catalog product (ID cached per mode in site_settings)
2. For every active paid plan, create the missing monthly / yearly PayPal plans
   for the current mode
3. Store the new PayPal plan IDs on the local plans

Used by POST /admin/subscription-plans/sync-paypal and `flask sync-paypal-plans`.
"""

import logging

from flask import current_app

from app.extensions import db, paypal
from app.models.plan import SubscriptionPlan
from app.models.site_setting import SiteSetting
from app.services.paypal_service import PayPalError

logger = logging.getLogger(__name__)

INTERVALS = {"monthly": "MONTH", "yearly": "YEAR"}


def _product_setting_key(mode):
    return f"paypal_{mode}_product_id"


def get_or_create_product():
    """Return the PayPal product ID for the current mode.

    Raises PayPalError if PayPal has to be asked and the call fails.
    """
    key = _product_setting_key(paypal.mode)
    product_id = SiteSetting.get_value(key)
    if product_id:
        logger.info(f"[PayPal Sync] Using stored product ID: {product_id}")
        return product_id

    name = current_app.config["PAYPAL_PRODUCT_NAME"]
    existing = next(
        (p for p in paypal.list_products() if p.get("name") == name), None
    )
    if existing:
        product_id = existing["id"]
        logger.info(f"[PayPal Sync] Found existing product in PayPal: {product_id}")
    else:
        product_id = paypal.create_product(
            name, current_app.config["PAYPAL_PRODUCT_DESCRIPTION"]
        )["id"]
        logger.info(f"[PayPal Sync] Created new product: {product_id}")

    SiteSetting.set_value(
        key, product_id, f"PayPal {paypal.mode} product ID for business listings"
    )
    db.session.commit()
    return product_id


def _price(value):
    return float(value or 0)


def sync_plan(plan, product_id):
    """Create the PayPal plans a local plan is missing. Returns a result dict."""
    prices = {
        "monthly": _price(plan.price_monthly),
        "yearly": _price(plan.price_yearly),
    }
    if not any(prices.values()):
        return {"planId": plan.id, "planName": plan.name, "action": "skipped (free plan)"}

    actions = []
    for billing_cycle, price in prices.items():
        existing_id = plan.paypal_plan_id(billing_cycle, paypal.mode)
        if existing_id:
            actions.append(f"{billing_cycle} plan exists")
            continue
        if price <= 0:
            continue

        created = paypal.create_plan(
            product_id,
            f"{plan.name} - {billing_cycle.capitalize()}",
            plan.description or f"{plan.name} {billing_cycle} subscription",
            f"{price:.2f}",
            INTERVALS[billing_cycle],
        )
        plan.set_paypal_plan_id(billing_cycle, paypal.mode, created["id"])
        # Commit per PayPal plan so a later failure cannot orphan this one
        db.session.commit()
        actions.append(f"created {billing_cycle} plan: {created['id']}")

    return {
        "planId": plan.id,
        "planName": plan.name,
        "action": ", ".join(actions) or "no changes",
        "paypalPlanIdMonthly": plan.paypal_plan_id("monthly", paypal.mode),
        "paypalPlanIdYearly": plan.paypal_plan_id("yearly", paypal.mode),
    }


def sync_plans_to_paypal():
    """Sync every active plan. Returns (product_id, results).

    A failure on one plan is reported in its result and does not stop the
    rest; a failure getting the product propagates.
    """
    product_id = get_or_create_product()

    results = []
    plans = (
        SubscriptionPlan.query
        .filter_by(is_active=True)
        .order_by(SubscriptionPlan.display_order, SubscriptionPlan.id)
        .all()
    )
    for plan in plans:
        try:
            results.append(sync_plan(plan, product_id))
        except PayPalError as e:
            db.session.rollback()
            logger.error(f"[PayPal Sync] Failed to sync plan {plan.slug}: {e}")
            results.append({
                "planId": plan.id,
                "planName": plan.name,
                "action": "error",
                "error": str(e),
            })

    return product_id, results
