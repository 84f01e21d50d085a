"""Billing service — DB sync helpers for PayPal subscriptions.

Responsible for:
- Resolving PayPal plan IDs to local subscription plans (monthly / yearly)
- Upserting business_subscriptions rows from webhook data
- Keeping businesses.subscription_plan_id in step with the subscription
- Billing-cycle period arithmetic
- Billing audit events

Functions here flush() but never commit(); the caller owns the transaction.
"""

import logging
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta
from flask import current_app

from app.extensions import db, paypal
from app.models.audit import AuditEvent
from app.models.billing import BusinessSubscription
from app.models.business import Business
from app.models.plan import SubscriptionPlan

logger = logging.getLogger(__name__)

CYCLE_LENGTHS = {
    "monthly": relativedelta(months=1),
    "yearly": relativedelta(years=1),
}


def utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value):
    """SQLite hands back naive datetimes; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_billing_cycle(start, billing_cycle):
    """Return start advanced by one billing cycle (calendar month or year)."""
    return _as_utc(start) + CYCLE_LENGTHS.get(billing_cycle, CYCLE_LENGTHS["monthly"])


# ──────────────────────────────────────────────
# Plan resolution
# ──────────────────────────────────────────────

def resolve_plan(paypal_plan_id, cycle_hint=None, mode=None):
    """Map a PayPal plan ID to (SubscriptionPlan, billing_cycle).

    Checks the hinted cycle's slot first (monthly when there is no hint),
    then the other slot, since some events arrive without a reliable cycle.
    Returns (None, None) when no plan owns the ID.
    """
    if not paypal_plan_id:
        return None, None

    mode = mode or paypal.mode
    first = cycle_hint if cycle_hint in CYCLE_LENGTHS else "monthly"
    order = [first] + [c for c in SubscriptionPlan.BILLING_CYCLES if c != first]

    for billing_cycle in order:
        column = SubscriptionPlan.paypal_column(billing_cycle, mode)
        plan = SubscriptionPlan.query.filter(column == paypal_plan_id).first()
        if plan:
            return plan, billing_cycle

    return None, None


def get_free_plan():
    slug = current_app.config.get("FREE_PLAN_SLUG", "free")
    return SubscriptionPlan.query.filter_by(slug=slug).first()


# ──────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────

def get_subscription_by_paypal_id(paypal_subscription_id):
    if not paypal_subscription_id:
        return None
    return BusinessSubscription.query.filter_by(
        paypal_subscription_id=paypal_subscription_id
    ).first()


def get_current_subscription(business_id):
    """Latest subscription row for a business, or None."""
    return (
        BusinessSubscription.query
        .filter_by(business_id=business_id)
        .order_by(BusinessSubscription.created_at.desc(), BusinessSubscription.id.desc())
        .first()
    )


# ──────────────────────────────────────────────
# Writes
# ──────────────────────────────────────────────

def set_subscription_status(sub, status):
    """Move a subscription to a new status.

    PayPal is the source of truth, so off-table transitions are applied
    anyway; they are logged because they usually mean missed events.

    A record coming back to active (late sale, re-activation after cancel
    or expiry) points its business at the subscription's plan again.
    """
    if not sub.can_transition_to(status):
        logger.warning(
            f"Unexpected subscription transition {sub.status} -> {status} "
            f"(sub={sub.paypal_subscription_id})"
        )
    was_active = sub.status == "active"
    sub.status = status
    sub.updated_at = utcnow()
    if status == "active" and not was_active and sub.plan_id:
        set_business_plan(sub.business_id, sub.plan_id)


def set_business_plan(business_id, plan_id):
    """Point a business at a plan. Returns the Business or None."""
    business = db.session.get(Business, business_id)
    if not business:
        logger.warning(f"No business {business_id} to attach plan {plan_id} to")
        return None
    business.subscription_plan_id = plan_id
    db.session.flush()
    return business


def downgrade_to_free_plan(business_id):
    """Reset a business to the free plan. Returns the free plan or None."""
    free_plan = get_free_plan()
    if not free_plan:
        logger.error(
            f"Free plan '{current_app.config.get('FREE_PLAN_SLUG')}' missing; "
            f"business {business_id} keeps its current plan"
        )
        return None
    set_business_plan(business_id, free_plan.id)
    return free_plan


def activate_subscription(business_id, plan, billing_cycle,
                          paypal_subscription_id, paypal_payer_id=None, now=None):
    """Create or update the business's subscription as active.

    Keyed by PayPal subscription ID first, then by business, so a business
    keeps a single current row. A redelivered activation for a subscription
    that is already active keeps its period instead of restarting it.

    Returns the BusinessSubscription.
    """
    now = now or utcnow()

    sub = get_subscription_by_paypal_id(paypal_subscription_id)
    if sub is None:
        sub = get_current_subscription(business_id)

    if sub is None:
        sub = BusinessSubscription(
            business_id=business_id,
            plan_id=plan.id,
            status="active",
            paypal_subscription_id=paypal_subscription_id,
            paypal_payer_id=paypal_payer_id,
            billing_cycle=billing_cycle,
            current_period_start=now,
            current_period_end=add_billing_cycle(now, billing_cycle),
        )
        db.session.add(sub)
        db.session.flush()
        return sub

    already_active = (
        sub.status == "active"
        and sub.paypal_subscription_id == paypal_subscription_id
        and sub.billing_cycle == billing_cycle
        and sub.current_period_end is not None
    )

    if sub.business_id != business_id:
        logger.warning(
            f"PayPal subscription {paypal_subscription_id} moved from business "
            f"{sub.business_id} to {business_id}"
        )
        sub.business_id = business_id

    set_subscription_status(sub, "active")
    sub.plan_id = plan.id
    sub.paypal_subscription_id = paypal_subscription_id
    if paypal_payer_id:
        sub.paypal_payer_id = paypal_payer_id
    sub.billing_cycle = billing_cycle
    sub.cancelled_at = None
    if not already_active:
        sub.current_period_start = now
        sub.current_period_end = add_billing_cycle(now, billing_cycle)

    db.session.flush()
    return sub


def extend_subscription_period(sub, now=None):
    """Advance current_period_end by one billing cycle and mark active.

    Extends from the stored period end, not from now, so time already paid
    for is never lost. Falls back to now when no period end is recorded.
    """
    previous_end = sub.current_period_end or now or utcnow()
    sub.current_period_end = add_billing_cycle(previous_end, sub.billing_cycle)
    set_subscription_status(sub, "active")
    db.session.flush()
    return sub.current_period_end


def cancel_subscription_record(sub, now=None):
    """Mark a subscription cancelled and drop the business to the free plan."""
    set_subscription_status(sub, "cancelled")
    sub.cancelled_at = now or utcnow()
    db.session.flush()
    downgrade_to_free_plan(sub.business_id)


def log_billing_audit(business_id, action, metadata=None, actor_user_id=None):
    """Log a billing-related audit event.

    Actor is None for webhook events, which are system-initiated.
    """
    event = AuditEvent(
        business_id=business_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
