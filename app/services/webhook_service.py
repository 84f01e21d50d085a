"""Webhook service — PayPal subscription event handling.

Responsible for:
- Idempotency via the paypal_events table
- Dispatching each event type to its handler (EVENT_HANDLERS)
- Decoding the custom_id payload we attach when creating subscriptions

Lifecycle driven by these events:

    (none) --ACTIVATED--> active
    active --CANCELLED--> cancelled      (business -> free plan)
    active --SUSPENDED--> suspended
    active --EXPIRED----> expired        (business -> free plan)
    suspended --RE-ACTIVATED--> active
    active --PAYMENT.SALE.COMPLETED / UPDATED--> active

Handlers that cannot find what they need log and return without writing.
PayPal owns retries; we acknowledge every event we have finished with.
"""

import enum
import json
import logging

from flask import current_app, g
from sqlalchemy.exc import IntegrityError

from app.extensions import db, paypal
from app.models.billing import BusinessSubscription
from app.models.business import Business
from app.models.paypal_event import PayPalEvent
from app.services.billing_service import (
    activate_subscription,
    cancel_subscription_record,
    downgrade_to_free_plan,
    extend_subscription_period,
    get_subscription_by_paypal_id,
    log_billing_audit,
    resolve_plan,
    set_business_plan,
    set_subscription_status,
    utcnow,
)
from app.services.paypal_service import PayPalError

logger = logging.getLogger(__name__)


class WebhookEventType(enum.Enum):
    SUBSCRIPTION_CREATED = "BILLING.SUBSCRIPTION.CREATED"
    SUBSCRIPTION_ACTIVATED = "BILLING.SUBSCRIPTION.ACTIVATED"
    SUBSCRIPTION_UPDATED = "BILLING.SUBSCRIPTION.UPDATED"
    SUBSCRIPTION_REACTIVATED = "BILLING.SUBSCRIPTION.RE-ACTIVATED"
    SUBSCRIPTION_SUSPENDED = "BILLING.SUBSCRIPTION.SUSPENDED"
    SUBSCRIPTION_CANCELLED = "BILLING.SUBSCRIPTION.CANCELLED"
    SUBSCRIPTION_EXPIRED = "BILLING.SUBSCRIPTION.EXPIRED"
    SUBSCRIPTION_PAYMENT_FAILED = "BILLING.SUBSCRIPTION.PAYMENT.FAILED"
    PAYMENT_SALE_COMPLETED = "PAYMENT.SALE.COMPLETED"


# ──────────────────────────────────────────────
# custom_id payload
# ──────────────────────────────────────────────

class InvalidCustomData(ValueError):
    """The subscription's custom_id is not a payload we produced."""


class CustomData:
    """Data we round-trip through PayPal's free-form custom_id field.

    Wire format (JSON string, max 127 chars on PayPal's side):
        {"businessId": 42, "userId": "7", "billingCycle": "monthly"}
    """

    def __init__(self, business_id, user_id, billing_cycle=None):
        self.business_id = business_id
        self.user_id = user_id
        self.billing_cycle = billing_cycle

    @classmethod
    def parse(cls, raw):
        if not raw:
            raise InvalidCustomData("custom_id is empty")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise InvalidCustomData(f"custom_id is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidCustomData("custom_id is not a JSON object")

        business_id = data.get("businessId")
        # bool is an int subclass; "true" is not a business
        if isinstance(business_id, bool):
            business_id = None
        if isinstance(business_id, str) and business_id.isdigit():
            business_id = int(business_id)
        if not isinstance(business_id, int) or business_id <= 0:
            raise InvalidCustomData(f"bad businessId {data.get('businessId')!r}")

        user_id = data.get("userId")
        if user_id is None or user_id == "":
            raise InvalidCustomData("missing userId")

        billing_cycle = data.get("billingCycle")
        if billing_cycle is not None and billing_cycle not in ("monthly", "yearly"):
            raise InvalidCustomData(f"bad billingCycle {billing_cycle!r}")

        return cls(business_id, str(user_id), billing_cycle)

    def to_json(self):
        data = {"businessId": self.business_id, "userId": str(self.user_id)}
        if self.billing_cycle:
            data["billingCycle"] = self.billing_cycle
        return json.dumps(data, separators=(",", ":"))

    def __repr__(self):
        return f"<CustomData business={self.business_id} user={self.user_id} cycle={self.billing_cycle}>"


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

def handle_webhook_event(event):
    """Process a (verified) PayPal webhook event.

    Returns one of:
        "processed"          handler ran and the event was recorded
        "already_processed"  event id seen before, nothing done
        "ignored"            event type we do not handle, nothing written
        "failed"             handler raised; rolled back, not recorded
    """
    event_id = event.get("id")
    event_type = event.get("event_type")

    try:
        kind = WebhookEventType(event_type)
    except ValueError:
        logger.info(f"[PayPal Webhook] Unhandled event type: {event_type}")
        return "ignored"

    logger.info(f"[PayPal Webhook] Received event: {event_type} ({event_id})")

    # --- Idempotency check ---
    if event_id and PayPalEvent.query.filter_by(paypal_event_id=event_id).first():
        logger.info(f"[PayPal Webhook] Duplicate event {event_id}, skipping")
        return "already_processed"

    resource = event.get("resource") or {}
    # Owner emails queued by handlers; sent only once the event is committed
    g.billing_emails = []
    try:
        EVENT_HANDLERS[kind](resource)
    except Exception as e:
        logger.error(f"[PayPal Webhook] Error handling {event_type}: {e}", exc_info=True)
        db.session.rollback()
        g.billing_emails = []
        return "failed"

    if not event_id:
        logger.warning(f"[PayPal Webhook] {event_type} arrived without an event id")
        db.session.commit()
        _send_queued_emails()
        return "processed"

    # --- Record event for idempotency ---
    db.session.add(PayPalEvent(paypal_event_id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent delivery of the same event committed first
        db.session.rollback()
        g.billing_emails = []
        logger.info(f"[PayPal Webhook] Event {event_id} recorded concurrently, skipping")
        return "already_processed"

    _send_queued_emails()
    return "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _find_subscription(resource, event_label, key="id"):
    paypal_subscription_id = resource.get(key)
    sub = get_subscription_by_paypal_id(paypal_subscription_id)
    if not sub:
        logger.warning(
            f"[PayPal Webhook] {event_label}: no local subscription for {paypal_subscription_id}"
        )
    return sub


def _handle_subscription_created(resource):
    """BILLING.SUBSCRIPTION.CREATED — buyer has not approved yet; log only."""
    logger.info(f"[PayPal Webhook] Subscription created: {resource.get('id')}")


def _handle_subscription_activated(resource):
    """BILLING.SUBSCRIPTION.ACTIVATED — first payment went through.

    Upserts the business's subscription, points the business at the plan
    and moves a pending_payment listing into the moderation queue.
    """
    paypal_subscription_id = resource.get("id")
    paypal_plan_id = resource.get("plan_id")

    try:
        custom = CustomData.parse(resource.get("custom_id"))
    except InvalidCustomData as e:
        logger.error(
            f"[PayPal Webhook] Activation {paypal_subscription_id}: bad custom_id ({e})"
        )
        return

    business = db.session.get(Business, custom.business_id)
    if not business:
        logger.error(
            f"[PayPal Webhook] Activation {paypal_subscription_id}: "
            f"business {custom.business_id} not found"
        )
        return

    plan, billing_cycle = resolve_plan(paypal_plan_id, custom.billing_cycle)
    if not plan:
        logger.error(f"[PayPal Webhook] Could not find plan for PayPal plan ID: {paypal_plan_id}")
        return
    if custom.billing_cycle and billing_cycle != custom.billing_cycle:
        logger.warning(
            f"[PayPal Webhook] Plan {paypal_plan_id} is {billing_cycle}, "
            f"custom_id said {custom.billing_cycle}"
        )

    payer_id = (resource.get("subscriber") or {}).get("payer_id")
    sub = activate_subscription(
        business_id=business.id,
        plan=plan,
        billing_cycle=billing_cycle,
        paypal_subscription_id=paypal_subscription_id,
        paypal_payer_id=payer_id,
    )

    business.subscription_plan_id = plan.id
    if business.approval_status == "pending_payment":
        business.approval_status = "pending"
    db.session.flush()

    log_billing_audit(business.id, "subscription.activated", {
        "paypal_subscription_id": paypal_subscription_id,
        "plan": plan.slug,
        "billing_cycle": billing_cycle,
        "user_id": custom.user_id,
    })

    logger.info(
        f"[PayPal Webhook] Subscription activated for business {business.id}, plan: {plan.name}"
    )
    _notify_owner(
        business,
        subject=f"Your {plan.name} listing is active — {business.name}",
        template="emails/subscription_activated.html",
        context={"plan_name": plan.name, "period_end": sub.current_period_end},
    )


def _handle_subscription_cancelled(resource):
    """BILLING.SUBSCRIPTION.CANCELLED — drop the business to the free plan."""
    sub = _find_subscription(resource, "Cancelled")
    if not sub:
        return

    cancel_subscription_record(sub)
    log_billing_audit(sub.business_id, "subscription.cancelled", {
        "paypal_subscription_id": sub.paypal_subscription_id,
    })
    logger.info(f"[PayPal Webhook] Subscription cancelled for business {sub.business_id}")


def _handle_subscription_suspended(resource):
    """BILLING.SUBSCRIPTION.SUSPENDED — PayPal gave up retrying payment."""
    sub = _find_subscription(resource, "Suspended")
    if not sub:
        return

    set_subscription_status(sub, "suspended")
    db.session.flush()
    log_billing_audit(sub.business_id, "subscription.suspended", {
        "paypal_subscription_id": sub.paypal_subscription_id,
    })
    logger.info(f"[PayPal Webhook] Subscription suspended: {sub.paypal_subscription_id}")


def _handle_subscription_expired(resource):
    """BILLING.SUBSCRIPTION.EXPIRED — drop the business to the free plan."""
    sub = _find_subscription(resource, "Expired")
    if not sub:
        return

    set_subscription_status(sub, "expired")
    db.session.flush()
    downgrade_to_free_plan(sub.business_id)
    log_billing_audit(sub.business_id, "subscription.expired", {
        "paypal_subscription_id": sub.paypal_subscription_id,
    })
    logger.info(f"[PayPal Webhook] Subscription expired for business {sub.business_id}")


def _handle_payment_completed(resource):
    """PAYMENT.SALE.COMPLETED — recurring payment cleared; extend one cycle.

    The sale's billing_agreement_id is the subscription ID. Live details are
    fetched from PayPal before extending; if that fails we do nothing.
    """
    paypal_subscription_id = resource.get("billing_agreement_id")
    if not paypal_subscription_id:
        logger.info("[PayPal Webhook] Payment completed but no subscription ID")
        return

    sub = _find_subscription(resource, "Payment completed", key="billing_agreement_id")
    if not sub:
        return

    try:
        details = paypal.get_subscription(paypal_subscription_id)
    except PayPalError as e:
        logger.error(
            f"[PayPal Webhook] Could not fetch subscription {paypal_subscription_id}: {e}"
        )
        return

    payer = details.get("subscriber") or {}
    if not sub.paypal_payer_id and payer.get("payer_id"):
        sub.paypal_payer_id = payer["payer_id"]

    previous_end = sub.current_period_end
    new_end = extend_subscription_period(sub)

    log_billing_audit(sub.business_id, "payment.completed", {
        "paypal_subscription_id": paypal_subscription_id,
        "sale_id": resource.get("id"),
        "amount": (resource.get("amount") or {}).get("total"),
        "previous_period_end": previous_end.isoformat() if previous_end else None,
        "period_end": new_end.isoformat(),
        "paypal_status": details.get("status"),
    })
    logger.info(
        f"[PayPal Webhook] Payment completed, subscription extended to {new_end.isoformat()}"
    )


def _handle_payment_failed(resource):
    """BILLING.SUBSCRIPTION.PAYMENT.FAILED — note it, leave status alone.

    PayPal keeps retrying and sends SUSPENDED once it gives up.
    """
    sub = _find_subscription(resource, "Payment failed")
    if not sub:
        return

    sub.updated_at = utcnow()
    db.session.flush()
    log_billing_audit(sub.business_id, "payment.failed", {
        "paypal_subscription_id": sub.paypal_subscription_id,
    })
    logger.info(f"[PayPal Webhook] Payment failed for business {sub.business_id}")

    business = db.session.get(Business, sub.business_id)
    if business:
        _notify_owner(
            business,
            subject=f"Payment problem with your listing — {business.name}",
            template="emails/payment_failed.html",
            context={},
        )


def _handle_subscription_reactivated(resource):
    """BILLING.SUBSCRIPTION.RE-ACTIVATED — back to active after a suspension."""
    sub = _find_subscription(resource, "Re-activated")
    if not sub:
        return

    set_subscription_status(sub, "active")
    db.session.flush()
    log_billing_audit(sub.business_id, "subscription.reactivated", {
        "paypal_subscription_id": sub.paypal_subscription_id,
    })
    logger.info(f"[PayPal Webhook] Subscription reactivated for business {sub.business_id}")


def _handle_subscription_updated(resource):
    """BILLING.SUBSCRIPTION.UPDATED — plan change.

    The event carries no cycle hint; the slot the new plan ID is found in
    decides monthly vs yearly.
    """
    sub = _find_subscription(resource, "Updated")
    if not sub:
        return

    new_plan_id = resource.get("plan_id")
    if not new_plan_id:
        logger.info(f"[PayPal Webhook] Subscription updated without plan_id: {resource.get('id')}")
        return

    plan, billing_cycle = resolve_plan(new_plan_id)
    if not plan:
        logger.warning(f"[PayPal Webhook] Updated to unknown PayPal plan ID: {new_plan_id}")
        return

    old_plan_id = sub.plan_id
    sub.plan_id = plan.id
    sub.billing_cycle = billing_cycle
    sub.updated_at = utcnow()
    db.session.flush()
    set_business_plan(sub.business_id, plan.id)

    log_billing_audit(sub.business_id, "subscription.plan_changed", {
        "paypal_subscription_id": sub.paypal_subscription_id,
        "old_plan_id": old_plan_id,
        "plan": plan.slug,
        "billing_cycle": billing_cycle,
    })
    logger.info(f"[PayPal Webhook] Subscription updated: {sub.paypal_subscription_id}")


EVENT_HANDLERS = {
    WebhookEventType.SUBSCRIPTION_CREATED: _handle_subscription_created,
    WebhookEventType.SUBSCRIPTION_ACTIVATED: _handle_subscription_activated,
    WebhookEventType.SUBSCRIPTION_UPDATED: _handle_subscription_updated,
    WebhookEventType.SUBSCRIPTION_REACTIVATED: _handle_subscription_reactivated,
    WebhookEventType.SUBSCRIPTION_SUSPENDED: _handle_subscription_suspended,
    WebhookEventType.SUBSCRIPTION_CANCELLED: _handle_subscription_cancelled,
    WebhookEventType.SUBSCRIPTION_EXPIRED: _handle_subscription_expired,
    WebhookEventType.SUBSCRIPTION_PAYMENT_FAILED: _handle_payment_failed,
    WebhookEventType.PAYMENT_SALE_COMPLETED: _handle_payment_completed,
}

_unhandled = set(WebhookEventType) - set(EVENT_HANDLERS)
if _unhandled:
    raise RuntimeError(
        f"No webhook handler for: {', '.join(sorted(t.value for t in _unhandled))}"
    )


# ──────────────────────────────────────────────
# Email Notifications
# ──────────────────────────────────────────────

def _notify_owner(business, subject, template, context):
    """Queue an email to the business owner for after the event commits.

    Values are copied now; committed ORM objects expire before sending.
    """
    to = (business.owner.email if business.owner else None) or business.email
    if not to:
        return

    app_base_url = current_app.config["APP_BASE_URL"]
    g.setdefault("billing_emails", []).append({
        "business_id": business.id,
        "to": to,
        "subject": subject,
        "template": template,
        "context": {
            "business_name": business.name,
            "customer_name": business.owner.full_name if business.owner else "",
            "dashboard_url": f"{app_base_url}/dashboard/business/{business.id}/payment",
            **context,
        },
    })


def _send_queued_emails():
    """Send emails queued during a committed event. Failures are logged, never raised."""
    from app.services.email_service import send_email

    queued, g.billing_emails = g.get("billing_emails", []), []
    for email in queued:
        try:
            send_email(
                to=email["to"],
                subject=email["subject"],
                template=email["template"],
                context=email["context"],
            )
        except Exception as e:
            # Never let email failure break webhook processing
            logger.error(
                f"Failed to send billing email for business {email['business_id']}: {e}"
            )
