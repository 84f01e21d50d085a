"""Billing models.

BusinessSubscription tracks one PayPal billing relationship for a business.
Rows are updated in place by webhook handlers and never deleted; the latest
row per business is the current one.
"""

from app.extensions import db


class BusinessSubscription(db.Model):
    __tablename__ = "business_subscriptions"

    STATUSES = ["pending", "active", "cancelled", "suspended", "expired"]

    # Lifecycle edges PayPal is expected to drive us along. None = no record yet.
    TRANSITIONS = {
        None: {"active"},
        "pending": {"active", "cancelled"},
        "active": {"active", "cancelled", "suspended", "expired"},
        "suspended": {"active", "cancelled", "expired"},
        "cancelled": set(),
        "expired": set(),
    }

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(
        db.Integer,
        db.ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    plan_id = db.Column(
        db.Integer, db.ForeignKey("subscription_plans.id"), nullable=True
    )
    paypal_subscription_id = db.Column(
        db.String(100), unique=True, nullable=True
    )  # e.g. "I-BW452GLLEP1G"
    paypal_payer_id = db.Column(db.String(100), nullable=True)
    billing_cycle = db.Column(
        db.String(20), default="monthly", nullable=False
    )  # monthly | yearly
    status = db.Column(
        db.String(20), default="pending", nullable=False
    )  # pending | active | cancelled | suspended | expired
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    business = db.relationship("Business", back_populates="subscriptions")
    plan = db.relationship("SubscriptionPlan")

    def can_transition_to(self, status):
        return status in self.TRANSITIONS.get(self.status, set())

    def to_dict(self):
        return {
            "id": self.id,
            "status": self.status,
            "billingCycle": self.billing_cycle,
            "startDate": _iso(self.current_period_start),
            "endDate": _iso(self.current_period_end),
            "cancelledAt": _iso(self.cancelled_at),
        }

    def __repr__(self):
        return f"<BusinessSubscription business={self.business_id} ({self.status})>"


def _iso(value):
    return value.isoformat() if value else None
