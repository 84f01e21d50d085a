"""Business model (directory listing).

Only the billing-relevant columns live here. subscription_plan_id is a
denormalized pointer to the plan currently in effect; billing_service keeps
it in step with the business's subscription record.
"""

from app.extensions import db


class Business(db.Model):
    __tablename__ = "businesses"

    # pending_payment: paid plan chosen, waiting on PayPal activation
    # pending:         awaiting manual moderation
    APPROVAL_STATUSES = ["pending_payment", "pending", "approved", "rejected"]

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    subscription_plan_id = db.Column(
        db.Integer, db.ForeignKey("subscription_plans.id"), nullable=True,
        index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(200), unique=True, nullable=False)
    email = db.Column(db.String(255), nullable=True)
    approval_status = db.Column(
        db.String(20), default="pending", nullable=False, index=True
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    owner = db.relationship("User", back_populates="businesses")
    plan = db.relationship("SubscriptionPlan")
    subscriptions = db.relationship(
        "BusinessSubscription", back_populates="business", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="business", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Business {self.slug} ({self.approval_status})>"
