"""Subscription plan catalog.

Each paid plan carries up to four PayPal plan IDs: one per billing cycle,
for each provider mode (live / sandbox). A PayPal plan ID is unique within
its slot across the catalog, which is what lets a webhook's plan_id be
mapped back to exactly one local plan.
"""

from app.extensions import db


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    BILLING_CYCLES = ["monthly", "yearly"]

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(50), unique=True, nullable=False)  # "free" is the fallback plan
    description = db.Column(db.Text, nullable=True)
    price_monthly = db.Column(db.Numeric(10, 2), nullable=True)
    price_yearly = db.Column(db.Numeric(10, 2), nullable=True)

    # --- PayPal plan IDs (live) ---
    paypal_plan_id_monthly = db.Column(db.String(100), unique=True, nullable=True)
    paypal_plan_id_yearly = db.Column(db.String(100), unique=True, nullable=True)
    # --- PayPal plan IDs (sandbox) ---
    paypal_plan_id_monthly_sandbox = db.Column(
        db.String(100), unique=True, nullable=True
    )
    paypal_plan_id_yearly_sandbox = db.Column(
        db.String(100), unique=True, nullable=True
    )

    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @staticmethod
    def paypal_column(billing_cycle, mode):
        """Column holding the PayPal plan ID for a cycle in a provider mode."""
        name = f"paypal_plan_id_{billing_cycle}"
        if mode == "sandbox":
            name += "_sandbox"
        return getattr(SubscriptionPlan, name)

    def paypal_plan_id(self, billing_cycle, mode):
        return getattr(self, self.paypal_column(billing_cycle, mode).key)

    def set_paypal_plan_id(self, billing_cycle, mode, value):
        setattr(self, self.paypal_column(billing_cycle, mode).key, value)

    @property
    def is_free(self):
        return not (self.price_monthly or 0) and not (self.price_yearly or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "priceMonthly": str(self.price_monthly) if self.price_monthly is not None else None,
            "priceYearly": str(self.price_yearly) if self.price_yearly is not None else None,
            "isActive": self.is_active,
        }

    def __repr__(self):
        return f"<SubscriptionPlan {self.slug}>"
