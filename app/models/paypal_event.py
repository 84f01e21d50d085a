"""PayPal event model (idempotency table).

Every handled webhook event is recorded by its PayPal event ID. Before
processing any event, the handler checks this table. If the event_id already
exists, it acknowledges immediately — PayPal redelivers on timeouts, and a
replayed PAYMENT.SALE.COMPLETED would otherwise extend the period twice.
"""

import uuid

from app.extensions import db


class PayPalEvent(db.Model):
    __tablename__ = "paypal_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    paypal_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "WH-2WR32451HC0233532-67976317FL4543714"
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "BILLING.SUBSCRIPTION.ACTIVATED"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<PayPalEvent {self.paypal_event_id} ({self.event_type})>"
