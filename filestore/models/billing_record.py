from sqlalchemy import func, text
from filestore.extensions import db

class BillingRecord(db.Model):
    """One row per user mirroring the Stripe customer/subscription state."""

    __tablename__ = "stripe"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36),
        db.ForeignKey("users.uuid", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
        index=True,
    )

    stripe_customer_id = db.Column(db.String(64), nullable=True, index=True)
    stripe_subscription_id = db.Column(db.String(64), nullable=True, index=True)
    price_id = db.Column(db.String(64), nullable=True)

    # Mirrors Stripe's status vocabulary verbatim (active, past_due, canceled, ...)
    subscription_status = db.Column(db.String(32), nullable=True, index=True)

    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, server_default=text("false"))
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return (
            f"<BillingRecord user_id={self.user_id!r} status={self.subscription_status!r} "
            f"subscription={self.stripe_subscription_id!r}>"
        )
