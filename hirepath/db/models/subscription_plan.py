from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric, DateTime
from sqlalchemy.sql import func
from hirepath.db.base import Base


class SubscriptionPlan(Base):
    """
    Catalog entry: price and quota limits of a purchasable tier.

    Limits are copied onto a Subscription at activation, so editing a plan
    never changes subscriptions already issued.
    """
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    duration_days = Column(Integer, nullable=True)  # null = no expiry (one-time packs)

    job_posts_limit = Column(Integer, nullable=False, default=0)
    featured_jobs_limit = Column(Integer, nullable=False, default=0)
    resume_views_limit = Column(Integer, nullable=False, default=0)

    payment_type = Column(String, nullable=False, default="one_time")  # one_time | recurring
    interval_unit = Column(String, nullable=True)  # DAY | WEEK | MONTH | YEAR
    interval_count = Column(Integer, nullable=False, default=1)

    has_trial = Column(Boolean, nullable=False, default=False)
    trial_period_days = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)

    external_stripe_price_id = Column(String, nullable=True)
    external_paypal_plan_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def is_recurring(self) -> bool:
        return self.payment_type == "recurring"

    def is_one_time(self) -> bool:
        return self.payment_type != "recurring"

    def trial_days(self) -> int:
        return self.trial_period_days if self.has_trial and self.trial_period_days else 0

    def __repr__(self):
        return f"<SubscriptionPlan(id={self.id}, name={self.name}, payment_type={self.payment_type})>"
