from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from hirepath.db.base import Base


class Subscription(Base):
    """
    One employer's purchase of one plan for one period.

    Created pending (is_active=False, zero quotas) when a payment link is
    generated; activated_at is set exactly once, when quotas are granted.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    employer_id = Column(Integer, ForeignKey("employers.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_plan_id = Column(Integer, ForeignKey("subscription_plans.id"), nullable=False, index=True)

    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    payment_type = Column(String, nullable=False, default="one_time")
    payment_provider = Column(String, nullable=True, index=True)  # stripe | paypal
    transaction_id = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True, index=True)  # checkout session / order id
    subscription_id = Column(String, nullable=True, index=True)  # gateway recurring subscription id
    receipt_path = Column(String, nullable=True)

    # Quota snapshot taken from the plan at activation
    job_posts_left = Column(Integer, nullable=False, default=0)
    featured_jobs_left = Column(Integer, nullable=False, default=0)
    cv_downloads_left = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=False, index=True)
    is_suspended = Column(Boolean, nullable=False, default=False)
    is_trial = Column(Boolean, nullable=False, default=False)
    used_trial = Column(Boolean, nullable=False, default=False)
    trial_end_date = Column(DateTime, nullable=True)

    external_status = Column(String, nullable=True)
    next_billing_date = Column(DateTime, nullable=True)
    activated_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    status_updated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    employer = relationship("Employer", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    def __repr__(self):
        return (
            f"<Subscription(id={self.id}, employer_id={self.employer_id}, "
            f"plan_id={self.subscription_plan_id}, is_active={self.is_active})>"
        )
