"""
Pydantic schemas for billing endpoints.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class PlanResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    currency: str
    duration_days: Optional[int] = None
    job_posts_limit: int
    featured_jobs_limit: int
    resume_views_limit: int
    payment_type: str
    interval_unit: Optional[str] = None
    interval_count: int = 1
    has_trial: bool
    trial_period_days: int
    is_featured: bool

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    id: int
    subscription_plan_id: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    amount_paid: float
    currency: str
    payment_type: str
    payment_provider: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_reference: Optional[str] = None
    job_posts_left: int
    featured_jobs_left: int
    cv_downloads_left: int
    is_active: bool
    is_suspended: bool
    is_trial: bool
    trial_end_date: Optional[datetime] = None
    external_status: Optional[str] = None
    next_billing_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentLinkRequest(BaseModel):
    """Request schema for generating a payment link."""
    gateway: str = Field(..., description="Payment gateway: 'stripe' or 'paypal'")
    callback_url: Optional[str] = Field(None, description="Where the gateway sends the employer back to")

    class Config:
        json_schema_extra = {
            "example": {"gateway": "stripe", "callback_url": "https://hirepath.example/employer/billing/callback"}
        }


class PaymentDataRequest(BaseModel):
    """Gateway name plus the identifiers the gateway handed back to the browser."""
    gateway: str = Field(..., description="Payment gateway: 'stripe' or 'paypal'")
    payment_data: Dict[str, Any] = Field(
        default_factory=dict,
        description="session_id / subscription_id for Stripe, paypal_order_id / paypal_subscription_id for PayPal",
    )

    class Config:
        json_schema_extra = {
            "example": {"gateway": "stripe", "payment_data": {"session_id": "cs_test_a1b2c3"}}
        }


class SubscribeRequest(PaymentDataRequest):
    plan_id: int = Field(..., description="Plan being purchased")
    receipt_path: Optional[str] = Field(None, description="Stored receipt for offline payments")


class ChangePlanRequest(SubscribeRequest):
    pass


class SubscriptionActionRequest(BaseModel):
    reason: Optional[str] = Field("", max_length=500)
