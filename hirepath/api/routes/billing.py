"""
Billing endpoints: plan catalog, checkout, activation and subscription
lifecycle for the authenticated employer.
"""
import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from hirepath.core.auth_dependency import get_current_employer
from hirepath.core.error_handlers import error_body
from hirepath.core.service_dependency import get_subscription_service
from hirepath.db.models.employer import Employer
from hirepath.schemas.billing import (
    ChangePlanRequest,
    PaymentDataRequest,
    PaymentLinkRequest,
    PlanResponse,
    SubscribeRequest,
    SubscriptionActionRequest,
    SubscriptionResponse,
)
from hirepath.schemas.common import envelope
from hirepath.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _subscription_data(subscription):
    if subscription is None:
        return None
    return SubscriptionResponse.model_validate(subscription).model_dump(mode="json")


@router.get("/plans")
def list_plans(service: SubscriptionService = Depends(get_subscription_service)):
    plans = service.list_active_plans()
    return envelope("Plans retrieved", [PlanResponse.model_validate(p).model_dump(mode="json") for p in plans])


@router.get("/subscription")
def current_subscription(
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_active_subscription(employer)
    message = "Active subscription retrieved" if subscription else "No active subscription"
    return envelope(message, _subscription_data(subscription))


@router.get("/subscriptions")
def subscription_history(
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return envelope("Subscriptions retrieved", [_subscription_data(s) for s in service.list_subscriptions(employer)])


@router.post("/plans/{plan_id}/payment-link")
def generate_payment_link(
    plan_id: int,
    body: PaymentLinkRequest,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Create a hosted checkout for the plan and a pending subscription.

    The employer is redirected to ``redirect_url``; the gateway sends them
    back to the callback URL with the reference to verify.
    """
    plan = service.get_plan(plan_id, require_active=False)
    link = service.generate_payment_link(employer, plan, body.gateway, body.callback_url)
    return envelope("Payment link generated", link)


@router.post("/verify")
def verify_payment(
    body: PaymentDataRequest,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Check a checkout with the gateway without activating anything."""
    client = service.client_for(body.gateway)
    reference = client.reference_from_payload(body.payment_data)
    verification = service.verify_payment(reference, body.gateway)
    if not verification.success:
        return JSONResponse(status_code=400, content=error_body(verification.message))
    return {"success": True, "message": verification.message}


@router.post("/subscribe")
def subscribe(
    body: SubscribeRequest,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Activate a subscription whose payment was already verified through /billing/verify."""
    plan = service.get_plan(body.plan_id, require_active=False)
    subscription = service.subscribe_to_plan(employer, plan, body.payment_data, body.gateway, body.receipt_path)
    return envelope("Subscription activated", _subscription_data(subscription))


@router.post("/checkout/complete")
def complete_checkout(
    body: SubscribeRequest,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Verify the payment and activate the subscription in one step."""
    plan = service.get_plan(body.plan_id, require_active=False)
    subscription = service.complete_checkout(employer, plan, body.payment_data, body.gateway, body.receipt_path)
    return envelope("Subscription activated", _subscription_data(subscription))


@router.post("/plans/{plan_id}/trial")
def start_trial(
    plan_id: int,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.start_trial(employer, service.get_plan(plan_id))
    return envelope("Trial started", _subscription_data(subscription))


@router.put("/subscriptions/{subscription_id}")
def change_plan(
    subscription_id: int,
    body: ChangePlanRequest,
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id, employer)
    new_plan = service.get_plan(body.plan_id, require_active=False)
    subscription = service.update_subscription(
        subscription, new_plan, body.payment_data, body.gateway, body.receipt_path, employer=employer
    )
    return envelope("Subscription updated", _subscription_data(subscription))


@router.post("/subscriptions/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: int,
    body: SubscriptionActionRequest = SubscriptionActionRequest(),
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id, employer)
    if not service.cancel_subscription(subscription, body.reason or "", employer=employer):
        return JSONResponse(
            status_code=502,
            content=error_body("The payment gateway could not cancel billing; your subscription is unchanged"),
        )
    return envelope("Subscription cancelled", _subscription_data(subscription))


@router.post("/subscriptions/{subscription_id}/suspend")
def suspend_subscription(
    subscription_id: int,
    body: SubscriptionActionRequest = SubscriptionActionRequest(),
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id, employer)
    subscription = service.suspend_subscription(subscription, body.reason or "", employer=employer)
    return envelope("Subscription suspended", _subscription_data(subscription))


@router.post("/subscriptions/{subscription_id}/resume")
def resume_subscription(
    subscription_id: int,
    body: SubscriptionActionRequest = SubscriptionActionRequest(),
    employer: Employer = Depends(get_current_employer),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.get_subscription(subscription_id, employer)
    subscription = service.resume_subscription(subscription, body.reason or "", employer=employer)
    return envelope("Subscription resumed", _subscription_data(subscription))
