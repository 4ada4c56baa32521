"""
Webhook event handlers for Stripe and PayPal.

Each handler receives the verified event's resource object, finds the
local subscription by gateway reference and applies one state change.
Handlers return False when the subscription is not known yet (webhooks
can arrive before the checkout row exists) so the gateway redelivers.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from hirepath.db.models.subscription import Subscription
from hirepath.services import notification_service
from hirepath.services import subscription_ledger as ledger
from hirepath.services.payment_gateway import PaymentProvider, WebhookEvent

logger = logging.getLogger(__name__)

STRIPE = PaymentProvider.STRIPE.value
PAYPAL = PaymentProvider.PAYPAL.value

STRIPE_PAID_STATUSES = ("paid", "no_payment_required")
STRIPE_LIVE_STATUSES = ("active", "trialing")
STRIPE_DELINQUENT_STATUSES = ("past_due", "unpaid")
STRIPE_ENDED_STATUSES = ("canceled", "incomplete_expired")


def _from_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _not_found(provider: str, event_type: str, reference: Optional[str]) -> bool:
    logger.warning(f"Webhook {provider}/{event_type}: no subscription for reference={reference}")
    return False


def _suspend(service, subscription: Subscription, external_status: str, payment_failed: bool = False):
    already = subscription.is_suspended
    ledger.mark_suspended(subscription, external_status=external_status)
    service.db.commit()
    if not already:
        service._notify(subscription, notification_service.SUBSCRIPTION_SUSPENDED, {"reason": external_status})
    if payment_failed:
        service._notify(subscription, notification_service.PAYMENT_FAILED, {"external_status": external_status})


def _resume(service, subscription: Subscription, external_status: str):
    if subscription.cancelled_at:
        service.db.commit()
        return
    was_suspended = subscription.is_suspended
    ledger.mark_resumed(subscription, external_status=external_status)
    service.db.commit()
    if was_suspended:
        service._notify(subscription, notification_service.SUBSCRIPTION_RESUMED, {"reason": external_status})


def _cancel(service, subscription: Subscription, external_status: str):
    if subscription.cancelled_at:
        return
    ledger.mark_cancelled(subscription, external_status=external_status)
    service.db.commit()
    service._notify(subscription, notification_service.SUBSCRIPTION_CANCELLED, {"reason": external_status})


def _activate_or_resume(service, subscription: Subscription, external_status: str,
                        transaction_id: Optional[str] = None, period_end: Optional[datetime] = None):
    """First payment activates; later ones renew the period and lift a suspension."""
    if subscription.activated_at is None:
        subscription.external_status = external_status
        service.activate_pending(subscription, transaction_id=transaction_id)
    else:
        ledger.record_transaction(subscription, transaction_id)
        ledger.renew(service.db, subscription, period_end)
        _resume(service, subscription, external_status)


# ----------------------------------------------------------------------
# Stripe
# ----------------------------------------------------------------------

def _stripe_invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    if invoice.get("subscription"):
        return invoice["subscription"]
    details = ((invoice.get("parent") or {}).get("subscription_details") or {})
    return details.get("subscription")


def _stripe_invoice_period_end(invoice: Dict[str, Any]) -> Optional[datetime]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return None
    return _from_timestamp((lines[0].get("period") or {}).get("end"))


def _stripe_current_period_end(resource: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the subscription items
    if resource.get("current_period_end"):
        return _from_timestamp(resource["current_period_end"])
    items = (resource.get("items") or {}).get("data") or []
    if not items:
        return None
    return _from_timestamp(items[0].get("current_period_end"))


def handle_stripe_checkout_completed(service, resource: Dict[str, Any]) -> bool:
    session_id = resource.get("id")
    subscription = ledger.find_by_payment_reference(service.db, STRIPE, session_id)
    if not subscription:
        return _not_found(STRIPE, "checkout.session.completed", session_id)

    if resource.get("subscription"):
        subscription.subscription_id = resource["subscription"]
    transaction_id = resource.get("payment_intent") or resource.get("subscription")

    if resource.get("payment_status") in STRIPE_PAID_STATUSES:
        service.activate_pending(subscription, transaction_id=transaction_id)
    else:
        ledger.record_transaction(subscription, transaction_id)
        subscription.external_status = resource.get("payment_status")
        service.db.commit()
    return True


def handle_stripe_subscription_changed(service, resource: Dict[str, Any]) -> bool:
    stripe_subscription_id = resource.get("id")
    subscription = ledger.find_by_gateway_subscription_id(service.db, STRIPE, stripe_subscription_id)
    if not subscription:
        return _not_found(STRIPE, "customer.subscription", stripe_subscription_id)

    status = resource.get("status") or ""
    next_billing = _stripe_current_period_end(resource)
    if next_billing:
        subscription.next_billing_date = next_billing

    if status in STRIPE_LIVE_STATUSES:
        _activate_or_resume(service, subscription, status, period_end=next_billing)
    elif status in STRIPE_DELINQUENT_STATUSES:
        _suspend(service, subscription, status)
    elif status in STRIPE_ENDED_STATUSES:
        _cancel(service, subscription, status)
    else:
        subscription.external_status = status
        service.db.commit()
    return True


def handle_stripe_subscription_deleted(service, resource: Dict[str, Any]) -> bool:
    stripe_subscription_id = resource.get("id")
    subscription = ledger.find_by_gateway_subscription_id(service.db, STRIPE, stripe_subscription_id)
    if not subscription:
        return _not_found(STRIPE, "customer.subscription.deleted", stripe_subscription_id)
    _cancel(service, subscription, "canceled")
    return True


def handle_stripe_invoice_paid(service, resource: Dict[str, Any]) -> bool:
    stripe_subscription_id = _stripe_invoice_subscription_id(resource)
    if not stripe_subscription_id:
        # One-time payments are settled by checkout.session.completed
        return True
    subscription = ledger.find_by_gateway_subscription_id(service.db, STRIPE, stripe_subscription_id)
    if not subscription:
        return _not_found(STRIPE, "invoice.paid", stripe_subscription_id)

    transaction_id = resource.get("payment_intent") or resource.get("id")
    _activate_or_resume(
        service, subscription, "active",
        transaction_id=transaction_id,
        period_end=_stripe_invoice_period_end(resource),
    )
    return True


def handle_stripe_invoice_failed(service, resource: Dict[str, Any]) -> bool:
    stripe_subscription_id = _stripe_invoice_subscription_id(resource)
    if not stripe_subscription_id:
        return True
    subscription = ledger.find_by_gateway_subscription_id(service.db, STRIPE, stripe_subscription_id)
    if not subscription:
        return _not_found(STRIPE, "invoice.payment_failed", stripe_subscription_id)
    _suspend(service, subscription, "past_due", payment_failed=True)
    return True


# ----------------------------------------------------------------------
# PayPal
# ----------------------------------------------------------------------

def _paypal_subscription(service, resource: Dict[str, Any], event_type: str):
    paypal_subscription_id = resource.get("id")
    subscription = ledger.find_by_gateway_subscription_id(service.db, PAYPAL, paypal_subscription_id)
    if not subscription:
        _not_found(PAYPAL, event_type, paypal_subscription_id)
    return subscription


def _paypal_next_billing(subscription: Subscription, resource: Dict[str, Any]) -> Optional[datetime]:
    next_billing = _from_iso((resource.get("billing_info") or {}).get("next_billing_time"))
    if next_billing:
        subscription.next_billing_date = next_billing
    return next_billing


def handle_paypal_subscription_created(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.CREATED")
    if not subscription:
        return False
    subscription.external_status = resource.get("status") or "APPROVAL_PENDING"
    service.db.commit()
    return True


def handle_paypal_subscription_activated(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.ACTIVATED")
    if not subscription:
        return False
    next_billing = _paypal_next_billing(subscription, resource)
    _activate_or_resume(service, subscription, resource.get("status") or "ACTIVE", period_end=next_billing)
    return True


def handle_paypal_subscription_reactivated(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.RE-ACTIVATED")
    if not subscription:
        return False
    _paypal_next_billing(subscription, resource)
    _resume(service, subscription, resource.get("status") or "ACTIVE")
    return True


def handle_paypal_subscription_ended(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.CANCELLED")
    if not subscription:
        return False
    _cancel(service, subscription, resource.get("status") or "CANCELLED")
    return True


def handle_paypal_subscription_suspended(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.SUSPENDED")
    if not subscription:
        return False
    _suspend(service, subscription, resource.get("status") or "SUSPENDED")
    return True


def handle_paypal_payment_failed(service, resource: Dict[str, Any]) -> bool:
    subscription = _paypal_subscription(service, resource, "BILLING.SUBSCRIPTION.PAYMENT.FAILED")
    if not subscription:
        return False
    _suspend(service, subscription, "PAYMENT_FAILED", payment_failed=True)
    return True


def handle_paypal_sale_completed(service, resource: Dict[str, Any]) -> bool:
    paypal_subscription_id = resource.get("billing_agreement_id")
    if not paypal_subscription_id:
        return True
    subscription = ledger.find_by_gateway_subscription_id(service.db, PAYPAL, paypal_subscription_id)
    if not subscription:
        return _not_found(PAYPAL, "PAYMENT.SALE.COMPLETED", paypal_subscription_id)
    _activate_or_resume(service, subscription, "ACTIVE", transaction_id=resource.get("id"))
    return True


def handle_paypal_order_approved(service, resource: Dict[str, Any]) -> bool:
    order_id = resource.get("id")
    subscription = ledger.find_by_payment_reference(service.db, PAYPAL, order_id)
    if not subscription:
        return _not_found(PAYPAL, "CHECKOUT.ORDER.APPROVED", order_id)
    # Approved is not paid; the capture during verification settles it
    if subscription.activated_at is None:
        subscription.external_status = "APPROVED"
        service.db.commit()
    return True


def handle_paypal_capture_completed(service, resource: Dict[str, Any]) -> bool:
    order_id = ((resource.get("supplementary_data") or {}).get("related_ids") or {}).get("order_id")
    subscription = ledger.find_by_payment_reference(service.db, PAYPAL, order_id) if order_id else None
    if not subscription:
        return _not_found(PAYPAL, "PAYMENT.CAPTURE.COMPLETED", order_id)
    if subscription.activated_at is None:
        service.activate_pending(subscription, transaction_id=resource.get("id"))
    else:
        ledger.record_transaction(subscription, resource.get("id"))
        service.db.commit()
    return True


Handler = Callable[[Any, Dict[str, Any]], bool]

STRIPE_HANDLERS: Dict[str, Handler] = {
    "checkout.session.completed": handle_stripe_checkout_completed,
    "customer.subscription.created": handle_stripe_subscription_changed,
    "customer.subscription.updated": handle_stripe_subscription_changed,
    "customer.subscription.deleted": handle_stripe_subscription_deleted,
    "invoice.paid": handle_stripe_invoice_paid,
    "invoice.payment_succeeded": handle_stripe_invoice_paid,
    "invoice.payment_failed": handle_stripe_invoice_failed,
}

PAYPAL_HANDLERS: Dict[str, Handler] = {
    "BILLING.SUBSCRIPTION.CREATED": handle_paypal_subscription_created,
    "BILLING.SUBSCRIPTION.ACTIVATED": handle_paypal_subscription_activated,
    "BILLING.SUBSCRIPTION.RE-ACTIVATED": handle_paypal_subscription_reactivated,
    "BILLING.SUBSCRIPTION.CANCELLED": handle_paypal_subscription_ended,
    "BILLING.SUBSCRIPTION.EXPIRED": handle_paypal_subscription_ended,
    "BILLING.SUBSCRIPTION.SUSPENDED": handle_paypal_subscription_suspended,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": handle_paypal_payment_failed,
    "PAYMENT.SALE.COMPLETED": handle_paypal_sale_completed,
    "CHECKOUT.ORDER.APPROVED": handle_paypal_order_approved,
    "PAYMENT.CAPTURE.COMPLETED": handle_paypal_capture_completed,
}

HANDLERS = {
    PaymentProvider.STRIPE: STRIPE_HANDLERS,
    PaymentProvider.PAYPAL: PAYPAL_HANDLERS,
}


def route_event(service, event: WebhookEvent) -> bool:
    """Dispatch a verified event; unhandled types are acknowledged as a no-op."""
    handler = HANDLERS[event.provider].get(event.event_type)
    if handler is None:
        logger.info(f"Webhook {event.provider.value}/{event.event_type} ignored (unhandled type)")
        return True

    logger.info(
        f"Webhook {event.provider.value}/{event.event_type}: event_id={event.event_id}, "
        f"resource_id={event.resource_id}"
    )
    return handler(service, event.resource)
