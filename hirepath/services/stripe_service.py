"""
Stripe adapter: products/prices, Checkout Sessions, subscription control
and webhook signature verification.
"""
import json
import logging
from decimal import Decimal
from typing import Mapping, Optional

import stripe

from hirepath.core.config import (
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    STRIPE_WEBHOOK_TOLERANCE,
    GATEWAY_TIMEOUT_SECONDS,
)
from hirepath.core.exceptions import GatewayError, WebhookVerificationError
from hirepath.services.payment_gateway import (
    CheckoutSession,
    PaymentGatewayClient,
    PaymentProvider,
    PaymentVerification,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

# Initialize Stripe client
if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY
else:
    logger.warning("STRIPE_SECRET_KEY not configured - Stripe features disabled")

stripe.default_http_client = stripe.RequestsClient(timeout=GATEWAY_TIMEOUT_SECONDS)

PAID_SESSION_STATUSES = ("paid", "no_payment_required")
LIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


def _to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


def _with_query(url: str, query: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{query}"


def _gateway_error(exc: "stripe.StripeError", action: str) -> GatewayError:
    """Translate a Stripe SDK failure; connection trouble and 5xx are retryable."""
    http_status = getattr(exc, "http_status", None) or 0
    retryable = isinstance(exc, stripe.APIConnectionError) or http_status >= 500
    message = getattr(exc, "user_message", None) or str(exc) or "Stripe request failed"
    logger.error(f"Stripe error during {action}: status={http_status}, retryable={retryable}, error={exc}")
    return GatewayError(f"Stripe {action} failed: {message}", provider="stripe", retryable=retryable)


class StripeGatewayClient(PaymentGatewayClient):
    provider = PaymentProvider.STRIPE
    reference_keys = ("session_id", "subscription_id")

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None,
                 tolerance: int = STRIPE_WEBHOOK_TOLERANCE):
        self.api_key = api_key or STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance

    def _require_key(self):
        if not self.api_key:
            raise GatewayError("Stripe is not configured", provider="stripe", status_code=500)

    def ensure_plan(self, plan) -> Optional[str]:
        """
        Create (once) the Stripe product and price backing ``plan``.

        Returns:
            Stripe price id, also stored on plan.external_stripe_price_id
        """
        if plan.external_stripe_price_id:
            return plan.external_stripe_price_id
        self._require_key()

        price_args = {
            "currency": plan.currency.lower(),
            "unit_amount": _to_minor_units(plan.price),
        }
        if plan.is_recurring():
            price_args["recurring"] = {
                "interval": (plan.interval_unit or "MONTH").lower(),
                "interval_count": plan.interval_count or 1,
            }

        try:
            product = stripe.Product.create(
                name=plan.name,
                description=plan.description or None,
                metadata={"plan_id": str(plan.id)},
                api_key=self.api_key,
            )
            price = stripe.Price.create(product=product.id, api_key=self.api_key, **price_args)
        except stripe.StripeError as e:
            raise _gateway_error(e, "price creation")

        plan.external_stripe_price_id = price.id
        logger.info(f"Created Stripe price: plan_id={plan.id}, price_id={price.id}")
        return price.id

    def create_checkout(self, employer, plan, callback_url: str, trial_days: int = 0) -> CheckoutSession:
        self._require_key()
        price_id = self.ensure_plan(plan)
        metadata = {"employer_id": str(employer.id), "plan_id": str(plan.id)}

        session_args = {
            "mode": "subscription" if plan.is_recurring() else "payment",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": _with_query(callback_url, "gateway=stripe&session_id={CHECKOUT_SESSION_ID}"),
            "cancel_url": _with_query(callback_url, "gateway=stripe&cancelled=1"),
            "client_reference_id": str(employer.id),
            "customer_email": employer.company_email or (employer.user.email if employer.user else None),
            "metadata": metadata,
        }
        if plan.is_recurring():
            subscription_data = {"metadata": metadata}
            if trial_days:
                subscription_data["trial_period_days"] = trial_days
            session_args["subscription_data"] = subscription_data

        try:
            session = stripe.checkout.Session.create(api_key=self.api_key, **session_args)
        except stripe.StripeError as e:
            raise _gateway_error(e, "checkout creation")

        logger.info(f"Created Stripe checkout session: employer_id={employer.id}, plan_id={plan.id}, session_id={session.id}")
        return CheckoutSession(
            reference_id=session.id,
            redirect_url=session.url,
            subscription_id=getattr(session, "subscription", None),
            status=getattr(session, "status", None),
        )

    def verify_payment(self, reference: str) -> PaymentVerification:
        """
        Read-only check of a Checkout Session (``cs_...``) or a recurring
        subscription (``sub_...``). Calling it again never charges again.
        """
        self._require_key()
        try:
            if reference.startswith("sub_"):
                sub = stripe.Subscription.retrieve(reference, api_key=self.api_key)
                status = sub.status
                success = status in LIVE_SUBSCRIPTION_STATUSES
                return PaymentVerification(
                    success=success,
                    message="Payment verified" if success else f"Subscription is {status}",
                    reference=reference,
                    transaction_id=getattr(sub, "latest_invoice", None) or sub.id,
                    subscription_id=sub.id,
                    status=status,
                )

            session = stripe.checkout.Session.retrieve(reference, api_key=self.api_key)
        except stripe.StripeError as e:
            raise _gateway_error(e, "payment verification")

        status = session.payment_status
        success = status in PAID_SESSION_STATUSES
        subscription_id = getattr(session, "subscription", None)
        return PaymentVerification(
            success=success,
            message="Payment verified" if success else f"Payment status is {status}",
            reference=reference,
            transaction_id=getattr(session, "payment_intent", None) or subscription_id or session.id,
            subscription_id=subscription_id,
            status=status,
        )

    def cancel_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._require_key()
        try:
            stripe.Subscription.cancel(
                subscription_id,
                cancellation_details={"comment": reason} if reason else None,
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise _gateway_error(e, "cancellation")
        logger.info(f"Cancelled Stripe subscription {subscription_id}")

    def suspend_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._require_key()
        try:
            stripe.Subscription.modify(
                subscription_id,
                pause_collection={"behavior": "void"},
                metadata={"suspend_reason": reason},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise _gateway_error(e, "suspension")
        logger.info(f"Paused Stripe subscription {subscription_id}")

    def resume_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._require_key()
        try:
            stripe.Subscription.modify(
                subscription_id,
                pause_collection="",
                metadata={"resume_reason": reason},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            raise _gateway_error(e, "resume")
        logger.info(f"Resumed Stripe subscription {subscription_id}")

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        signature = {k.lower(): v for k, v in headers.items()}.get("stripe-signature")
        if not self.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured", provider="stripe")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header", provider="stripe")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError:
            raise WebhookVerificationError("Stripe payload is not valid UTF-8", provider="stripe")
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid Stripe signature: {e}", provider="stripe")

        try:
            event = json.loads(body)
        except ValueError:
            raise WebhookVerificationError("Malformed Stripe payload", provider="stripe")

        return WebhookEvent(
            provider=self.provider,
            event_id=event.get("id"),
            event_type=event.get("type") or "",
            resource=(event.get("data") or {}).get("object") or {},
        )
