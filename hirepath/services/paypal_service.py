"""
PayPal adapter over the REST API.

One-time plans go through Orders v2 (intent CAPTURE); recurring plans use
catalog products, billing plans and billing subscriptions. Webhooks are
checked with PayPal's verify-webhook-signature endpoint.
"""
import json
import logging
import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import requests

from hirepath.core.config import (
    APP_NAME,
    GATEWAY_TIMEOUT_SECONDS,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_SANDBOX,
    PAYPAL_WEBHOOK_ID,
)
from hirepath.core.exceptions import GatewayError, WebhookVerificationError
from hirepath.core.logging_config import sanitize_log_data
from hirepath.services.payment_gateway import (
    CheckoutSession,
    PaymentGatewayClient,
    PaymentProvider,
    PaymentVerification,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"

WEBHOOK_HEADERS = (
    "paypal-auth-algo",
    "paypal-cert-url",
    "paypal-transmission-id",
    "paypal-transmission-sig",
    "paypal-transmission-time",
)

LIVE_SUBSCRIPTION_STATUSES = ("ACTIVE", "APPROVED")


def _with_query(url: str, query: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{query}"


def _approval_link(data: Dict[str, Any]) -> Optional[str]:
    for link in data.get("links") or []:
        if link.get("rel") in ("approve", "payer-action"):
            return link.get("href")
    return None


def _capture_id(order: Dict[str, Any]) -> Optional[str]:
    try:
        return order["purchase_units"][0]["payments"]["captures"][0]["id"]
    except (KeyError, IndexError, TypeError):
        return None


class PayPalGatewayClient(PaymentGatewayClient):
    provider = PaymentProvider.PAYPAL
    reference_keys = ("paypal_order_id", "paypal_subscription_id")

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        webhook_id: Optional[str] = None,
        sandbox: bool = PAYPAL_SANDBOX,
        session: Optional[requests.Session] = None,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
    ):
        self.client_id = client_id or PAYPAL_CLIENT_ID
        self.client_secret = client_secret or PAYPAL_CLIENT_SECRET
        self.webhook_id = webhook_id or PAYPAL_WEBHOOK_ID
        self.base_url = SANDBOX_URL if sandbox else LIVE_URL
        self.session = session or requests.Session()
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _get_access_token(self) -> str:
        """OAuth2 client-credentials token, cached until shortly before expiry."""
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        if not self.client_id or not self.client_secret:
            raise GatewayError("PayPal is not configured", provider="paypal", status_code=500)

        try:
            response = self.session.post(
                f"{self.base_url}/v1/oauth2/token",
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"PayPal token request failed: {e}")
            raise GatewayError("PayPal is unreachable", provider="paypal", retryable=True)

        if response.status_code != 200:
            logger.error(f"PayPal token request rejected: status={response.status_code}")
            raise GatewayError(
                "PayPal authentication failed",
                provider="paypal",
                retryable=response.status_code >= 500,
                status_code=None if response.status_code >= 500 else 500,
            )

        token_data = response.json()
        self._access_token = token_data.get("access_token")
        if not self._access_token:
            raise GatewayError("No access_token in PayPal response", provider="paypal", retryable=True)
        self._token_expires_at = time.time() + int(token_data.get("expires_in", 300)) - 60
        return self._access_token

    def _request(self, method: str, path: str, action: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"PayPal {action} request failed: {e}")
            raise GatewayError(f"PayPal {action} failed: gateway unreachable", provider="paypal", retryable=True)

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message") or body.get("error_description") or f"HTTP {response.status_code}"
            logger.error(
                f"PayPal {action} rejected: status={response.status_code}, "
                f"body={sanitize_log_data(body) if isinstance(body, dict) else body}"
            )
            raise GatewayError(
                f"PayPal {action} failed: {message}",
                provider="paypal",
                retryable=response.status_code >= 500,
            )

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    # ------------------------------------------------------------------
    # Gateway operations
    # ------------------------------------------------------------------

    def ensure_plan(self, plan) -> Optional[str]:
        """
        Create the catalog product and billing plan for a recurring plan.

        One-time plans are charged through Orders and need nothing on the
        PayPal side, so None is returned for them.
        """
        if plan.is_one_time():
            return None
        if plan.external_paypal_plan_id:
            return plan.external_paypal_plan_id

        product = self._request("POST", "/v1/catalogs/products", "product creation", {
            "name": plan.name,
            "description": (plan.description or plan.name)[:256],
            "type": "SERVICE",
            "category": "SOFTWARE",
        })
        billing_plan = self._request("POST", "/v1/billing/plans", "plan creation", {
            "product_id": product["id"],
            "name": plan.name,
            "status": "ACTIVE",
            "billing_cycles": [{
                "frequency": {
                    "interval_unit": (plan.interval_unit or "MONTH").upper(),
                    "interval_count": plan.interval_count or 1,
                },
                "tenure_type": "REGULAR",
                "sequence": 1,
                "total_cycles": 0,
                "pricing_scheme": {
                    "fixed_price": {"value": f"{Decimal(str(plan.price)):.2f}", "currency_code": plan.currency},
                },
            }],
            "payment_preferences": {
                "auto_bill_outstanding": True,
                "payment_failure_threshold": 3,
            },
        })

        plan.external_paypal_plan_id = billing_plan["id"]
        logger.info(f"Created PayPal billing plan: plan_id={plan.id}, paypal_plan_id={billing_plan['id']}")
        return billing_plan["id"]

    def create_checkout(self, employer, plan, callback_url: str, trial_days: int = 0) -> CheckoutSession:
        custom_id = json.dumps({"employer_id": employer.id, "plan_id": plan.id})
        return_url = _with_query(callback_url, "gateway=paypal")
        cancel_url = _with_query(callback_url, "gateway=paypal&cancelled=1")

        if plan.is_recurring():
            body = {
                "plan_id": self.ensure_plan(plan),
                "custom_id": custom_id,
                "application_context": {
                    "brand_name": APP_NAME,
                    "user_action": "SUBSCRIBE_NOW",
                    "return_url": return_url,
                    "cancel_url": cancel_url,
                },
            }
            email = employer.company_email or (employer.user.email if employer.user else None)
            if email:
                body["subscriber"] = {"email_address": email}
            if trial_days:
                # First charge is deferred until the trial ends
                start = datetime.utcnow() + timedelta(days=trial_days)
                body["start_time"] = start.strftime("%Y-%m-%dT%H:%M:%SZ")
            data = self._request("POST", "/v1/billing/subscriptions", "subscription creation", body)
            subscription_id = data.get("id")
        else:
            data = self._request("POST", "/v2/checkout/orders", "order creation", {
                "intent": "CAPTURE",
                "purchase_units": [{
                    "reference_id": f"plan_{plan.id}",
                    "description": plan.name,
                    "custom_id": custom_id,
                    "amount": {
                        "currency_code": plan.currency,
                        "value": f"{Decimal(str(plan.price)):.2f}",
                    },
                }],
                "application_context": {
                    "brand_name": APP_NAME,
                    "return_url": return_url,
                    "cancel_url": cancel_url,
                },
            })
            subscription_id = None

        approval_url = _approval_link(data)
        if not data.get("id") or not approval_url:
            raise GatewayError("PayPal did not return an approval link", provider="paypal", retryable=True)

        logger.info(f"Created PayPal checkout: employer_id={employer.id}, plan_id={plan.id}, reference={data['id']}")
        return CheckoutSession(
            reference_id=data["id"],
            redirect_url=approval_url,
            subscription_id=subscription_id,
            status=data.get("status"),
        )

    def verify_payment(self, reference: str) -> PaymentVerification:
        """
        Confirm an order (``paypal_order_id``) or billing subscription (``I-...``).

        APPROVED orders are captured here; a COMPLETED order is reported as
        paid without capturing again.
        """
        if reference.startswith("I-"):
            data = self._request("GET", f"/v1/billing/subscriptions/{reference}", "subscription lookup")
            status = data.get("status")
            success = status in LIVE_SUBSCRIPTION_STATUSES
            return PaymentVerification(
                success=success,
                message="Payment verified" if success else f"Subscription is {status}",
                reference=reference,
                transaction_id=reference,
                subscription_id=reference,
                status=status,
            )

        order = self._request("GET", f"/v2/checkout/orders/{reference}", "order lookup")
        if order.get("status") == "APPROVED":
            try:
                order = self._request("POST", f"/v2/checkout/orders/{reference}/capture", "order capture", {})
            except GatewayError as e:
                if e.retryable:
                    raise
                # Someone else may have captured it first
                order = self._request("GET", f"/v2/checkout/orders/{reference}", "order lookup")

        status = order.get("status")
        success = status == "COMPLETED"
        return PaymentVerification(
            success=success,
            message="Payment verified" if success else f"Order status is {status}",
            reference=reference,
            transaction_id=_capture_id(order) or order.get("id"),
            status=status,
        )

    def _subscription_action(self, subscription_id: str, action: str, reason: str, label: str):
        self._request(
            "POST",
            f"/v1/billing/subscriptions/{subscription_id}/{action}",
            label,
            {"reason": reason or f"{label.capitalize()} requested by employer"},
        )
        logger.info(f"PayPal subscription {subscription_id}: {label} done")

    def cancel_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._subscription_action(subscription_id, "cancel", reason, "cancellation")

    def suspend_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._subscription_action(subscription_id, "suspend", reason, "suspension")

    def resume_subscription(self, subscription_id: str, reason: str = "") -> None:
        self._subscription_action(subscription_id, "activate", reason, "reactivation")

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        lowered = {k.lower(): v for k, v in headers.items()}
        missing = [name for name in WEBHOOK_HEADERS if not lowered.get(name)]
        if missing:
            raise WebhookVerificationError(f"Missing PayPal headers: {', '.join(missing)}", provider="paypal")
        if not self.webhook_id:
            raise WebhookVerificationError("PayPal webhook id is not configured", provider="paypal")

        try:
            event = json.loads(payload)
        except ValueError:
            raise WebhookVerificationError("Malformed PayPal payload", provider="paypal")

        try:
            result = self._request("POST", "/v1/notifications/verify-webhook-signature", "webhook verification", {
                "auth_algo": lowered["paypal-auth-algo"],
                "cert_url": lowered["paypal-cert-url"],
                "transmission_id": lowered["paypal-transmission-id"],
                "transmission_sig": lowered["paypal-transmission-sig"],
                "transmission_time": lowered["paypal-transmission-time"],
                "webhook_id": self.webhook_id,
                "webhook_event": event,
            })
        except GatewayError as e:
            raise WebhookVerificationError(f"PayPal signature check unavailable: {e.message}", provider="paypal")

        if result.get("verification_status") != "SUCCESS":
            raise WebhookVerificationError("Invalid PayPal signature", provider="paypal")

        return WebhookEvent(
            provider=self.provider,
            event_id=event.get("id"),
            event_type=event.get("event_type") or "",
            resource=event.get("resource") or {},
        )
