"""
Payment gateway abstraction.

The subscription service only talks to ``PaymentGatewayClient``; the Stripe
and PayPal adapters implement it and are picked by ``get_gateway_client``.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from hirepath.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"

    @classmethod
    def parse(cls, value) -> "PaymentProvider":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported payment gateway: {value}",
                errors={"gateway": "must be one of stripe, paypal"},
            )


@dataclass
class CheckoutSession:
    reference_id: str
    redirect_url: str
    subscription_id: Optional[str] = None
    status: Optional[str] = None


@dataclass
class PaymentVerification:
    success: bool
    message: str
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class WebhookEvent:
    provider: PaymentProvider
    event_id: Optional[str]
    event_type: str
    resource: Dict[str, Any] = field(default_factory=dict)

    @property
    def resource_id(self) -> Optional[str]:
        return self.resource.get("id")


class PaymentGatewayClient(ABC):
    """Adapter over one payment processor."""

    provider: PaymentProvider
    # Keys read from client-submitted payment data, most specific first
    reference_keys: tuple = ()

    def reference_from_payload(self, data: Optional[Mapping[str, Any]]) -> Optional[str]:
        """Pick the gateway reference out of a verification/subscribe payload."""
        if not data:
            return None
        for key in self.reference_keys + ("reference",):
            value = data.get(key)
            if value:
                return str(value)
        return None

    @abstractmethod
    def ensure_plan(self, plan) -> Optional[str]:
        """Create or reuse the gateway-side product/price for ``plan``."""

    @abstractmethod
    def create_checkout(self, employer, plan, callback_url: str, trial_days: int = 0) -> CheckoutSession:
        """Start a hosted checkout and return where to redirect the employer."""

    @abstractmethod
    def verify_payment(self, reference: str) -> PaymentVerification:
        """Confirm a checkout/order/subscription reference was paid. Must be idempotent."""

    @abstractmethod
    def cancel_subscription(self, subscription_id: str, reason: str = "") -> None:
        """Stop recurring billing. Raises GatewayError on failure."""

    @abstractmethod
    def suspend_subscription(self, subscription_id: str, reason: str = "") -> None:
        """Pause recurring billing. Raises GatewayError on failure."""

    @abstractmethod
    def resume_subscription(self, subscription_id: str, reason: str = "") -> None:
        """Resume paused billing. Raises GatewayError on failure."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """Verify the signature and decode the event. Raises WebhookVerificationError."""


_clients: Dict[PaymentProvider, PaymentGatewayClient] = {}


def get_gateway_client(provider) -> PaymentGatewayClient:
    """Factory keyed by the gateway enum; clients are created once per process."""
    provider = PaymentProvider.parse(provider)
    client = _clients.get(provider)
    if client is None:
        if provider is PaymentProvider.STRIPE:
            from hirepath.services.stripe_service import StripeGatewayClient
            client = StripeGatewayClient()
        else:
            from hirepath.services.paypal_service import PayPalGatewayClient
            client = PayPalGatewayClient()
        _clients[provider] = client
        logger.debug(f"Initialized {provider.value} gateway client")
    return client
