"""
Tests for the Stripe adapter with the SDK calls patched out.
"""
from types import SimpleNamespace

import pytest
import stripe

from hirepath.core.exceptions import GatewayError
from hirepath.services.stripe_service import StripeGatewayClient


@pytest.fixture
def client():
    return StripeGatewayClient(api_key="sk_test_123", webhook_secret="whsec_test")


def test_verify_paid_checkout_session(client, monkeypatch):
    def retrieve(reference, **kwargs):
        assert kwargs["api_key"] == "sk_test_123"
        return SimpleNamespace(id=reference, payment_status="paid", payment_intent="pi_1", subscription=None)

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)

    result = client.verify_payment("sess_123")

    assert result.success is True
    assert result.to_dict() == {"success": True, "message": "Payment verified"}
    assert result.transaction_id == "pi_1"


def test_verify_unpaid_checkout_session(client, monkeypatch):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "retrieve",
        lambda reference, **kwargs: SimpleNamespace(id=reference, payment_status="unpaid",
                                                    payment_intent=None, subscription=None),
    )

    result = client.verify_payment("sess_123")

    assert result.success is False
    assert result.message == "Payment status is unpaid"


def test_verify_recurring_subscription(client, monkeypatch):
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda reference, **kwargs: SimpleNamespace(id=reference, status="trialing", latest_invoice="in_1"),
    )

    result = client.verify_payment("sub_123")

    assert result.success is True
    assert result.subscription_id == "sub_123"


def test_connection_error_is_retryable(client, monkeypatch):
    def retrieve(reference, **kwargs):
        raise stripe.APIConnectionError("Network is unreachable")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)

    with pytest.raises(GatewayError) as exc:
        client.verify_payment("sess_123")

    assert exc.value.retryable is True
    assert exc.value.status_code == 502


def test_invalid_request_is_not_retryable(client, monkeypatch):
    def retrieve(reference, **kwargs):
        raise stripe.InvalidRequestError("No such checkout.session", "id", http_status=404)

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)

    with pytest.raises(GatewayError) as exc:
        client.verify_payment("sess_missing")

    assert exc.value.retryable is False
    assert exc.value.status_code == 400


def test_create_checkout_for_recurring_plan_with_trial(client, factory, monkeypatch):
    employer = factory.employer()
    plan = factory.plan(payment_type="recurring", interval_unit="MONTH", price=29)
    captured = {}

    monkeypatch.setattr(stripe.Product, "create", lambda **kwargs: SimpleNamespace(id="prod_1"))

    def create_price(**kwargs):
        captured["price"] = kwargs
        return SimpleNamespace(id="price_1")

    def create_session(**kwargs):
        captured["session"] = kwargs
        return SimpleNamespace(id="cs_1", url="https://checkout.stripe.com/c/cs_1", subscription=None, status="open")

    monkeypatch.setattr(stripe.Price, "create", create_price)
    monkeypatch.setattr(stripe.checkout.Session, "create", create_session)

    checkout = client.create_checkout(employer, plan, "https://app.example/cb", trial_days=3)

    assert checkout.reference_id == "cs_1"
    assert checkout.redirect_url == "https://checkout.stripe.com/c/cs_1"
    assert captured["price"]["unit_amount"] == 2900
    assert captured["price"]["recurring"] == {"interval": "month", "interval_count": 1}
    session = captured["session"]
    assert session["mode"] == "subscription"
    assert session["subscription_data"]["trial_period_days"] == 3
    assert session["success_url"] == "https://app.example/cb?gateway=stripe&session_id={CHECKOUT_SESSION_ID}"
    assert session["customer_email"] == employer.company_email
    assert plan.external_stripe_price_id == "price_1"


def test_create_checkout_for_one_time_plan_reuses_price(client, factory, monkeypatch):
    employer = factory.employer()
    plan = factory.plan(external_stripe_price_id="price_existing")
    captured = {}

    def create_session(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_2", url="https://checkout.stripe.com/c/cs_2")

    monkeypatch.setattr(stripe.checkout.Session, "create", create_session)

    client.create_checkout(employer, plan, "https://app.example/cb?tab=billing")

    assert captured["mode"] == "payment"
    assert captured["line_items"] == [{"price": "price_existing", "quantity": 1}]
    assert "subscription_data" not in captured
    assert captured["cancel_url"] == "https://app.example/cb?tab=billing&gateway=stripe&cancelled=1"


def test_cancel_subscription_error(client, monkeypatch):
    def cancel(subscription_id, **kwargs):
        raise stripe.APIError("Internal error", http_status=500)

    monkeypatch.setattr(stripe.Subscription, "cancel", cancel)

    with pytest.raises(GatewayError) as exc:
        client.cancel_subscription("sub_1")

    assert exc.value.retryable is True


def test_unconfigured_client(client):
    client.api_key = None

    with pytest.raises(GatewayError) as exc:
        client.verify_payment("sess_1")

    assert exc.value.status_code == 500


def test_reference_from_payload(client):
    assert client.reference_from_payload({"session_id": "cs_9"}) == "cs_9"
    assert client.reference_from_payload({"subscription_id": "sub_9"}) == "sub_9"
    assert client.reference_from_payload(None) is None
