"""
Tests for webhook verification and the state changes each event applies.
"""
import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone

import pytest

from hirepath.db.models import Notification, Subscription
from hirepath.services import subscription_ledger as ledger
from hirepath.services.paypal_service import PayPalGatewayClient
from hirepath.services.stripe_service import StripeGatewayClient
from hirepath.services.subscription_service import SubscriptionService

from paypal_fakes import FakeResponse, FakeSession

VALID = {"x-fake-signature": "valid"}


def event(event_type, resource, event_id="evt_1"):
    return json.dumps({"id": event_id, "type": event_type, "resource": resource}).encode()


@pytest.fixture
def service(db, gateway_factory):
    return SubscriptionService(db, gateway_factory=gateway_factory)


@pytest.fixture
def pending(db, factory):
    employer = factory.employer()
    plan = factory.plan(payment_type="recurring", interval_unit="MONTH", resume_views_limit=15)
    subscription = ledger.create_pending(db, employer.id, plan, "stripe", payment_reference="cs_test_1")
    db.commit()
    return subscription


def test_checkout_completed_activates_pending(db, service, pending):
    payload = event("checkout.session.completed", {
        "id": "cs_test_1",
        "payment_status": "paid",
        "subscription": "sub_abc",
    })

    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(pending)
    assert pending.is_active is True
    assert pending.subscription_id == "sub_abc"
    assert pending.cv_downloads_left == 15
    assert pending.activated_at is not None


def test_redelivered_checkout_event_is_idempotent(db, service, pending):
    payload = event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "paid"})
    assert service.handle_webhook("stripe", payload, VALID) is True
    assert service.decrement_cv_downloads_left(pending.employer) is True

    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(pending)
    assert pending.cv_downloads_left == 14
    assert db.query(Notification).filter(Notification.type == "subscription_activated").count() == 1


def test_unpaid_checkout_does_not_activate(db, service, pending):
    payload = event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "unpaid"})

    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(pending)
    assert pending.is_active is False
    assert pending.external_status == "unpaid"


def test_invalid_signature_touches_nothing(db, service, pending, gateway):
    payload = event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "paid"})

    assert service.handle_webhook("stripe", payload, {"x-fake-signature": "forged"}) is False

    db.refresh(pending)
    assert pending.is_active is False


def test_unknown_reference_returns_false(service, pending):
    payload = event("checkout.session.completed", {"id": "cs_missing", "payment_status": "paid"})

    assert service.handle_webhook("stripe", payload, VALID) is False


def test_unhandled_event_type_is_acknowledged(service, pending):
    assert service.handle_webhook("stripe", event("charge.refunded", {"id": "ch_1"}), VALID) is True


def test_unknown_gateway_is_rejected(service):
    assert service.handle_webhook("square", b"{}", VALID) is False


def test_invoice_payment_failed_suspends(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(employer, factory.plan(payment_type="recurring"), subscription_id="sub_77")

    payload = event("invoice.payment_failed", {"id": "in_1", "subscription": "sub_77"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.is_suspended is True
    assert subscription.external_status == "past_due"
    types = {n.type for n in db.query(Notification).all()}
    assert {"subscription_suspended", "payment_failed"} <= types


def test_invoice_paid_resumes_suspended_subscription(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(
        employer, factory.plan(payment_type="recurring"), subscription_id="sub_77", is_suspended=True
    )

    payload = event("invoice.paid", {
        "id": "in_2",
        "payment_intent": "pi_2",
        "parent": {"subscription_details": {"subscription": "sub_77"}},
    })
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.is_suspended is False
    assert subscription.transaction_id == "pi_2"


def test_subscription_deleted_cancels(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(employer, factory.plan(payment_type="recurring"), subscription_id="sub_88")

    payload = event("customer.subscription.deleted", {"id": "sub_88", "status": "canceled"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.is_active is False
    assert subscription.cancelled_at is not None


def test_subscription_updated_records_next_billing(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(employer, factory.plan(payment_type="recurring"), subscription_id="sub_99")

    payload = event("customer.subscription.updated", {
        "id": "sub_99",
        "status": "active",
        "current_period_end": 1767225600,
    })
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.next_billing_date == datetime(2026, 1, 1)
    assert subscription.is_active is True


def test_cancelled_subscription_is_not_revived_by_late_event(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(employer, factory.plan(payment_type="recurring"), subscription_id="sub_55")
    ledger.mark_cancelled(subscription)
    db.commit()

    payload = event("customer.subscription.updated", {"id": "sub_55", "status": "active"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.is_active is False


def test_handler_error_rolls_back_and_returns_false(service, pending, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(ledger, "find_by_payment_reference", explode)
    payload = event("checkout.session.completed", {"id": "cs_test_1", "payment_status": "paid"})

    assert service.handle_webhook("stripe", payload, VALID) is False


# ----------------------------------------------------------------------
# Real signature checks
# ----------------------------------------------------------------------

def stripe_signature(payload: str, secret: str, timestamp=None) -> str:
    timestamp = timestamp or int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def stripe_service(db):
    client = StripeGatewayClient(api_key="sk_test_123", webhook_secret="whsec_test")
    return SubscriptionService(db, gateway_factory=lambda provider: client)


def test_stripe_signed_webhook_activates(db, stripe_service, pending):
    payload = json.dumps({
        "id": "evt_live",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_1", "payment_status": "paid", "payment_intent": "pi_1"}},
    })
    headers = {"Stripe-Signature": stripe_signature(payload, "whsec_test")}

    assert stripe_service.handle_webhook("stripe", payload.encode(), headers) is True

    db.refresh(pending)
    assert pending.is_active is True
    assert pending.transaction_id == "pi_1"


def test_stripe_tampered_payload_is_rejected(db, stripe_service, pending):
    original = json.dumps({
        "id": "evt_live",
        "type": "checkout.session.completed",
        "data": {"object": {"id": "cs_test_1", "payment_status": "unpaid"}},
    })
    tampered = original.replace("unpaid", "paid")
    headers = {"Stripe-Signature": stripe_signature(original, "whsec_test")}

    assert stripe_service.handle_webhook("stripe", tampered.encode(), headers) is False

    db.refresh(pending)
    assert pending.is_active is False


def test_stripe_webhook_without_signature_header(stripe_service, pending):
    assert stripe_service.handle_webhook("stripe", b"{}", {}) is False


PAYPAL_HEADERS = {
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-CERT-URL": "https://api.paypal.com/v1/notifications/certs/CERT-1",
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-SIG": "sig",
    "PAYPAL-TRANSMISSION-TIME": "2026-01-01T00:00:00Z",
}


def paypal_service(db, verification_status):
    session = FakeSession({
        ("POST", "/v1/notifications/verify-webhook-signature"): FakeResponse(
            200, {"verification_status": verification_status}
        ),
    })
    client = PayPalGatewayClient(
        client_id="client", client_secret="secret", webhook_id="WH-1", sandbox=True, session=session
    )
    return SubscriptionService(db, gateway_factory=lambda provider: client), session


@pytest.fixture
def paypal_pending(db, factory):
    employer = factory.employer()
    plan = factory.plan(payment_type="recurring", interval_unit="MONTH")
    subscription = ledger.create_pending(
        db, employer.id, plan, "paypal", payment_reference="I-SUB1", subscription_id="I-SUB1"
    )
    db.commit()
    return subscription


def paypal_event(event_type, resource):
    return json.dumps({"id": "WH-EVT-1", "event_type": event_type, "resource": resource}).encode()


def test_paypal_verified_activation(db, paypal_pending):
    service, session = paypal_service(db, "SUCCESS")
    payload = paypal_event("BILLING.SUBSCRIPTION.ACTIVATED", {
        "id": "I-SUB1",
        "status": "ACTIVE",
        "billing_info": {"next_billing_time": "2026-02-01T10:00:00Z"},
    })

    assert service.handle_webhook("paypal", payload, PAYPAL_HEADERS) is True

    db.refresh(paypal_pending)
    assert paypal_pending.is_active is True
    assert paypal_pending.next_billing_date == datetime(2026, 2, 1, 10, 0, 0)
    verify_body = session.requests[-1][2]
    assert verify_body["webhook_id"] == "WH-1"
    assert verify_body["transmission_id"] == "tx-1"


def test_paypal_failed_verification_touches_nothing(db, paypal_pending):
    service, _ = paypal_service(db, "FAILURE")
    payload = paypal_event("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-SUB1", "status": "ACTIVE"})

    assert service.handle_webhook("paypal", payload, PAYPAL_HEADERS) is False

    db.refresh(paypal_pending)
    assert paypal_pending.is_active is False
    assert paypal_pending.activated_at is None


def test_paypal_missing_headers_skip_remote_check(db, paypal_pending):
    service, session = paypal_service(db, "SUCCESS")
    payload = paypal_event("BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-SUB1"})

    assert service.handle_webhook("paypal", payload, {"PAYPAL-AUTH-ALGO": "SHA256withRSA"}) is False
    assert session.requests == []


def test_paypal_capture_completed_activates_order(db, factory):
    employer = factory.employer()
    plan = factory.plan()
    subscription = ledger.create_pending(db, employer.id, plan, "paypal", payment_reference="ORDER-1")
    db.commit()
    service, _ = paypal_service(db, "SUCCESS")

    payload = paypal_event("PAYMENT.CAPTURE.COMPLETED", {
        "id": "CAPTURE-1",
        "status": "COMPLETED",
        "supplementary_data": {"related_ids": {"order_id": "ORDER-1"}},
    })
    assert service.handle_webhook("paypal", payload, PAYPAL_HEADERS) is True

    db.refresh(subscription)
    assert subscription.is_active is True
    assert subscription.transaction_id == "CAPTURE-1"


def test_paypal_order_approved_is_not_payment(db, factory):
    employer = factory.employer()
    subscription = ledger.create_pending(db, employer.id, factory.plan(), "paypal", payment_reference="ORDER-2")
    db.commit()
    service, _ = paypal_service(db, "SUCCESS")

    payload = paypal_event("CHECKOUT.ORDER.APPROVED", {"id": "ORDER-2", "status": "APPROVED"})
    assert service.handle_webhook("paypal", payload, PAYPAL_HEADERS) is True

    db.refresh(subscription)
    assert subscription.is_active is False
    assert subscription.external_status == "APPROVED"


def test_stripe_payload_that_is_not_utf8_is_rejected(stripe_service, pending):
    headers = {"Stripe-Signature": stripe_signature("{}", "whsec_test")}

    assert stripe_service.handle_webhook("stripe", b"\xff\xfe{", headers) is False


def test_unexpected_parse_error_returns_false(service, gateway, monkeypatch):
    def explode(payload, headers):
        raise RuntimeError("parser bug")

    monkeypatch.setattr(gateway, "parse_webhook", explode)

    assert service.handle_webhook("stripe", b"{}", VALID) is False


# ----------------------------------------------------------------------
# Renewals
# ----------------------------------------------------------------------

def as_timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


@pytest.fixture
def near_period_end(factory):
    employer = factory.employer()
    start = datetime.utcnow() - timedelta(days=29)
    return factory.subscription(
        employer,
        factory.plan(payment_type="recurring", interval_unit="MONTH"),
        subscription_id="sub_r",
        start_date=start,
        end_date=start + timedelta(days=30),
    )


def test_renewal_invoice_keeps_subscription_past_period_end(db, service, near_period_end):
    payload = event("invoice.paid", {"id": "in_renew", "payment_intent": "pi_renew", "subscription": "sub_r"})

    assert service.handle_webhook("stripe", payload, VALID) is True
    assert service.expire_subscriptions(now=datetime.utcnow() + timedelta(days=2)) == 0

    db.refresh(near_period_end)
    assert near_period_end.is_active is True
    assert near_period_end.end_date > datetime.utcnow() + timedelta(days=29)
    assert near_period_end.transaction_id == "pi_renew"
    assert service.decrement_cv_downloads_left(near_period_end.employer) is True


def test_renewal_invoice_uses_line_period(db, service, near_period_end):
    period_end = (datetime.utcnow() + timedelta(days=31)).replace(microsecond=0)
    payload = event("invoice.paid", {
        "id": "in_renew",
        "subscription": "sub_r",
        "lines": {"data": [{"period": {"start": as_timestamp(datetime.utcnow()), "end": as_timestamp(period_end)}}]},
    })

    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(near_period_end)
    assert near_period_end.end_date == period_end
    assert near_period_end.next_billing_date == period_end


def test_subscription_updated_extends_period_from_items(db, service, near_period_end):
    period_end = (datetime.utcnow() + timedelta(days=30)).replace(microsecond=0)
    payload = event("customer.subscription.updated", {
        "id": "sub_r",
        "status": "active",
        "items": {"data": [{"current_period_end": as_timestamp(period_end)}]},
    })

    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(near_period_end)
    assert near_period_end.end_date == period_end


def test_renewal_revives_lapsed_subscription(db, service, near_period_end):
    near_period_end.end_date = datetime.utcnow() - timedelta(hours=1)
    db.commit()
    assert service.expire_subscriptions() == 1

    payload = event("invoice.paid", {"id": "in_late", "subscription": "sub_r"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(near_period_end)
    assert near_period_end.is_active is True
    assert service.get_active_subscription(near_period_end.employer).id == near_period_end.id


def test_renewal_does_not_revive_replaced_subscription(db, factory, service, near_period_end):
    near_period_end.is_active = False
    db.commit()
    replacement = factory.subscription(near_period_end.employer, factory.plan(name="Pro"))

    payload = event("invoice.paid", {"id": "in_old", "subscription": "sub_r"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(near_period_end)
    assert near_period_end.is_active is False
    assert service.get_active_subscription(replacement.employer).id == replacement.id


def test_one_time_subscription_is_not_extended(db, factory, service):
    employer = factory.employer()
    subscription = factory.subscription(employer, factory.plan(), subscription_id="sub_once")
    end_date = subscription.end_date

    payload = event("invoice.paid", {"id": "in_once", "subscription": "sub_once"})
    assert service.handle_webhook("stripe", payload, VALID) is True

    db.refresh(subscription)
    assert subscription.end_date == end_date


def test_paypal_sale_completed_renews_period(db, factory):
    employer = factory.employer()
    start = datetime.utcnow() - timedelta(days=29)
    subscription = factory.subscription(
        employer,
        factory.plan(payment_type="recurring", interval_unit="MONTH"),
        payment_provider="paypal",
        subscription_id="I-RENEW",
        start_date=start,
        end_date=start + timedelta(days=30),
    )
    service, _ = paypal_service(db, "SUCCESS")

    payload = paypal_event("PAYMENT.SALE.COMPLETED", {"id": "SALE-2", "billing_agreement_id": "I-RENEW"})
    assert service.handle_webhook("paypal", payload, PAYPAL_HEADERS) is True

    db.refresh(subscription)
    assert subscription.transaction_id == "SALE-2"
    assert subscription.end_date > datetime.utcnow() + timedelta(days=29)
    assert service.expire_subscriptions(now=datetime.utcnow() + timedelta(days=2)) == 0
