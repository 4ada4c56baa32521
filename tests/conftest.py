"""
Shared fixtures: in-memory SQLite database, model factories and a fake
payment gateway that records calls.
"""
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hirepath.core.exceptions import WebhookVerificationError
from hirepath.core.security import create_access_token
from hirepath.db.base import Base
from hirepath.db.models import (
    Candidate,
    Employer,
    Job,
    JobApplication,
    Resume,
    Subscription,
    SubscriptionPlan,
    User,
)
from hirepath.services.payment_gateway import (
    CheckoutSession,
    PaymentGatewayClient,
    PaymentProvider,
    PaymentVerification,
    WebhookEvent,
)


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=test_engine)


class FakeGatewayClient(PaymentGatewayClient):
    """
    In-memory gateway. References in ``paid`` verify successfully; setting
    ``fail_with`` makes every remote call raise that exception.
    """

    def __init__(self, provider=PaymentProvider.STRIPE):
        self.provider = provider
        if provider is PaymentProvider.STRIPE:
            self.reference_keys = ("session_id", "subscription_id")
        else:
            self.reference_keys = ("paypal_order_id", "paypal_subscription_id")
        self.calls = []
        self.paid = set()
        self.subscription_ids = {}
        self.fail_with = None
        self._counter = 0

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    def call_names(self):
        return [call[0] for call in self.calls]

    def ensure_plan(self, plan):
        self._call("ensure_plan", plan.id)
        return f"price_{plan.id}"

    def create_checkout(self, employer, plan, callback_url, trial_days=0):
        self._call("create_checkout", employer.id, plan.id, callback_url, trial_days)
        self._counter += 1
        reference = f"sess_{self._counter}"
        return CheckoutSession(reference_id=reference, redirect_url=f"https://pay.example/{reference}")

    def verify_payment(self, reference):
        self._call("verify_payment", reference)
        success = reference in self.paid
        return PaymentVerification(
            success=success,
            message="Payment verified" if success else "Payment not completed",
            reference=reference,
            transaction_id=f"txn_{reference}" if success else None,
            subscription_id=self.subscription_ids.get(reference),
        )

    def cancel_subscription(self, subscription_id, reason=""):
        self._call("cancel_subscription", subscription_id)

    def suspend_subscription(self, subscription_id, reason=""):
        self._call("suspend_subscription", subscription_id)

    def resume_subscription(self, subscription_id, reason=""):
        self._call("resume_subscription", subscription_id)

    def parse_webhook(self, payload, headers):
        if headers.get("x-fake-signature") != "valid":
            raise WebhookVerificationError("Invalid signature", provider=self.provider.value)
        event = json.loads(payload)
        return WebhookEvent(
            provider=self.provider,
            event_id=event.get("id"),
            event_type=event["type"],
            resource=event.get("resource", {}),
        )


@pytest.fixture
def gateway():
    return FakeGatewayClient(PaymentProvider.STRIPE)


@pytest.fixture
def gateway_factory(gateway):
    return lambda provider: gateway


class Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def employer(self, id=None, company_name="Acme Corp"):
        n = self._next()
        user = self._save(User(full_name=f"Employer {n}", email=f"employer{n}@example.com", user_type="employer"))
        return self._save(Employer(id=id, user_id=user.id, company_name=company_name, company_email=user.email))

    def candidate(self, id=None, full_name=None):
        n = self._next()
        user = self._save(User(full_name=full_name or f"Candidate {n}", email=f"candidate{n}@example.com",
                               user_type="candidate"))
        return self._save(Candidate(id=id, user_id=user.id))

    def plan(self, **overrides):
        data = dict(
            name="Starter",
            price=Decimal("49.00"),
            currency="USD",
            duration_days=30,
            job_posts_limit=5,
            featured_jobs_limit=2,
            resume_views_limit=20,
            payment_type="one_time",
            is_active=True,
        )
        data.update(overrides)
        return self._save(SubscriptionPlan(**data))

    def job(self, employer, id=None, title="Backend Engineer"):
        return self._save(Job(id=id, employer_id=employer.id, title=title, is_active=True))

    def resume(self, candidate):
        return self._save(Resume(candidate_id=candidate.id, title="CV", file_path=f"resumes/{candidate.id}.pdf"))

    def application(self, job, candidate, id=None, status="applied"):
        return self._save(JobApplication(id=id, job_id=job.id, candidate_id=candidate.id, status=status))

    def subscription(self, employer, plan, **overrides):
        from datetime import datetime, timedelta
        now = datetime.utcnow()
        data = dict(
            employer_id=employer.id,
            subscription_plan_id=plan.id,
            start_date=now,
            end_date=now + timedelta(days=30),
            amount_paid=plan.price,
            currency=plan.currency,
            payment_type=plan.payment_type,
            payment_provider="stripe",
            job_posts_left=plan.job_posts_limit,
            featured_jobs_left=plan.featured_jobs_limit,
            cv_downloads_left=plan.resume_views_limit,
            is_active=True,
            is_suspended=False,
            activated_at=now,
        )
        data.update(overrides)
        return self._save(Subscription(**data))


@pytest.fixture
def factory(db):
    return Factory(db)


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture
def client(db, gateway_factory):
    """TestClient bound to the test database and the fake gateway."""
    from hirepath.main import app
    from hirepath.db.session import get_db
    from hirepath.core.service_dependency import get_gateway_factory

    def override_get_db():
        session = TestSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_factory] = lambda: gateway_factory
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth():
    return auth_headers
