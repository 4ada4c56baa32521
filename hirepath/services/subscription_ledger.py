"""
Subscription ledger: every write to a Subscription row goes through here.

Functions flush or execute but never commit; the caller owns the
transaction. Quota counters and activation are changed with conditional
UPDATE statements so concurrent requests cannot double-spend or
double-grant.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from hirepath.db.models.subscription import Subscription
from hirepath.db.models.subscription_plan import SubscriptionPlan

logger = logging.getLogger(__name__)

QUOTA_COUNTERS = ("job_posts_left", "featured_jobs_left", "cv_downloads_left")


@dataclass(frozen=True)
class QuotaGrant:
    """Quota snapshot copied from a plan onto a subscription at activation."""
    job_posts_left: int
    featured_jobs_left: int
    cv_downloads_left: int

    @classmethod
    def from_plan(cls, plan: SubscriptionPlan) -> "QuotaGrant":
        return cls(
            job_posts_left=plan.job_posts_limit or 0,
            featured_jobs_left=plan.featured_jobs_limit or 0,
            cv_downloads_left=plan.resume_views_limit or 0,
        )

    def as_values(self) -> dict:
        return {
            "job_posts_left": self.job_posts_left,
            "featured_jobs_left": self.featured_jobs_left,
            "cv_downloads_left": self.cv_downloads_left,
        }


def period_for(plan: SubscriptionPlan, start: datetime, trial_days: int = 0) -> Optional[datetime]:
    """End of a subscription period; None when the plan never expires."""
    if not plan.duration_days:
        return None
    return start + timedelta(days=plan.duration_days + trial_days)


def create_pending(
    db: Session,
    employer_id: int,
    plan: SubscriptionPlan,
    provider: Optional[str],
    payment_reference: Optional[str] = None,
    subscription_id: Optional[str] = None,
    receipt_path: Optional[str] = None,
    is_trial: bool = False,
) -> Subscription:
    """Add an inactive, zero-quota row tagged with the gateway reference."""
    subscription = Subscription(
        employer_id=employer_id,
        subscription_plan_id=plan.id,
        amount_paid=plan.price,
        currency=plan.currency,
        payment_type=plan.payment_type,
        payment_provider=provider,
        payment_reference=payment_reference,
        subscription_id=subscription_id,
        receipt_path=receipt_path,
        is_active=False,
        is_suspended=False,
        is_trial=is_trial,
        job_posts_left=0,
        featured_jobs_left=0,
        cv_downloads_left=0,
        external_status="pending",
    )
    db.add(subscription)
    db.flush()
    logger.info(
        f"Pending subscription created: id={subscription.id}, employer_id={employer_id}, "
        f"plan_id={plan.id}, provider={provider}, reference={payment_reference}"
    )
    return subscription


def activate(
    db: Session,
    subscription: Subscription,
    plan: SubscriptionPlan,
    transaction_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Grant the plan's quotas and start the period, exactly once.

    Returns:
        True if this call activated the row, False if it was already
        activated (or cancelled) by someone else
    """
    now = now or datetime.utcnow()
    trial_days = plan.trial_days() if subscription.is_trial else 0

    values = dict(
        QuotaGrant.from_plan(plan).as_values(),
        subscription_plan_id=plan.id,
        is_active=True,
        is_suspended=False,
        start_date=now,
        end_date=period_for(plan, now, trial_days),
        activated_at=now,
        status_updated_at=now,
        external_status="active",
    )
    if transaction_id:
        values["transaction_id"] = transaction_id
    if trial_days:
        values.update(used_trial=True, trial_end_date=now + timedelta(days=trial_days), amount_paid=0)

    db.flush()
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription.id,
            Subscription.activated_at.is_(None),
            Subscription.cancelled_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(subscription)

    activated = result.rowcount == 1
    if activated:
        logger.info(
            f"Subscription activated: id={subscription.id}, employer_id={subscription.employer_id}, "
            f"plan_id={plan.id}, end_date={subscription.end_date}"
        )
    else:
        logger.info(f"Subscription {subscription.id} already activated, nothing to do")
    return activated


def replace_plan(db: Session, subscription: Subscription, plan: SubscriptionPlan,
                 transaction_id: Optional[str] = None, now: Optional[datetime] = None) -> Subscription:
    """Swap the plan in place: new period and fresh quotas, no proration."""
    now = now or datetime.utcnow()
    for field, value in QuotaGrant.from_plan(plan).as_values().items():
        setattr(subscription, field, value)
    subscription.subscription_plan_id = plan.id
    subscription.amount_paid = plan.price
    subscription.currency = plan.currency
    subscription.payment_type = plan.payment_type
    subscription.start_date = now
    subscription.end_date = period_for(plan, now)
    subscription.is_active = True
    subscription.is_suspended = False
    subscription.is_trial = False
    subscription.activated_at = subscription.activated_at or now
    subscription.status_updated_at = now
    subscription.external_status = "active"
    if transaction_id:
        subscription.transaction_id = transaction_id
    db.flush()
    return subscription


def renew(db: Session, subscription: Subscription, period_end: Optional[datetime] = None,
          now: Optional[datetime] = None) -> bool:
    """
    Carry a paid recurring subscription into its next billing period.

    ``period_end`` is the gateway's end of the new period; without it the
    plan's duration is counted from ``now``. The end date only moves
    forward. A lapsed row comes back to life unless the employer has
    since moved to another active subscription.

    Returns:
        True if the row was renewed, False for cancelled or non-recurring rows
    """
    plan = subscription.plan
    if subscription.cancelled_at or plan is None or not plan.is_recurring():
        return False

    now = now or datetime.utcnow()
    end = period_end or period_for(plan, now)
    if end and subscription.end_date and end > subscription.end_date:
        subscription.end_date = end
    if period_end:
        subscription.next_billing_date = period_end

    if not subscription.is_active:
        superseded = (
            db.query(Subscription.id)
            .filter(
                Subscription.employer_id == subscription.employer_id,
                Subscription.id != subscription.id,
                Subscription.is_active.is_(True),
            )
            .first()
        )
        subscription.is_active = superseded is None
    subscription.status_updated_at = now
    db.flush()
    logger.info(
        f"Subscription renewed: id={subscription.id}, end_date={subscription.end_date}, "
        f"is_active={subscription.is_active}"
    )
    return True


def deactivate_others(db: Session, employer_id: int, keep_id: int, now: Optional[datetime] = None) -> int:
    """Keep at most one active subscription per employer."""
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.employer_id == employer_id,
            Subscription.id != keep_id,
            Subscription.is_active.is_(True),
        )
        .values(is_active=False, status_updated_at=now or datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info(f"Deactivated {result.rowcount} previous subscription(s) for employer_id={employer_id}")
    return result.rowcount


def consume(db: Session, subscription_id: int, counter: str) -> bool:
    """
    Atomically take one unit of ``counter``.

    A single ``UPDATE ... WHERE counter > 0`` both checks and decrements;
    the affected row count says whether a unit was available.
    """
    if counter not in QUOTA_COUNTERS:
        raise ValueError(f"Unknown quota counter: {counter}")

    column = getattr(Subscription, counter)
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription_id,
            Subscription.is_active.is_(True),
            Subscription.is_suspended.is_(False),
            column > 0,
        )
        .values({counter: column - 1})
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_transaction(subscription: Subscription, transaction_id: Optional[str]):
    if transaction_id:
        subscription.transaction_id = transaction_id


def mark_cancelled(subscription: Subscription, now: Optional[datetime] = None, external_status: str = "cancelled"):
    now = now or datetime.utcnow()
    subscription.is_active = False
    subscription.cancelled_at = now
    subscription.end_date = now
    subscription.status_updated_at = now
    subscription.external_status = external_status


def retire_pending(subscription: Subscription, now: Optional[datetime] = None):
    """
    Close a checkout row whose payment was applied to another subscription.

    Its gateway references are cleared so webhooks for that payment find
    the subscription that actually received it.
    """
    now = now or datetime.utcnow()
    subscription.payment_reference = None
    subscription.subscription_id = None
    subscription.is_active = False
    subscription.cancelled_at = now
    subscription.status_updated_at = now
    subscription.external_status = "superseded"
    logger.info(f"Pending subscription {subscription.id} superseded by a plan change")


def mark_suspended(subscription: Subscription, now: Optional[datetime] = None, external_status: str = "suspended"):
    now = now or datetime.utcnow()
    subscription.is_suspended = True
    subscription.status_updated_at = now
    subscription.external_status = external_status


def mark_resumed(subscription: Subscription, now: Optional[datetime] = None, external_status: str = "active"):
    now = now or datetime.utcnow()
    subscription.is_suspended = False
    subscription.status_updated_at = now
    subscription.external_status = external_status


def get_active_subscription(db: Session, employer_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
    """Most recently created active, unexpired, unsuspended subscription."""
    now = now or datetime.utcnow()
    return (
        db.query(Subscription)
        .filter(
            Subscription.employer_id == employer_id,
            Subscription.is_active.is_(True),
            Subscription.is_suspended.is_(False),
            or_(Subscription.end_date.is_(None), Subscription.end_date >= now),
        )
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .first()
    )


def find_by_payment_reference(db: Session, provider: str, reference: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.payment_provider == provider, Subscription.payment_reference == reference)
        .order_by(Subscription.id.desc())
        .first()
    )


def find_by_gateway_subscription_id(db: Session, provider: str, subscription_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.payment_provider == provider, Subscription.subscription_id == subscription_id)
        .order_by(Subscription.id.desc())
        .first()
    )


def find_by_reference(db: Session, provider: str, reference: str) -> Optional[Subscription]:
    """Look up by checkout/order reference first, then by recurring subscription id."""
    return (
        find_by_payment_reference(db, provider, reference)
        or find_by_gateway_subscription_id(db, provider, reference)
    )


def list_for_employer(db: Session, employer_id: int) -> List[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.employer_id == employer_id)
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all()
    )


def has_used_trial(db: Session, employer_id: int) -> bool:
    return db.query(
        db.query(Subscription)
        .filter(Subscription.employer_id == employer_id, Subscription.used_trial.is_(True))
        .exists()
    ).scalar()


def expire_lapsed(db: Session, now: Optional[datetime] = None) -> int:
    """Flip is_active off on rows whose period has ended."""
    now = now or datetime.utcnow()
    result = db.execute(
        update(Subscription)
        .where(
            Subscription.is_active.is_(True),
            Subscription.end_date.isnot(None),
            Subscription.end_date < now,
        )
        .values(is_active=False, status_updated_at=now, external_status="expired")
        .execution_options(synchronize_session=False)
    )
    return result.rowcount
