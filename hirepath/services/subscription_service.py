"""
Subscription orchestrator.

Coordinates the plan catalog, a payment gateway client and the
subscription ledger: payment links, verification, activation, quota use,
cancel/suspend/resume, trials and webhook-driven state changes.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from hirepath.core.config import FRONTEND_URL, SUBSCRIPTION_GRACE_DAYS
from hirepath.core.exceptions import (
    Forbidden,
    GatewayError,
    NotFound,
    PlanInactive,
    ValidationError,
)
from hirepath.db.models.employer import Employer
from hirepath.db.models.subscription import Subscription
from hirepath.db.models.subscription_plan import SubscriptionPlan
from hirepath.services import notification_service
from hirepath.services import subscription_ledger as ledger
from hirepath.services.payment_gateway import (
    PaymentGatewayClient,
    PaymentProvider,
    PaymentVerification,
    get_gateway_client,
)

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[PaymentProvider], PaymentGatewayClient]

DEFAULT_CALLBACK_PATH = "/employer/billing/callback"


class SubscriptionService:
    def __init__(self, db: Session, gateway_factory: GatewayFactory = get_gateway_client,
                 grace_days: int = SUBSCRIPTION_GRACE_DAYS):
        self.db = db
        self.gateway_factory = gateway_factory
        self.grace_days = grace_days

    def client_for(self, gateway) -> PaymentGatewayClient:
        return self.gateway_factory(PaymentProvider.parse(gateway))

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_plan(self, plan_id: int, require_active: bool = True) -> SubscriptionPlan:
        plan = self.db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
        if not plan:
            raise NotFound(f"Subscription plan {plan_id} not found")
        if require_active and not plan.is_active:
            raise PlanInactive(plan_id)
        return plan

    def list_active_plans(self) -> List[SubscriptionPlan]:
        return (
            self.db.query(SubscriptionPlan)
            .filter(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.is_featured.desc(), SubscriptionPlan.price.asc())
            .all()
        )

    def get_subscription(self, subscription_id: int, employer: Optional[Employer] = None) -> Subscription:
        subscription = self.db.query(Subscription).filter(Subscription.id == subscription_id).first()
        if not subscription:
            raise NotFound(f"Subscription {subscription_id} not found")
        self._check_owner(subscription, employer)
        return subscription

    def trial_days_for(self, employer: Employer, plan: SubscriptionPlan) -> int:
        """Trial length the employer is eligible for on this plan (0 once any trial was used)."""
        days = plan.trial_days()
        if not days or ledger.has_used_trial(self.db, employer.id):
            return 0
        return days

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def generate_payment_link(self, employer: Employer, plan: SubscriptionPlan, gateway,
                              callback_url: Optional[str] = None) -> Dict[str, Any]:
        """
        Start checkout for ``plan`` and record a pending subscription.

        Returns:
            redirect_url, reference_id, gateway and the local subscription id

        Raises:
            PlanInactive: plan is not purchasable
            GatewayError: the gateway call failed (no row is kept)
        """
        if not plan.is_active:
            raise PlanInactive(plan.id)

        client = self.client_for(gateway)
        trial_days = self.trial_days_for(employer, plan) if plan.is_recurring() else 0
        checkout = client.create_checkout(
            employer,
            plan,
            callback_url or f"{FRONTEND_URL}{DEFAULT_CALLBACK_PATH}",
            trial_days,
        )

        subscription = ledger.create_pending(
            self.db,
            employer.id,
            plan,
            client.provider.value,
            payment_reference=checkout.reference_id,
            subscription_id=checkout.subscription_id,
            is_trial=bool(trial_days),
        )
        self.db.commit()

        logger.info(
            f"Payment link generated: employer_id={employer.id}, plan_id={plan.id}, "
            f"gateway={client.provider.value}, reference={checkout.reference_id}"
        )
        return {
            "redirect_url": checkout.redirect_url,
            "reference_id": checkout.reference_id,
            "gateway": client.provider.value,
            "subscription_id": subscription.id,
            "trial_days": trial_days,
        }

    def verify_payment(self, reference: str, gateway) -> PaymentVerification:
        """
        Ask the gateway whether ``reference`` was paid.

        Nothing is written locally, so this can be called any number of times.
        """
        if not reference:
            raise ValidationError("Payment reference is required", errors={"reference": "required"})
        client = self.client_for(gateway)
        verification = client.verify_payment(reference)
        logger.info(
            f"Payment verification: gateway={client.provider.value}, reference={reference}, "
            f"success={verification.success}"
        )
        return verification

    def subscribe_to_plan(self, employer: Employer, plan: SubscriptionPlan, payment_data: Mapping[str, Any],
                          gateway, receipt_path: Optional[str] = None,
                          verification: Optional[PaymentVerification] = None) -> Subscription:
        """
        Turn a paid checkout into the employer's active subscription.

        The pending row is found through the gateway reference in
        ``payment_data``; without one (offline payment with a receipt) a new
        row is created. Does not verify the payment itself. If the webhook
        already activated the row it is returned unchanged.
        """
        client = self.client_for(gateway)
        provider = client.provider.value
        payment_data = payment_data or {}
        reference = client.reference_from_payload(payment_data)

        subscription = ledger.find_by_reference(self.db, provider, reference) if reference else None
        if subscription:
            self._check_owner(subscription, employer)
            if subscription.subscription_plan_id != plan.id:
                raise ValidationError(
                    "Payment reference belongs to a different plan",
                    errors={"plan_id": f"expected {subscription.subscription_plan_id}"},
                )
        else:
            if not plan.is_active:
                raise PlanInactive(plan.id)
            if not reference and not receipt_path:
                raise ValidationError(
                    "A payment reference or a receipt is required",
                    errors={"payment_data": "missing gateway reference"},
                )
            subscription = ledger.create_pending(
                self.db, employer.id, plan, provider, payment_reference=reference, receipt_path=receipt_path
            )

        if receipt_path:
            subscription.receipt_path = receipt_path
        if verification and verification.subscription_id and not subscription.subscription_id:
            subscription.subscription_id = verification.subscription_id

        transaction_id = payment_data.get("transaction_id") or (verification.transaction_id if verification else None)
        self.activate_pending(subscription, plan, transaction_id)
        return subscription

    def complete_checkout(self, employer: Employer, plan: SubscriptionPlan, payment_data: Mapping[str, Any],
                          gateway, receipt_path: Optional[str] = None) -> Subscription:
        """Verify the payment and activate the subscription in one call."""
        client = self.client_for(gateway)
        reference = client.reference_from_payload(payment_data)
        verification = self.verify_payment(reference, gateway)
        if not verification.success:
            raise GatewayError(verification.message, provider=client.provider.value)
        return self.subscribe_to_plan(employer, plan, payment_data, gateway, receipt_path, verification)

    def activate_pending(self, subscription: Subscription, plan: Optional[SubscriptionPlan] = None,
                         transaction_id: Optional[str] = None) -> bool:
        """
        Grant quotas and make ``subscription`` the employer's only active one.

        Shared by the checkout flow and the webhooks; whichever runs second
        finds the row already activated and changes nothing.
        """
        plan = plan or subscription.plan
        activated = ledger.activate(self.db, subscription, plan, transaction_id)
        if activated:
            ledger.deactivate_others(self.db, subscription.employer_id, subscription.id)
        else:
            ledger.record_transaction(subscription, transaction_id)
        self.db.commit()
        self.db.refresh(subscription)

        if activated:
            self._notify(subscription, notification_service.SUBSCRIPTION_ACTIVATED, {
                "plan_name": plan.name,
                "end_date": subscription.end_date.isoformat() if subscription.end_date else None,
                "is_trial": subscription.is_trial,
            })
        return activated

    def update_subscription(self, subscription: Subscription, new_plan: SubscriptionPlan,
                            payment_data: Mapping[str, Any], gateway, receipt_path: Optional[str] = None,
                            employer: Optional[Employer] = None) -> Subscription:
        """
        Move ``subscription`` to ``new_plan`` after paying for it.

        The new period and quotas replace the old ones entirely; nothing is
        prorated. The pending checkout row for the same reference is retired
        so a late webhook cannot grant the new plan a second time. If the
        webhook got there first, that row already holds the new plan and is
        returned as is.
        """
        self._check_owner(subscription, employer)
        if not new_plan.is_active:
            raise PlanInactive(new_plan.id)

        client = self.client_for(gateway)
        provider = client.provider.value
        payment_data = payment_data or {}
        reference = client.reference_from_payload(payment_data)
        transaction_id = payment_data.get("transaction_id")

        if reference and reference == subscription.payment_reference:
            if subscription.subscription_plan_id == new_plan.id:
                return subscription
            raise ValidationError(
                "This payment was already applied to the subscription",
                errors={"reference": "already used"},
            )

        if reference:
            verification = self.verify_payment(reference, gateway)
            if not verification.success:
                raise GatewayError(verification.message, provider=provider)
            transaction_id = verification.transaction_id or transaction_id

            checkout_row = ledger.find_by_reference(self.db, provider, reference)
            if checkout_row and checkout_row.id != subscription.id:
                self._check_owner(checkout_row, subscription.employer)
                if checkout_row.activated_at is not None:
                    logger.info(
                        f"Plan change for subscription {subscription.id} already applied to "
                        f"subscription {checkout_row.id} by webhook"
                    )
                    self._release_gateway_subscription(subscription, checkout_row.subscription_id)
                    self.db.commit()
                    return checkout_row
                ledger.retire_pending(checkout_row)

            new_gateway_id = verification.subscription_id or (checkout_row.subscription_id if checkout_row else None)
            self._release_gateway_subscription(subscription, new_gateway_id)
            subscription.payment_provider = provider
            subscription.payment_reference = reference
            if new_gateway_id:
                subscription.subscription_id = new_gateway_id
        elif not receipt_path:
            raise ValidationError(
                "A payment reference or a receipt is required",
                errors={"payment_data": "missing gateway reference"},
            )

        if receipt_path:
            subscription.receipt_path = receipt_path

        old_plan_id = subscription.subscription_plan_id
        ledger.replace_plan(self.db, subscription, new_plan, transaction_id)
        ledger.deactivate_others(self.db, subscription.employer_id, subscription.id)
        self.db.commit()
        self.db.refresh(subscription)

        logger.info(
            f"Subscription {subscription.id} moved from plan_id={old_plan_id} to plan_id={new_plan.id}"
        )
        self._notify(subscription, notification_service.SUBSCRIPTION_UPDATED, {
            "plan_name": new_plan.name,
            "previous_plan_id": old_plan_id,
        })
        return subscription

    def start_trial(self, employer: Employer, plan: SubscriptionPlan) -> Subscription:
        """
        Free trial of a one-time plan, active immediately for the plan's trial days.

        Recurring plans get their trial through checkout instead.
        """
        if not plan.is_active:
            raise PlanInactive(plan.id)
        if not plan.trial_days():
            raise ValidationError("This plan does not offer a trial")
        if plan.is_recurring():
            raise ValidationError("Trials for recurring plans start at checkout")
        if ledger.has_used_trial(self.db, employer.id):
            raise ValidationError("Trial already used")
        if ledger.get_active_subscription(self.db, employer.id):
            raise ValidationError("Trials are only available without an active subscription")

        subscription = ledger.create_pending(self.db, employer.id, plan, None, is_trial=True)
        now = datetime.utcnow()
        ledger.activate(self.db, subscription, plan, now=now)
        # A trial lasts only the trial days, not the paid period
        subscription.end_date = subscription.trial_end_date
        ledger.deactivate_others(self.db, employer.id, subscription.id)
        self.db.commit()
        self.db.refresh(subscription)

        logger.info(f"Trial started: employer_id={employer.id}, plan_id={plan.id}, subscription_id={subscription.id}")
        self._notify(subscription, notification_service.SUBSCRIPTION_ACTIVATED, {
            "plan_name": plan.name,
            "end_date": subscription.end_date.isoformat() if subscription.end_date else None,
            "is_trial": True,
        })
        return subscription

    # ------------------------------------------------------------------
    # Quotas
    # ------------------------------------------------------------------

    def get_active_subscription(self, employer: Employer) -> Optional[Subscription]:
        return ledger.get_active_subscription(self.db, employer.id)

    def list_subscriptions(self, employer: Employer) -> List[Subscription]:
        return ledger.list_for_employer(self.db, employer.id)

    def _consume(self, employer: Employer, counter: str) -> bool:
        subscription = ledger.get_active_subscription(self.db, employer.id)
        if not subscription:
            logger.info(f"No active subscription for employer_id={employer.id}, {counter} denied")
            return False

        consumed = ledger.consume(self.db, subscription.id, counter)
        if consumed:
            self.db.commit()
        else:
            self.db.rollback()
            logger.info(f"Quota exhausted: employer_id={employer.id}, subscription_id={subscription.id}, counter={counter}")
        return consumed

    def decrement_cv_downloads_left(self, employer: Employer) -> bool:
        """Take one CV download from the active subscription; False when none is left."""
        return self._consume(employer, "cv_downloads_left")

    def decrement_job_posts_left(self, employer: Employer) -> bool:
        return self._consume(employer, "job_posts_left")

    def decrement_featured_jobs_left(self, employer: Employer) -> bool:
        return self._consume(employer, "featured_jobs_left")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def cancel_subscription(self, subscription: Subscription, reason: str = "",
                            employer: Optional[Employer] = None) -> bool:
        """
        Stop billing at the gateway, then deactivate locally.

        Returns False, with nothing changed locally, when the gateway refuses
        or cannot be reached.
        """
        self._check_owner(subscription, employer)
        if subscription.cancelled_at:
            return True

        if subscription.subscription_id and subscription.payment_provider:
            try:
                self.client_for(subscription.payment_provider).cancel_subscription(
                    subscription.subscription_id, reason
                )
            except GatewayError as e:
                logger.error(
                    f"Gateway cancellation failed, subscription {subscription.id} left unchanged: "
                    f"gateway={subscription.payment_provider}, error={e.message}"
                )
                return False

        ledger.mark_cancelled(subscription)
        self.db.commit()
        logger.info(f"Subscription cancelled: id={subscription.id}, employer_id={subscription.employer_id}")
        self._notify(subscription, notification_service.SUBSCRIPTION_CANCELLED, {"reason": reason})
        return True

    def suspend_subscription(self, subscription: Subscription, reason: str = "",
                             employer: Optional[Employer] = None) -> Subscription:
        self._check_owner(subscription, employer)
        if not subscription.is_active:
            raise ValidationError("Only active subscriptions can be suspended")
        if subscription.is_suspended:
            return subscription

        if subscription.subscription_id and subscription.payment_provider:
            self.client_for(subscription.payment_provider).suspend_subscription(subscription.subscription_id, reason)

        ledger.mark_suspended(subscription)
        self.db.commit()
        logger.info(f"Subscription suspended: id={subscription.id}")
        self._notify(subscription, notification_service.SUBSCRIPTION_SUSPENDED, {"reason": reason})
        return subscription

    def within_grace(self, subscription: Subscription, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if subscription.end_date is None:
            return True
        return now <= subscription.end_date + timedelta(days=self.grace_days)

    def resume_subscription(self, subscription: Subscription, reason: str = "",
                            employer: Optional[Employer] = None, now: Optional[datetime] = None) -> Subscription:
        """Lift a suspension without re-payment while still inside the grace window."""
        self._check_owner(subscription, employer)
        if not subscription.is_suspended:
            return subscription
        if subscription.cancelled_at or not subscription.is_active:
            raise ValidationError("Cancelled or expired subscriptions cannot be resumed")
        if not self.within_grace(subscription, now):
            raise ValidationError("The grace period has ended; please purchase a new plan")

        if subscription.subscription_id and subscription.payment_provider:
            self.client_for(subscription.payment_provider).resume_subscription(subscription.subscription_id, reason)

        ledger.mark_resumed(subscription)
        self.db.commit()
        logger.info(f"Subscription resumed: id={subscription.id}")
        self._notify(subscription, notification_service.SUBSCRIPTION_RESUMED, {"reason": reason})
        return subscription

    def expire_subscriptions(self, now: Optional[datetime] = None) -> int:
        expired = ledger.expire_lapsed(self.db, now)
        self.db.commit()
        logger.info(f"Expired {expired} subscription(s)")
        return expired

    def notify_trial_ending(self, days: int = 3, now: Optional[datetime] = None) -> int:
        """Remind employers whose trial ends ``days`` from now. Returns how many were notified."""
        now = now or datetime.utcnow()
        target = (now + timedelta(days=days)).date()
        trials = (
            self.db.query(Subscription)
            .filter(
                Subscription.is_active.is_(True),
                Subscription.is_trial.is_(True),
                Subscription.trial_end_date.isnot(None),
                Subscription.trial_end_date >= now,
            )
            .all()
        )

        sent = 0
        for subscription in trials:
            if subscription.trial_end_date.date() != target:
                continue
            self._notify(subscription, notification_service.TRIAL_ENDING, {
                "trial_end_date": subscription.trial_end_date.isoformat(),
                "days_left": days,
            })
            sent += 1
        logger.info(f"Trial ending reminders sent: {sent}")
        return sent

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def handle_webhook(self, gateway, payload: bytes, headers: Mapping[str, str]) -> bool:
        """
        Verify and apply one gateway webhook delivery.

        Returns False for a bad signature (nothing is touched), for events
        whose subscription is not known yet, and for any processing error.
        """
        from hirepath.services.billing_webhook_handlers import route_event

        try:
            client = self.client_for(gateway)
        except ValidationError as e:
            logger.warning(f"Webhook for unknown gateway rejected: {e.message}")
            return False

        try:
            event = client.parse_webhook(payload, headers)
        except GatewayError as e:
            logger.warning(f"Webhook rejected: gateway={client.provider.value}, reason={e.message}")
            return False
        except Exception as e:
            logger.error(f"Webhook could not be parsed: gateway={client.provider.value}, error={e}", exc_info=True)
            return False

        try:
            return route_event(self, event)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Webhook processing failed: gateway={event.provider.value}, event_type={event.event_type}, "
                f"event_id={event.event_id}, resource_id={event.resource_id}, error={e}",
                exc_info=True,
            )
            return False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_owner(self, subscription: Subscription, employer: Optional[Employer]):
        if employer is not None and subscription.employer_id != employer.id:
            logger.warning(
                f"Employer {employer.id} tried to act on subscription {subscription.id} "
                f"owned by employer {subscription.employer_id}"
            )
            raise Forbidden("This subscription does not belong to your account")

    def _release_gateway_subscription(self, subscription: Subscription, replacement_id: Optional[str]):
        """Stop billing for the gateway subscription a plan change replaces."""
        old_id = subscription.subscription_id
        if not old_id or not subscription.payment_provider or old_id == replacement_id:
            return
        try:
            self.client_for(subscription.payment_provider).cancel_subscription(old_id, "Plan changed")
        except GatewayError as e:
            logger.error(
                f"Could not cancel replaced gateway subscription {old_id} for subscription {subscription.id}: "
                f"gateway={subscription.payment_provider}, error={e.message}"
            )
            return
        logger.info(f"Cancelled replaced gateway subscription {old_id} for subscription {subscription.id}")

    def _notify(self, subscription: Subscription, notification_type: str, extra: Dict[str, Any]):
        employer = subscription.employer or self.db.get(Employer, subscription.employer_id)
        data = {"subscription_id": subscription.id, "plan_id": subscription.subscription_plan_id}
        data.update(extra)
        notification_service.dispatch(self.db, employer.user_id if employer else None, notification_type, data)
