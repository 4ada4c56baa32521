"""
Quota enforcement for employer features.

require_quota() is a dependency that takes one unit of a subscription
counter before the route runs; enforce_quota() does the same from inside a
route once the requested resource is known to exist.
"""
import logging
from fastapi import Depends

from hirepath.core.auth_dependency import get_current_employer
from hirepath.core.exceptions import QuotaExhausted
from hirepath.core.service_dependency import get_subscription_service
from hirepath.db.models.employer import Employer
from hirepath.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

CONSUMERS = {
    "cv_downloads_left": SubscriptionService.decrement_cv_downloads_left,
    "job_posts_left": SubscriptionService.decrement_job_posts_left,
    "featured_jobs_left": SubscriptionService.decrement_featured_jobs_left,
}


def enforce_quota(service: SubscriptionService, employer: Employer, counter: str):
    """
    Raises:
        QuotaExhausted: no active subscription or nothing left on ``counter``
    """
    if not CONSUMERS[counter](service, employer):
        logger.warning(f"Quota exceeded: employer_id={employer.id}, counter={counter}")
        raise QuotaExhausted(counter)


def require_quota(counter: str):
    """
    Dependency that consumes one unit of ``counter`` for the current employer.

    Returns:
        Employer object if a unit was available
    """
    if counter not in CONSUMERS:
        raise ValueError(f"Unknown quota counter: {counter}")

    def quota_checker(
        employer: Employer = Depends(get_current_employer),
        service: SubscriptionService = Depends(get_subscription_service),
    ) -> Employer:
        enforce_quota(service, employer, counter)
        return employer

    return quota_checker
