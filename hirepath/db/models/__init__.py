"""
Database models module.

Imports every model so they are registered with Base.metadata before
table creation and Alembic autogeneration.
"""
from hirepath.db.models.user import User
from hirepath.db.models.employer import Employer
from hirepath.db.models.candidate import Candidate
from hirepath.db.models.job import Job
from hirepath.db.models.resume import Resume
from hirepath.db.models.job_application import JobApplication
from hirepath.db.models.subscription_plan import SubscriptionPlan
from hirepath.db.models.subscription import Subscription
from hirepath.db.models.notification import JobNotificationTemplate, Notification

__all__ = [
    "User",
    "Employer",
    "Candidate",
    "Job",
    "Resume",
    "JobApplication",
    "SubscriptionPlan",
    "Subscription",
    "JobNotificationTemplate",
    "Notification",
]
