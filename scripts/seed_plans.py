"""
Seed the default subscription plan catalog (idempotent, matched by name).
Run: python -m scripts.seed_plans
"""
import sys
import os
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hirepath.db.session import SessionLocal
from hirepath.db.models.subscription_plan import SubscriptionPlan
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "20 Resume Package",
        "description": "One-time pack of 20 resume downloads with 5 job posts",
        "price": Decimal("1.00"),
        "currency": "CAD",
        "duration_days": None,
        "job_posts_limit": 5,
        "featured_jobs_limit": 1,
        "resume_views_limit": 20,
        "payment_type": "one_time",
        "has_trial": True,
        "trial_period_days": 1,
        "is_active": True,
        "is_featured": False,
    },
    {
        "name": "Unlimited Resume Access",
        "description": "Monthly plan with unlimited resume access",
        "price": Decimal("1.00"),
        "currency": "CAD",
        "duration_days": 30,
        "job_posts_limit": 15,
        "featured_jobs_limit": 5,
        "resume_views_limit": 999999,
        "payment_type": "recurring",
        "interval_unit": "MONTH",
        "interval_count": 1,
        "has_trial": True,
        "trial_period_days": 1,
        "is_active": True,
        "is_featured": True,
    },
]


def seed_plans(db) -> int:
    created = 0
    for data in DEFAULT_PLANS:
        if db.query(SubscriptionPlan).filter(SubscriptionPlan.name == data["name"]).first():
            logger.info(f"Plan already present: {data['name']}")
            continue
        db.add(SubscriptionPlan(**data))
        created += 1
        logger.info(f"Plan created: {data['name']}")
    db.commit()
    return created


if __name__ == "__main__":
    db = SessionLocal()
    try:
        seed_plans(db)
    finally:
        db.close()
