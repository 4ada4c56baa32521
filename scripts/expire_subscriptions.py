"""
Deactivate subscriptions whose period has ended.
Run daily: python -m scripts.expire_subscriptions
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hirepath.db.session import SessionLocal
from hirepath.services.subscription_service import SubscriptionService
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def expire_subscriptions() -> int:
    db = SessionLocal()
    try:
        return SubscriptionService(db).expire_subscriptions()
    finally:
        db.close()


if __name__ == "__main__":
    count = expire_subscriptions()
    logger.info(f"Done: {count} subscription(s) expired")
