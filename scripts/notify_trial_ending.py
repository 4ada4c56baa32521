"""
Remind employers that their trial ends soon.
Run daily: python -m scripts.notify_trial_ending [days]
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


def notify_trial_ending(days: int = 3) -> int:
    db = SessionLocal()
    try:
        return SubscriptionService(db).notify_trial_ending(days)
    finally:
        db.close()


if __name__ == "__main__":
    days = int(sys.argv[1]) if len(sys.argv) > 1 else 3
    sent = notify_trial_ending(days)
    logger.info(f"Done: {sent} reminder(s) sent for trials ending in {days} day(s)")
