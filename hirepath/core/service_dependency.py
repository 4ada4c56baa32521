"""FastAPI providers for the services; tests override get_gateway_factory."""
from fastapi import Depends
from sqlalchemy.orm import Session

from hirepath.db.session import get_db
from hirepath.services.payment_gateway import get_gateway_client
from hirepath.services.subscription_service import SubscriptionService


def get_gateway_factory():
    return get_gateway_client


def get_subscription_service(
    db: Session = Depends(get_db),
    gateway_factory=Depends(get_gateway_factory),
) -> SubscriptionService:
    return SubscriptionService(db, gateway_factory=gateway_factory)
