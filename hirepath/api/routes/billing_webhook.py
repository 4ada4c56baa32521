"""
Inbound gateway webhooks. No user auth: the signature check inside the
subscription service is the trust boundary.

Answers 200 when the event was applied (or deliberately ignored) and 400
otherwise, so the gateway's retry schedule redelivers events that arrived
before their subscription row existed.
"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from hirepath.core.error_handlers import error_body
from hirepath.core.logging_config import sanitize_log_data
from hirepath.core.service_dependency import get_subscription_service
from hirepath.services.payment_gateway import PaymentProvider
from hirepath.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Billing Webhook"])


async def _handle(provider: PaymentProvider, request: Request, service: SubscriptionService):
    payload = await request.body()
    processed = service.handle_webhook(provider, payload, request.headers)
    if not processed:
        logger.warning(
            f"{provider.value} webhook not processed: headers={sanitize_log_data(dict(request.headers))}"
        )
        return JSONResponse(status_code=400, content=error_body("Webhook not processed"))
    return {"success": True}


@router.post("/stripe")
async def stripe_webhook(request: Request, service: SubscriptionService = Depends(get_subscription_service)):
    return await _handle(PaymentProvider.STRIPE, request, service)


@router.post("/paypal")
async def paypal_webhook(request: Request, service: SubscriptionService = Depends(get_subscription_service)):
    return await _handle(PaymentProvider.PAYPAL, request, service)
