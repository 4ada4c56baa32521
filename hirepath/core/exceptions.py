"""
Typed failures raised by the subscription orchestrator and the hiring
stage engine. The HTTP layer maps each one to a status code and a
``{"success": false, "message": ...}`` body.
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ServiceError):
    """Malformed or missing input, caught before touching the gateway or ledger."""
    status_code = 400

    def __init__(self, message: str, errors: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.errors = errors or {}


class InvalidTransition(ValidationError):
    """Hiring-stage change refused for the application's current status."""
    status_code = 409


class NotFound(ServiceError):
    status_code = 404


class PlanInactive(NotFound):
    def __init__(self, plan_id: int):
        super().__init__(f"Subscription plan {plan_id} is not available")
        self.plan_id = plan_id


class Forbidden(ServiceError):
    status_code = 403


class GatewayError(ServiceError):
    """
    Failure talking to Stripe or PayPal.

    ``retryable`` marks remote/network trouble (surfaced as 502); anything
    attributable to the caller's input (bad reference, declined payment)
    stays a 400. A gateway that is not configured is a plain 500.
    """

    def __init__(self, message: str, provider: Optional[str] = None, retryable: bool = False,
                 status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code or (502 if retryable else 400))
        self.provider = provider
        self.retryable = retryable


class WebhookVerificationError(GatewayError):
    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message, provider=provider, retryable=False)


class QuotaExhausted(ServiceError):
    status_code = 400

    def __init__(self, quota: str):
        super().__init__(f"Your subscription has no {quota.replace('_', ' ')} remaining")
        self.quota = quota
