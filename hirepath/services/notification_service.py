"""
Notification dispatch.

Writes in-app notification records for hiring and billing events. Dispatch
is fire-and-forget: a failure is logged and rolled back, never raised, so
it cannot change the outcome of the operation that triggered it. Callers
dispatch after committing their own work.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from hirepath.db.models.notification import JobNotificationTemplate, Notification

logger = logging.getLogger(__name__)

# Notification types
APPLICATION_RECEIVED = "application_received"
APPLICATION_SUBMITTED = "application_submitted"
APPLICATION_STATUS_CHANGED = "application_status_changed"
APPLICATION_WITHDRAWN = "application_withdrawn"
SUBSCRIPTION_ACTIVATED = "subscription_activated"
SUBSCRIPTION_UPDATED = "subscription_updated"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"
SUBSCRIPTION_SUSPENDED = "subscription_suspended"
SUBSCRIPTION_RESUMED = "subscription_resumed"
PAYMENT_FAILED = "payment_failed"
TRIAL_ENDING = "trial_ending"

# Employer template types
TEMPLATE_APPLICATION_RECEIVED = "application_received"
TEMPLATE_INTERVIEW_INVITATION = "interview_invitation"
TEMPLATE_REJECTION = "rejection"
TEMPLATE_OFFER = "offer"
TEMPLATE_APPLICATION_WITHDRAWN = "application_withdrawn"
TEMPLATE_CUSTOM = "custom"

TEMPLATE_TYPES = (
    TEMPLATE_APPLICATION_RECEIVED,
    TEMPLATE_INTERVIEW_INVITATION,
    TEMPLATE_REJECTION,
    TEMPLATE_OFFER,
    TEMPLATE_APPLICATION_WITHDRAWN,
    TEMPLATE_CUSTOM,
)

STATUS_TEMPLATE_TYPES = {
    "applied": TEMPLATE_APPLICATION_RECEIVED,
    "unsorted": TEMPLATE_APPLICATION_RECEIVED,
    "interview": TEMPLATE_INTERVIEW_INVITATION,
    "rejected": TEMPLATE_REJECTION,
    "offer_sent": TEMPLATE_OFFER,
    "hired": TEMPLATE_OFFER,
    "withdrawn": TEMPLATE_APPLICATION_WITHDRAWN,
}


class _KeepMissing(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def template_type_for_status(status: str) -> str:
    return STATUS_TEMPLATE_TYPES.get(status, TEMPLATE_CUSTOM)


def resolve_template(db: Session, employer_id: int, template_type: str) -> Optional[JobNotificationTemplate]:
    """Latest template the employer wrote for this type, if any."""
    return (
        db.query(JobNotificationTemplate)
        .filter(
            JobNotificationTemplate.employer_id == employer_id,
            JobNotificationTemplate.type == template_type,
        )
        .order_by(JobNotificationTemplate.id.desc())
        .first()
    )


def render_template(template: JobNotificationTemplate, context: Dict[str, Any]) -> Dict[str, str]:
    """
    Fill ``{placeholder}`` fields in subject and content.

    Unknown placeholders are left as written.
    """
    values = _KeepMissing({k: "" if v is None else v for k, v in context.items()})
    try:
        subject = template.subject.format_map(values)
        content = template.content.format_map(values)
    except (ValueError, IndexError, AttributeError, KeyError, TypeError) as e:
        logger.warning(f"Template {template.id} could not be rendered, sending raw text: {e}")
        subject, content = template.subject, template.content
    return {"subject": subject, "content": content}


def dispatch(db: Session, user_id: Optional[int], notification_type: str, data: Dict[str, Any]) -> Optional[Notification]:
    """
    Record a notification for ``user_id``.

    Returns:
        The stored Notification, or None when it could not be stored
    """
    if user_id is None:
        logger.warning(f"Notification {notification_type} skipped: no recipient")
        return None

    try:
        notification = Notification(user_id=user_id, type=notification_type, data=data)
        db.add(notification)
        db.commit()
        logger.info(f"Notification sent: type={notification_type}, user_id={user_id}")
        return notification
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to send notification {notification_type} to user_id={user_id}: {e}", exc_info=True)
        return None

