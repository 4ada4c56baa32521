"""
Hiring stage engine.

Owns every write to JobApplication.status: employer-driven stage changes
(single and batch), candidate withdrawal and new applications. Ownership
is checked here, not in the routes: an employer may only move
applications for its own jobs.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hirepath.core.exceptions import Forbidden, InvalidTransition, NotFound, ServiceError, ValidationError
from hirepath.db.models.candidate import Candidate
from hirepath.db.models.employer import Employer
from hirepath.db.models.job import Job
from hirepath.db.models.job_application import JobApplication
from hirepath.db.models.resume import Resume
from hirepath.services import notification_service

logger = logging.getLogger(__name__)


class ApplicationStatus(str, Enum):
    UNSORTED = "unsorted"
    APPLIED = "applied"
    SCREENING = "screening"
    INTERVIEW = "interview"
    SHORTLISTED = "shortlisted"
    OFFER_SENT = "offer_sent"
    REJECTED = "rejected"
    HIRED = "hired"
    WITHDRAWN = "withdrawn"


TERMINAL_STATUSES = frozenset({
    ApplicationStatus.REJECTED,
    ApplicationStatus.HIRED,
    ApplicationStatus.WITHDRAWN,
})

# Filters over the one status field
EMPLOYER_VIEW_STATUSES = (
    ApplicationStatus.UNSORTED,
    ApplicationStatus.SHORTLISTED,
    ApplicationStatus.OFFER_SENT,
    ApplicationStatus.REJECTED,
)
PIPELINE_STATUSES = (
    ApplicationStatus.APPLIED,
    ApplicationStatus.SCREENING,
    ApplicationStatus.INTERVIEW,
    ApplicationStatus.SHORTLISTED,
    ApplicationStatus.OFFER_SENT,
    ApplicationStatus.HIRED,
    ApplicationStatus.REJECTED,
)
STATUS_VIEWS = {
    "employer": EMPLOYER_VIEW_STATUSES,
    "pipeline": PIPELINE_STATUSES,
}

APPLY_VIA_OPTIONS = ("custom_cv", "profile_cv")


@dataclass
class BatchResult:
    """Outcome of a best-effort batch: each application succeeds or fails on its own."""
    status: str
    success: List[int] = field(default_factory=list)
    failed: List[Dict[str, object]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.success) + len(self.failed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "success": self.success,
            "failed": self.failed,
            "total": self.total,
            "successful_count": len(self.success),
            "failed_count": len(self.failed),
        }


def parse_status(value) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ApplicationStatus)
        raise ValidationError(f"Invalid application status: {value}", errors={"status": f"must be one of {allowed}"})


def check_employer_transition(current: str, new: ApplicationStatus):
    """
    Employers may move an application between any stages, with two
    exceptions: withdrawing is the candidate's action, and a withdrawn
    application stays withdrawn.
    """
    if new is ApplicationStatus.WITHDRAWN:
        raise InvalidTransition("Only the candidate can withdraw an application")
    if current == ApplicationStatus.WITHDRAWN.value:
        raise InvalidTransition("This application was withdrawn by the candidate and can no longer be changed")


def get_application_for_employer(db: Session, employer: Employer, application_id: int) -> Tuple[JobApplication, Job]:
    """
    Resolve an application and its job for ``employer``.

    Raises:
        NotFound: application or job missing
        Forbidden: the job belongs to another employer
    """
    application = db.get(JobApplication, application_id)
    if not application:
        raise NotFound(f"Application {application_id} not found")
    job = db.get(Job, application.job_id)
    if not job:
        raise NotFound(f"Job {application.job_id} not found")
    if job.employer_id != employer.id:
        logger.warning(
            f"Employer {employer.id} tried to change application {application_id} "
            f"of job {job.id} owned by employer {job.employer_id}"
        )
        raise Forbidden("You are not authorized to manage this application")
    return application, job


def _template_context(application: JobApplication, job: Job) -> Dict[str, object]:
    candidate = application.candidate
    return {
        "candidate_name": candidate.user.full_name if candidate and candidate.user else "",
        "job_title": job.title,
        "company_name": job.employer.company_name if job.employer else "",
        "status": application.status,
    }


def _templated(db: Session, employer_id: int, template_type: str, context: Dict[str, object]) -> Dict[str, object]:
    template = notification_service.resolve_template(db, employer_id, template_type)
    if not template:
        return {}
    rendered = notification_service.render_template(template, context)
    rendered["template_id"] = template.id
    return rendered


def notify_status_changed(db: Session, application: JobApplication, job: Job, previous_status: str):
    context = _template_context(application, job)
    data = {
        "application_id": application.id,
        "job_id": job.id,
        "job_title": job.title,
        "status": application.status,
        "previous_status": previous_status,
    }
    data.update(_templated(db, job.employer_id, notification_service.template_type_for_status(application.status), context))
    candidate = application.candidate
    notification_service.dispatch(
        db, candidate.user_id if candidate else None, notification_service.APPLICATION_STATUS_CHANGED, data
    )


def change_application_status(
    db: Session,
    employer: Employer,
    application_id: int,
    status,
    notes: Optional[str] = None,
) -> JobApplication:
    """
    Move an application to a new hiring stage on behalf of its job's owner.

    The candidate is notified only when the status actually changes.
    """
    new_status = parse_status(status)
    application, job = get_application_for_employer(db, employer, application_id)
    check_employer_transition(application.status, new_status)

    previous_status = application.status
    application.status = new_status.value
    if notes is not None:
        application.employer_notes = notes
    changed = previous_status != new_status.value
    if changed:
        application.status_changed_at = datetime.utcnow()

    db.commit()
    db.refresh(application)

    if changed:
        logger.info(
            f"Application {application.id} moved {previous_status} -> {new_status.value} "
            f"by employer {employer.id}"
        )
        notify_status_changed(db, application, job, previous_status)
    return application


def batch_change_hiring_stage(
    db: Session,
    employer: Employer,
    application_ids: Iterable[int],
    status,
    notes: Optional[str] = None,
) -> BatchResult:
    """
    Apply one stage change to many applications, best effort.

    Every application is committed on its own; a missing, foreign or
    frozen application is reported in ``failed`` and does not undo the
    others.
    """
    new_status = parse_status(status)
    ids = list(dict.fromkeys(application_ids))
    if not ids:
        raise ValidationError("At least one application id is required", errors={"application_ids": "empty"})

    result = BatchResult(status=new_status.value)
    for application_id in ids:
        try:
            change_application_status(db, employer, application_id, new_status, notes)
            result.success.append(application_id)
        except ServiceError as e:
            db.rollback()
            result.failed.append({"application_id": application_id, "reason": e.message})

    logger.info(
        f"Batch hiring stage {new_status.value} by employer {employer.id}: "
        f"{len(result.success)} succeeded, {len(result.failed)} failed"
    )
    return result


def withdraw_application(
    db: Session,
    candidate: Candidate,
    application_id: int,
    reason: Optional[str] = None,
) -> JobApplication:
    """Candidate withdraws their own application; the employer is notified."""
    application = db.get(JobApplication, application_id)
    if not application:
        raise NotFound(f"Application {application_id} not found")
    if application.candidate_id != candidate.id:
        raise Forbidden("You can only withdraw your own applications")
    if application.status in {s.value for s in TERMINAL_STATUSES}:
        raise InvalidTransition(f"An application that is {application.status} cannot be withdrawn")

    now = datetime.utcnow()
    previous_status = application.status
    application.status = ApplicationStatus.WITHDRAWN.value
    application.withdrawal_reason = reason
    application.withdrawn_at = now
    application.status_changed_at = now
    db.commit()
    db.refresh(application)

    job = db.get(Job, application.job_id)
    logger.info(f"Application {application.id} withdrawn by candidate {candidate.id} (was {previous_status})")

    data = {
        "application_id": application.id,
        "job_id": job.id,
        "job_title": job.title,
        "reason": reason,
        "previous_status": previous_status,
    }
    notification_service.dispatch(db, candidate.user_id, notification_service.APPLICATION_WITHDRAWN, dict(data))

    employer_data = dict(data)
    employer_data.update(_templated(
        db, job.employer_id, notification_service.TEMPLATE_APPLICATION_WITHDRAWN, _template_context(application, job)
    ))
    employer = job.employer
    notification_service.dispatch(
        db, employer.user_id if employer else None, notification_service.APPLICATION_WITHDRAWN, employer_data
    )
    return application


def submit_application(
    db: Session,
    candidate: Candidate,
    job_id: int,
    resume_id: Optional[int] = None,
    cover_letter: Optional[str] = None,
    apply_via: str = "profile_cv",
) -> JobApplication:
    """Create the candidate's single application to ``job_id``."""
    job = db.get(Job, job_id)
    if not job:
        raise NotFound(f"Job {job_id} not found")
    if not job.is_active:
        raise ValidationError("This job is no longer accepting applications")
    if apply_via not in APPLY_VIA_OPTIONS:
        raise ValidationError("Invalid apply_via", errors={"apply_via": f"must be one of {', '.join(APPLY_VIA_OPTIONS)}"})
    if apply_via == "custom_cv" and not resume_id:
        raise ValidationError("A resume is required when applying with a custom CV", errors={"resume_id": "required"})

    if resume_id is not None:
        resume = db.get(Resume, resume_id)
        if not resume or resume.candidate_id != candidate.id:
            raise ValidationError("Resume not found", errors={"resume_id": "unknown resume"})

    existing = (
        db.query(JobApplication)
        .filter(JobApplication.job_id == job_id, JobApplication.candidate_id == candidate.id)
        .first()
    )
    if existing:
        raise ValidationError("You have already applied to this job")

    application = JobApplication(
        job_id=job_id,
        candidate_id=candidate.id,
        resume_id=resume_id,
        cover_letter=cover_letter,
        apply_via=apply_via,
        status=ApplicationStatus.APPLIED.value,
        status_changed_at=datetime.utcnow(),
    )
    db.add(application)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("You have already applied to this job")
    db.refresh(application)

    logger.info(f"Application {application.id} submitted: candidate {candidate.id} -> job {job_id}")

    data = {"application_id": application.id, "job_id": job.id, "job_title": job.title}
    candidate_data = dict(data)
    candidate_data.update(_templated(
        db, job.employer_id, notification_service.TEMPLATE_APPLICATION_RECEIVED, _template_context(application, job)
    ))
    notification_service.dispatch(db, candidate.user_id, notification_service.APPLICATION_SUBMITTED, candidate_data)
    employer = job.employer
    notification_service.dispatch(
        db, employer.user_id if employer else None, notification_service.APPLICATION_RECEIVED, data
    )
    return application


def list_applicants(
    db: Session,
    employer: Employer,
    job_id: int,
    status: Optional[str] = None,
    view: Optional[str] = None,
) -> List[JobApplication]:
    """Applications to one of the employer's jobs, filtered by a status or a named view."""
    job = db.get(Job, job_id)
    if not job:
        raise NotFound(f"Job {job_id} not found")
    if job.employer_id != employer.id:
        raise Forbidden("You are not authorized to view applicants for this job")

    query = db.query(JobApplication).filter(JobApplication.job_id == job_id)
    if status:
        query = query.filter(JobApplication.status == parse_status(status).value)
    elif view:
        statuses = STATUS_VIEWS.get(view)
        if statuses is None:
            raise ValidationError(f"Unknown view: {view}", errors={"view": f"must be one of {', '.join(STATUS_VIEWS)}"})
        query = query.filter(JobApplication.status.in_([s.value for s in statuses]))
    return query.order_by(JobApplication.created_at.desc(), JobApplication.id.desc()).all()


def status_counts(db: Session, job_id: int) -> Dict[str, int]:
    counts = {s.value: 0 for s in ApplicationStatus}
    rows = (
        db.query(JobApplication.status, func.count(JobApplication.id))
        .filter(JobApplication.job_id == job_id)
        .group_by(JobApplication.status)
        .all()
    )
    for status, count in rows:
        counts[status] = count
    return counts
