"""
Employer side of the hiring pipeline: applicants, hiring stages, job
posting and CV downloads (quota guarded).
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from hirepath.core.auth_dependency import get_current_employer
from hirepath.core.exceptions import Forbidden, NotFound
from hirepath.core.quota_guard import enforce_quota, require_quota
from hirepath.core.service_dependency import get_subscription_service
from hirepath.db.models.employer import Employer
from hirepath.db.models.job import Job
from hirepath.db.models.job_application import JobApplication
from hirepath.db.models.resume import Resume
from hirepath.db.session import get_db
from hirepath.schemas.common import envelope
from hirepath.schemas.hiring import (
    ApplicationResponse,
    BatchHiringStageRequest,
    HiringStageRequest,
    JobCreate,
    JobResponse,
)
from hirepath.services import hiring_service
from hirepath.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/employer", tags=["Employer Applicants"])


def _application_data(application):
    return ApplicationResponse.model_validate(application).model_dump(mode="json")


@router.get("/jobs/{job_id}/applicants")
def list_applicants(
    job_id: int,
    status_filter: Optional[str] = Query(None, alias="status"),
    view: Optional[str] = Query(None, description="employer or pipeline"),
    employer: Employer = Depends(get_current_employer),
    db: Session = Depends(get_db),
):
    applications = hiring_service.list_applicants(db, employer, job_id, status=status_filter, view=view)
    return envelope("Applicants retrieved", {
        "applications": [_application_data(a) for a in applications],
        "counts": hiring_service.status_counts(db, job_id),
    })


@router.post("/applications/hiring-stage")
def change_hiring_stage(
    body: HiringStageRequest,
    employer: Employer = Depends(get_current_employer),
    db: Session = Depends(get_db),
):
    application = hiring_service.change_application_status(
        db, employer, body.application_id, body.status, body.notes
    )
    return envelope("Hiring stage updated", _application_data(application))


@router.post("/applications/hiring-stage/batch")
def batch_change_hiring_stage(
    body: BatchHiringStageRequest,
    employer: Employer = Depends(get_current_employer),
    db: Session = Depends(get_db),
):
    """Best effort: each application is updated on its own and failures are listed."""
    result = hiring_service.batch_change_hiring_stage(db, employer, body.application_ids, body.status, body.notes)
    message = f"{len(result.success)} of {result.total} applications updated"
    return envelope(message, result.to_dict())


@router.post("/jobs", status_code=status.HTTP_201_CREATED)
def post_job(
    body: JobCreate,
    employer: Employer = Depends(require_quota("job_posts_left")),
    db: Session = Depends(get_db),
):
    job = Job(employer_id=employer.id, title=body.title, location=body.location, is_active=True)
    db.add(job)
    db.commit()
    db.refresh(job)
    logger.info(f"Job {job.id} posted by employer {employer.id}")
    return envelope("Job posted", JobResponse.model_validate(job).model_dump(mode="json"))


@router.post("/jobs/{job_id}/feature")
def feature_job(
    job_id: int,
    employer: Employer = Depends(get_current_employer),
    db: Session = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
):
    job = db.get(Job, job_id)
    if not job:
        raise NotFound(f"Job {job_id} not found")
    if job.employer_id != employer.id:
        raise Forbidden("You are not authorized to manage this job")
    if not job.is_featured:
        enforce_quota(service, employer, "featured_jobs_left")
        job.is_featured = True
        db.commit()
        db.refresh(job)
    return envelope("Job featured", JobResponse.model_validate(job).model_dump(mode="json"))


@router.get("/resumes/{resume_id}/download")
def download_resume(
    resume_id: int,
    employer: Employer = Depends(get_current_employer),
    db: Session = Depends(get_db),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Release a candidate's CV to the employer.

    Only resumes attached to an application for one of the employer's jobs
    are downloadable, and each download uses one CV download from the
    active subscription.
    """
    resume = db.get(Resume, resume_id)
    if not resume:
        raise NotFound(f"Resume {resume_id} not found")

    applied = (
        db.query(JobApplication.id)
        .join(Job, Job.id == JobApplication.job_id)
        .filter(Job.employer_id == employer.id, JobApplication.candidate_id == resume.candidate_id)
        .first()
    )
    if not applied:
        raise Forbidden("This candidate has not applied to your jobs")

    enforce_quota(service, employer, "cv_downloads_left")
    logger.info(f"Resume {resume_id} released to employer {employer.id}")
    return envelope("Resume download granted", {"resume_id": resume.id, "file_path": resume.file_path})
