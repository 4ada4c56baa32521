"""
Candidate side of applications: apply and withdraw.
"""
import logging
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from hirepath.core.auth_dependency import get_current_candidate
from hirepath.db.models.candidate import Candidate
from hirepath.db.session import get_db
from hirepath.schemas.common import envelope
from hirepath.schemas.hiring import ApplicationCreate, ApplicationResponse, WithdrawRequest
from hirepath.services import hiring_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["Applications"])


@router.post("", status_code=status.HTTP_201_CREATED)
def apply(
    body: ApplicationCreate,
    candidate: Candidate = Depends(get_current_candidate),
    db: Session = Depends(get_db),
):
    application = hiring_service.submit_application(
        db, candidate, body.job_id, body.resume_id, body.cover_letter, body.apply_via
    )
    return envelope("Application submitted", ApplicationResponse.model_validate(application).model_dump(mode="json"))


@router.post("/{application_id}/withdraw")
def withdraw(
    application_id: int,
    body: WithdrawRequest = WithdrawRequest(),
    candidate: Candidate = Depends(get_current_candidate),
    db: Session = Depends(get_db),
):
    application = hiring_service.withdraw_application(db, candidate, application_id, body.reason)
    return envelope("Application withdrawn", ApplicationResponse.model_validate(application).model_dump(mode="json"))
