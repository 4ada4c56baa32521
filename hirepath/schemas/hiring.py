"""
Pydantic schemas for applications and hiring stages.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class ApplicationCreate(BaseModel):
    job_id: int
    resume_id: Optional[int] = None
    cover_letter: Optional[str] = Field(None, max_length=10000)
    apply_via: str = Field("profile_cv", description="custom_cv or profile_cv")


class WithdrawRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class HiringStageRequest(BaseModel):
    application_id: int
    status: str = Field(..., description="Target hiring stage")
    notes: Optional[str] = Field(None, max_length=5000)

    class Config:
        json_schema_extra = {
            "example": {"application_id": 42, "status": "shortlisted", "notes": "Strong portfolio"}
        }


class BatchHiringStageRequest(BaseModel):
    application_ids: List[int] = Field(..., min_length=1)
    status: str
    notes: Optional[str] = Field(None, max_length=5000)


class ApplicationResponse(BaseModel):
    id: int
    job_id: int
    candidate_id: int
    resume_id: Optional[int] = None
    cover_letter: Optional[str] = None
    apply_via: str
    status: str
    employer_notes: Optional[str] = None
    withdrawal_reason: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    status_changed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class JobCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    location: Optional[str] = None


class JobResponse(BaseModel):
    id: int
    employer_id: int
    title: str
    location: Optional[str] = None
    is_active: bool
    is_featured: bool

    class Config:
        from_attributes = True
