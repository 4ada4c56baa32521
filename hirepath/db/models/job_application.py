from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from hirepath.db.base import Base


class JobApplication(Base):
    """
    A candidate's application to a job.

    Status is one of hirepath.services.hiring_service.ApplicationStatus and is
    only written through the hiring service. Rows are never deleted; they end
    in a terminal status instead.
    """
    __tablename__ = "job_applications"
    __table_args__ = (
        UniqueConstraint("job_id", "candidate_id", name="uq_job_applications_job_candidate"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(Integer, ForeignKey("candidates.id", ondelete="CASCADE"), nullable=False, index=True)
    resume_id = Column(Integer, ForeignKey("resumes.id", ondelete="SET NULL"), nullable=True)

    cover_letter = Column(Text, nullable=True)
    apply_via = Column(String, nullable=False, default="profile_cv")  # custom_cv | profile_cv
    status = Column(String, nullable=False, default="applied", index=True)
    employer_notes = Column(Text, nullable=True)

    withdrawal_reason = Column(Text, nullable=True)
    withdrawn_at = Column(DateTime, nullable=True)
    status_changed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    job = relationship("Job", back_populates="applications")
    candidate = relationship("Candidate", back_populates="applications")
    resume = relationship("Resume")

    def __repr__(self):
        return f"<JobApplication(id={self.id}, job_id={self.job_id}, status={self.status})>"
