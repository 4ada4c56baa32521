from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hirepath.db.base import Base


class Job(Base):
    """Job posting owned by an employer. Ownership gates every applicant action."""
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    employer_id = Column(Integer, ForeignKey("employers.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    location = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    employer = relationship("Employer", back_populates="jobs")
    applications = relationship("JobApplication", back_populates="job")

    def __repr__(self):
        return f"<Job(id={self.id}, employer_id={self.employer_id}, title={self.title})>"
