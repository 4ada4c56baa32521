from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from hirepath.db.base import Base


class Employer(Base):
    """
    Tenant root. Jobs and subscriptions hang off it; the billing and hiring
    services only ever read this row.
    """
    __tablename__ = "employers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    company_name = Column(String, nullable=False)
    company_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="employer")
    jobs = relationship("Job", back_populates="employer")
    subscriptions = relationship("Subscription", back_populates="employer", order_by="Subscription.id")

    def __repr__(self):
        return f"<Employer(id={self.id}, company_name={self.company_name})>"
