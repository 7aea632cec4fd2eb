"""SQLAlchemy models for weekly timesheet submissions and their entries."""

import uuid

from sqlalchemy import Boolean, Column, Date, Float, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from ledger_sync.db.base import Base


class TimesheetSubmission(Base):
    __tablename__ = "timesheet_submissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    user_email = Column(String(255))
    week_start_date = Column(Date, nullable=False, index=True)
    # DRAFT | SUBMITTED | APPROVED | REJECTED
    status = Column(String(32), nullable=False, default="SUBMITTED", index=True)
    approved_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    entries = relationship(
        "TimeEntry",
        back_populates="submission",
        lazy="selectin",
        order_by="TimeEntry.date",
    )


class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    submission_id = Column(
        String(36), ForeignKey("timesheet_submissions.id"), nullable=False, index=True
    )
    project_id = Column(String(36), ForeignKey("projects.id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    task_name = Column(String(255))
    description = Column(Text)
    duration = Column(Float, nullable=False)  # hours
    date = Column(Date, nullable=False)
    billable = Column(Boolean, nullable=False, default=True)
    bill_rate = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submission = relationship("TimesheetSubmission", back_populates="entries")
    project = relationship("Project", lazy="joined")
