"""
Durable record of a background operation that failed and is awaiting retry.

Status moves pending -> retrying -> succeeded | pending | failed. A failed job
is terminal; an operator requeue creates a fresh job instead of reviving it.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from resilience.db.base import Base, UUIDMixin, utc_now


class JobType(str, Enum):
    EDGE_FUNCTION = "edge_function"
    EMAIL = "email"
    NOTIFICATION = "notification"
    API_CALL = "api_call"


class JobStatus(str, Enum):
    PENDING = "pending"      # Waiting for next_retry_at
    RETRYING = "retrying"    # Claimed by a scheduler run
    SUCCEEDED = "succeeded"
    FAILED = "failed"        # Terminal, kept for manual review


class FailedJob(Base, UUIDMixin):
    __tablename__ = "failed_jobs"

    job_name: Mapped[str] = mapped_column(String(255), nullable=False)
    job_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    job_metadata: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    next_retry_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)
    last_attempted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_stack: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        CheckConstraint("attempt_count >= 0 AND attempt_count <= max_attempts", name="attempt_count_range"),
        CheckConstraint("max_attempts > 0", name="max_attempts_positive"),
        CheckConstraint(
            "status IN ('pending', 'retrying', 'succeeded', 'failed')", name="status_domain"
        ),
        CheckConstraint(
            "job_type IN ('edge_function', 'email', 'notification', 'api_call')", name="job_type_domain"
        ),
        Index("ix_failed_jobs_due", "status", "next_retry_at"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED.value, JobStatus.FAILED.value)

    def __repr__(self) -> str:
        return f"<FailedJob {self.job_type}:{self.job_name} {self.status} {self.attempt_count}/{self.max_attempts}>"
