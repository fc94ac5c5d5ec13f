from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, List, Optional

from sqlalchemy import JSON, Column, DateTime, Enum as SAEnum
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands timestamps back naive; they were written as utc
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _timestamp_column(**kwargs) -> Column:
    return Column(DateTime(timezone=True), nullable=False, **kwargs)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKind(str, Enum):
    POST = "post"
    BINARY = "binary"


# forward-only status moves; failed -> processing is a requeued redelivery,
# completed -> completed is a duplicate successful pass
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset({JobStatus.COMPLETED}),
}


def allowed_next(status: JobStatus) -> FrozenSet[JobStatus]:
    return ALLOWED_TRANSITIONS[status]


def _enum_column(enum_cls, **kwargs) -> Column:
    # store the lowercase values, not the member names
    return Column(
        SAEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=32),
        nullable=False,
        **kwargs
    )


class UploadJob(SQLModel, table=True):
    """status record for one submission, keyed by post_id or job_id"""
    __tablename__ = "upload_jobs"
    id: str = Field(primary_key=True, max_length=255)
    kind: JobKind = Field(sa_column=_enum_column(JobKind, index=True))
    title: Optional[str] = Field(default=None, max_length=255, nullable=True)  # post jobs only
    todo: Optional[str] = Field(default=None, nullable=True)
    status: JobStatus = Field(default=JobStatus.PENDING, sa_column=_enum_column(JobStatus, index=True))
    image_urls: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    error_message: Optional[str] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column(index=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=_timestamp_column())

    def to_status_dict(self) -> dict:
        """shape used by the upload-status endpoint"""
        payload = {
            "job_id": self.id,
            "status": JobStatus(self.status).value,
            "image_urls": list(self.image_urls or []),
        }
        if self.image_urls:
            payload["image_url"] = self.image_urls[0]
        if self.error_message:
            payload["error"] = self.error_message
        return payload

    def to_post_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "todo": self.todo or "",
            "status": JobStatus(self.status).value,
            "image_urls": list(self.image_urls or []),
            "error_message": self.error_message,
            "created_at": as_utc(self.created_at).isoformat() if self.created_at else None,
            "updated_at": as_utc(self.updated_at).isoformat() if self.updated_at else None,
        }
