import logging
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from imageq.core.errors import InvalidTransition, PersistenceError, RecordNotFound
from imageq.models.jobs import JobKind, JobStatus, UploadJob, allowed_next, as_utc, utcnow

logger = logging.getLogger(__name__)


class StatusStore:
    """
    Durable status records, one row per submission.

    Every call is its own short transaction keyed by id; nothing is locked
    across calls. The producer creates the pending row, the worker moves it
    forward, pollers only read.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            try:
                yield session
            except SQLAlchemyError as e:
                session.rollback()
                raise PersistenceError(f"status store error: {e}") from e

    def create(self, record: UploadJob) -> UploadJob:
        """insert a new record; it always starts pending"""
        record.status = JobStatus.PENDING
        record.image_urls = []
        record.error_message = None
        try:
            with self._session() as session:
                session.add(record)
                session.commit()
        except PersistenceError as e:
            if isinstance(e.__cause__, IntegrityError):
                raise PersistenceError(f"status record {record.id} already exists") from e.__cause__
            raise
        logger.info(f"status record created: {record.id} ({JobKind(record.kind).value}, pending)")
        return record

    def create_pending(self, job_id: str, kind: JobKind, title: Optional[str] = None, todo: Optional[str] = None) -> UploadJob:
        return self.create(UploadJob(id=job_id, kind=kind, title=title, todo=todo))

    def get(self, job_id: str) -> UploadJob:
        with self._session() as session:
            record = session.get(UploadJob, job_id)
        if record is None:
            raise RecordNotFound(f"no status record for {job_id}")
        return record

    def update(
        self,
        job_id: str,
        status: JobStatus,
        image_urls: Optional[List[str]] = None,
        error_message: Optional[str] = None,
    ) -> UploadJob:
        """move a record forward; raises InvalidTransition for backward moves"""
        status = JobStatus(status)
        if status is JobStatus.COMPLETED and not image_urls:
            raise InvalidTransition(f"{job_id}: completed needs at least one image url")
        if status is not JobStatus.COMPLETED and image_urls:
            raise InvalidTransition(f"{job_id}: image urls are only written with completed")

        with self._session() as session:
            record = session.exec(
                select(UploadJob).where(UploadJob.id == job_id).with_for_update()
            ).first()
            if record is None:
                raise RecordNotFound(f"no status record for {job_id}")

            current = JobStatus(record.status)
            if status not in allowed_next(current):
                raise InvalidTransition(f"{job_id}: {current.value} -> {status.value} not allowed")

            record.status = status
            if status is JobStatus.COMPLETED:
                record.image_urls = list(image_urls)
                record.error_message = None
            elif status is JobStatus.FAILED:
                record.error_message = error_message or "processing failed"
            else:
                record.error_message = None
            # never move updated_at backwards
            now = utcnow()
            record.updated_at = max(now, as_utc(record.updated_at) or now)

            session.add(record)
            session.commit()

        logger.info(f"status record {job_id}: {current.value} -> {status.value}")
        return record

    def mark_processing(self, job_id: str) -> UploadJob:
        return self.update(job_id, JobStatus.PROCESSING)

    def mark_completed(self, job_id: str, image_urls: List[str]) -> UploadJob:
        return self.update(job_id, JobStatus.COMPLETED, image_urls=image_urls)

    def mark_failed(self, job_id: str, error_message: str) -> UploadJob:
        return self.update(job_id, JobStatus.FAILED, error_message=error_message)

    def list_posts(self, limit: int = 50) -> List[UploadJob]:
        with self._session() as session:
            return list(session.exec(
                select(UploadJob)
                .where(UploadJob.kind == JobKind.POST)
                .order_by(UploadJob.created_at.desc())
                .limit(limit)
            ).all())

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._session() as session:
            rows = session.exec(
                select(UploadJob.status, func.count()).group_by(UploadJob.status)
            ).all()
        for status, count in rows:
            counts[JobStatus(status).value] = count
        return counts

    def ping(self) -> bool:
        with self._session() as session:
            session.exec(select(UploadJob.id).limit(1)).first()
        return True
