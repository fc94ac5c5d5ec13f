import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, List, Optional, Sequence, Union
from uuid import uuid4

from imageq.core.errors import PersistenceError, PublishError, StagingError, SubmissionValidationError
from imageq.models.envelopes import BinaryJob, PostJob, encode_envelope
from imageq.models.jobs import JobKind, JobStatus, UploadJob
from imageq.services.filenames import extension_for_content_type, staged_filename
from imageq.services.job_tracker import StatusStore
from imageq.services.queue import RedisBroker
from imageq.services.storage import BlobStore

logger = logging.getLogger(__name__)


@dataclass
class IncomingFile:
    filename: Optional[str]
    stream: BinaryIO


@dataclass
class Submission:
    """what the caller gets back right away; processing happens later"""
    id: str
    kind: JobKind
    file_paths: List[str]
    status: JobStatus = JobStatus.PENDING


class Producer:
    """
    Turns an upload into a durable work item.

    Order matters: stage inputs, write the pending status record, then
    publish. A reader can therefore never see a queued job id without a
    record. If the publish fails the record stays pending; nothing here
    tries to heal it.
    """

    def __init__(
        self,
        store: StatusStore,
        broker: RedisBroker,
        blobs: BlobStore,
        post_queue: str = "image_processing",
        binary_queue: str = "binary_upload",
        max_file_bytes: Optional[int] = None,
    ):
        self.store = store
        self.broker = broker
        self.blobs = blobs
        self.post_queue = post_queue
        self.binary_queue = binary_queue
        self.max_file_bytes = max_file_bytes

    def submit_post(self, title: str, todo: Optional[str], files: Sequence[IncomingFile]) -> Submission:
        title = (title or "").strip()
        if not title:
            raise SubmissionValidationError("Title is required")
        if not files:
            raise SubmissionValidationError("No images provided. Use 'images' or 'files' field")

        # stage each file, skipping the ones that fail
        handles = []
        for incoming in files:
            try:
                handles.append(self.blobs.put(
                    staged_filename(incoming.filename),
                    incoming.stream,
                    max_bytes=self.max_file_bytes,
                ))
            except StagingError as e:
                logger.error(f"error staging {incoming.filename}: {e}")

        if not handles:
            raise SubmissionValidationError("No valid files processed")

        post_id = str(uuid4())
        record = UploadJob(id=post_id, kind=JobKind.POST, title=title, todo=todo or "")
        job = PostJob(post_id=post_id, title=title, todo=todo or "", file_paths=handles)
        self._record_and_publish(record, self.post_queue, job, handles)
        return Submission(id=post_id, kind=JobKind.POST, file_paths=handles)

    def submit_binary(self, data: bytes, content_type: Optional[str] = None) -> Submission:
        if not data:
            raise SubmissionValidationError("No file data provided")

        job_id = str(uuid4())
        try:
            handle = self.blobs.put(
                f"{job_id}{extension_for_content_type(content_type)}",
                io.BytesIO(data),
                max_bytes=self.max_file_bytes,
            )
        except StagingError as e:
            logger.error(f"error staging binary upload {job_id}: {e}")
            raise

        record = UploadJob(id=job_id, kind=JobKind.BINARY)
        job = BinaryJob(job_id=job_id, file_path=handle)
        self._record_and_publish(record, self.binary_queue, job, [handle])
        return Submission(id=job_id, kind=JobKind.BINARY, file_paths=[handle])

    def _record_and_publish(self, record: UploadJob, queue_name: str, job: Union[PostJob, BinaryJob], handles: List[str]):
        try:
            self.store.create(record)
        except PersistenceError as e:
            logger.error(f"error saving status record {record.id}: {e}")
            self._discard(handles)
            raise

        try:
            self.broker.publish(queue_name, encode_envelope(job))
        except PublishError as e:
            # the record stays pending, reconciliation is out of band
            logger.error(f"error publishing job {record.id}: {e}")
            self._discard(handles)
            raise

        logger.info(f"job published to {queue_name}: {record.id} ({len(handles)} file(s))")

    def _discard(self, handles: List[str]):
        for handle in handles:
            self.blobs.delete(handle)
