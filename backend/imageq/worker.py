"""
Queue consumers: one sequential loop per queue, each delivery runs

    received -> processing -> completed | failed

and is then acked, requeued, dead-lettered, or dropped. Errors on a single
input are logged and skipped; only a delivery with zero uploaded images is a
job-level failure. A delivery always runs to completion before the loop
takes the next one.
"""
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Union

import redis

from imageq.core.errors import (
    EnvelopeDecodeError,
    PersistenceError,
    RecordNotFound,
    StagingError,
    TranscodeError,
    UploadError,
    handle_worker_error,
)
from imageq.models.envelopes import BinaryJob, PostJob, decode_binary_job, decode_post_job
from imageq.models.jobs import JobKind, JobStatus
from imageq.services.filenames import content_type_for_handle
from imageq.services.job_tracker import StatusStore
from imageq.services.media import MediaUploader
from imageq.services.queue import Delivery, RedisBroker
from imageq.services.storage import BlobStore
from imageq.services.transcoder import ImageTranscoder

logger = logging.getLogger(__name__)

NO_IMAGES_PROCESSED = "no images were successfully processed"


class Outcome(str, Enum):
    ACKED = "acked"
    REQUEUED = "requeued"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"


@dataclass
class ProcessResult:
    urls: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def error_message(self) -> str:
        if not self.errors:
            return NO_IMAGES_PROCESSED
        return f"{NO_IMAGES_PROCESSED}: " + "; ".join(self.errors)


class JobProcessor:
    """compress -> upload -> clean up, for every staged input of a job, in order"""

    def __init__(
        self,
        blobs: BlobStore,
        transcoder: ImageTranscoder,
        uploader: MediaUploader,
        keep_files: bool = False,
    ):
        self.blobs = blobs
        self.transcoder = transcoder
        self.uploader = uploader
        self.keep_files = keep_files

    def process(self, job: Union[PostJob, BinaryJob]) -> ProcessResult:
        result = ProcessResult()
        for handle in job.handles:
            url = self.process_input(handle, result.errors)
            if url:
                result.urls.append(url)
        return result

    def discard(self, job: Union[PostJob, BinaryJob]) -> int:
        """delete whatever inputs of a settled job are still staged"""
        if self.keep_files:
            return 0
        removed = sum(1 for handle in job.handles if self.blobs.delete(handle))
        if removed:
            logger.info(f"removed {removed} leftover staged file(s) for job {job.job_id}")
        return removed

    def process_input(self, handle: str, errors: List[str]) -> Optional[str]:
        # check if the staged input still exists
        if not self.blobs.exists(handle):
            logger.warning(f"file not found: {handle}")
            errors.append(f"file not found: {handle}")
            return None

        try:
            original = self.blobs.read(handle)
        except StagingError as e:
            logger.error(f"error reading {handle}: {e}")
            errors.append(str(e))
            return None

        name = os.path.basename(handle)
        try:
            payload = self.transcoder.transcode(original, content_type_for_handle(handle))
        except TranscodeError as e:
            # upload the original if compression fails
            logger.warning(f"error compressing image {handle}: {e}, uploading original")
            payload = original

        transcoded = payload is not original
        if transcoded:
            logger.info(f"image compressed: {handle} ({len(original)} -> {len(payload)} bytes)")
        upload_name = f"{os.path.splitext(name)[0]}.jpg" if transcoded else name

        try:
            url = self.uploader.upload(payload, upload_name)
        except UploadError as e:
            # the staged input stays so a requeued delivery can retry it
            logger.error(f"error uploading {handle}: {e}")
            errors.append(str(e))
            return None

        if self.keep_files:
            if transcoded:
                self.blobs.put_bytes(f"{name}.compressed.jpg", payload)
            logger.info(f"keeping files for debugging: {handle}")
        else:
            self.blobs.delete(handle)

        return url


class QueueConsumer:
    """drains one queue, one delivery at a time"""

    def __init__(
        self,
        broker: RedisBroker,
        queue_name: str,
        kind: JobKind,
        processor: JobProcessor,
        store: StatusStore,
        max_attempts: int = 0,
    ):
        self.broker = broker
        self.queue_name = queue_name
        self.kind = JobKind(kind)
        self.processor = processor
        self.store = store
        self.max_attempts = max_attempts

    def decode(self, body: bytes) -> Union[PostJob, BinaryJob]:
        if self.kind is JobKind.POST:
            return decode_post_job(body)
        if self.kind is JobKind.BINARY:
            return decode_binary_job(body)
        raise ValueError(f"unknown job kind: {self.kind}")

    def _best_effort(self, action: Callable, *args) -> bool:
        # status writes never stop the pipeline
        try:
            action(*args)
            return True
        except PersistenceError as e:
            logger.error(f"status update failed ({action.__name__}): {e}")
            return False

    def _current_status(self, job_id: str) -> Optional[JobStatus]:
        try:
            return JobStatus(self.store.get(job_id).status)
        except RecordNotFound:
            logger.warning(f"no status record for {job_id}, processing anyway")
        except PersistenceError as e:
            logger.error(f"could not read status for {job_id}: {e}")
        return None

    def _attempts_exhausted(self, delivery: Delivery) -> bool:
        return bool(self.max_attempts) and delivery.attempt >= self.max_attempts

    def handle(self, delivery: Delivery) -> Outcome:
        try:
            job = self.decode(delivery.body)
        except EnvelopeDecodeError as e:
            # malformed envelopes are never retried
            logger.error(f"error decoding message on {self.queue_name}: {e}")
            self.broker.nack(delivery, requeue=False)
            return Outcome.DROPPED

        job_id = job.job_id
        logger.info(f"processing {self.kind.value} job {job_id} (attempt {delivery.attempt})")

        if self.max_attempts and delivery.attempt > self.max_attempts:
            return self._give_up(delivery, job, "delivery attempts exhausted")

        if self._current_status(job_id) is JobStatus.COMPLETED:
            logger.info(f"job {job_id} already completed, acknowledging duplicate delivery")
            self.broker.ack(delivery)
            self.processor.discard(job)
            return Outcome.ACKED

        self._best_effort(self.store.mark_processing, job_id)

        try:
            result = self.processor.process(job)
        except Exception as e:
            handle_worker_error(job_id, e)
            result = ProcessResult(errors=[f"unexpected error: {e}"])

        if result.urls:
            if self.kind is JobKind.BINARY:
                result.urls = result.urls[:1]
            self._best_effort(self.store.mark_completed, job_id, result.urls)
            self.broker.ack(delivery)
            # inputs that failed to upload won't be retried once acked
            self.processor.discard(job)
            logger.info(f"job {job_id} completed with {len(result.urls)} image(s) and acknowledged")
            return Outcome.ACKED

        return self._fail(delivery, job, result.error_message)

    def _fail(self, delivery: Delivery, job: Union[PostJob, BinaryJob], error: str) -> Outcome:
        job_id = job.job_id
        logger.error(f"error processing job {job_id}: {error}")

        if self._attempts_exhausted(delivery):
            return self._give_up(delivery, job, error)

        if self.kind is JobKind.BINARY:
            self._best_effort(self.store.mark_failed, job_id, error)

        self.broker.nack(delivery, requeue=True)
        logger.info(f"job {job_id} requeued (attempt {delivery.attempt})")
        return Outcome.REQUEUED

    def _give_up(self, delivery: Delivery, job: Union[PostJob, BinaryJob], error: str) -> Outcome:
        reason = f"{error} (gave up after {delivery.attempt} attempts)"
        self._best_effort(self.store.mark_failed, job.job_id, reason)
        self.broker.dead_letter(delivery, reason)
        self.processor.discard(job)
        return Outcome.DEAD_LETTERED

    def run_once(self, timeout: Optional[float] = None) -> Optional[Outcome]:
        """handle at most one delivery; None when the queue was empty"""
        delivery = self.broker.get(self.queue_name, timeout=timeout)
        if delivery is None:
            return None
        return self.handle(delivery)

    def run(self, stop_event: threading.Event, poll_timeout: float = 1.0, reconnect_delay: float = 5.0):
        """consume until stop_event is set; the current delivery always finishes first"""
        logger.info(f"consumer started on {self.queue_name} ({self.kind.value} jobs)")
        while not stop_event.is_set():
            try:
                for delivery in self.broker.consume(self.queue_name, stop_event, poll_timeout):
                    self.handle(delivery)
            except redis.RedisError as e:
                logger.error(f"queue error on {self.queue_name}: {e}. retrying in {reconnect_delay}s...")
                if stop_event.wait(reconnect_delay):
                    break
                try:
                    # nothing is being processed, anything in flight is ours to put back
                    self.broker.recover(self.queue_name)
                except redis.RedisError as e:
                    logger.error(f"recover failed on {self.queue_name}: {e}")
        logger.info(f"consumer stopped on {self.queue_name}")
