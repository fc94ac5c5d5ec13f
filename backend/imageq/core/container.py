import logging
from typing import Optional

from redis import Redis
from sqlalchemy.engine import Engine

from imageq.core.config import Settings
from imageq.core.db import init_db, make_engine
from imageq.models.jobs import JobKind
from imageq.services.job_tracker import StatusStore
from imageq.services.media import CloudinaryUploader, MediaUploader
from imageq.services.producer import Producer
from imageq.services.queue import RedisBroker
from imageq.services.storage import BlobStore, LocalBlobStore
from imageq.services.transcoder import ImageTranscoder
from imageq.worker import JobProcessor, QueueConsumer

logger = logging.getLogger(__name__)


class Services:
    """
    Every client the api and the worker talk to, built once per process.

    open() and close() bracket the process lifetime; nothing in the package
    holds a connection at import time.
    """

    def __init__(
        self,
        engine: Engine,
        redis_conn: Redis,
        blobs: BlobStore,
        uploader: Optional[MediaUploader] = None,
        transcoder: Optional[ImageTranscoder] = None,
        post_queue: str = "image_processing",
        binary_queue: str = "binary_upload",
        consumer_name: str = "worker",
        max_file_bytes: Optional[int] = None,
        max_attempts: int = 0,
        keep_files: bool = False,
    ):
        self.engine = engine
        self.redis = redis_conn
        self.blobs = blobs
        self.uploader = uploader
        self.transcoder = transcoder or ImageTranscoder()
        self.post_queue = post_queue
        self.binary_queue = binary_queue
        self.max_file_bytes = max_file_bytes
        self.max_attempts = max_attempts
        self.keep_files = keep_files

        self.store = StatusStore(engine)
        self.broker = RedisBroker(redis_conn, consumer_name=consumer_name)

    @classmethod
    def from_settings(cls, settings: Settings, with_uploader: bool = False) -> "Services":
        """wire production clients; the api process doesn't need the uploader"""
        uploader = None
        if with_uploader:
            uploader = CloudinaryUploader(
                cloud_name=settings.CLOUDINARY_CLOUD_NAME,
                api_key=settings.CLOUDINARY_API_KEY,
                api_secret=settings.CLOUDINARY_API_SECRET,
                folder=settings.CLOUDINARY_FOLDER,
                transformation=settings.CLOUDINARY_TRANSFORMATION,
                timeout=settings.UPLOAD_TIMEOUT,
                retries=settings.UPLOAD_RETRIES,
            )
        return cls(
            engine=make_engine(settings.DATABASE_URL),
            redis_conn=Redis.from_url(settings.REDIS_URL),
            blobs=LocalBlobStore(settings.STAGING_DIR),
            uploader=uploader,
            transcoder=ImageTranscoder(quality=settings.JPEG_QUALITY),
            post_queue=settings.POST_QUEUE,
            binary_queue=settings.BINARY_QUEUE,
            consumer_name=settings.WORKER_NAME,
            max_file_bytes=settings.max_upload_bytes,
            max_attempts=settings.MAX_DELIVERY_ATTEMPTS,
            keep_files=settings.KEEP_FILES,
        )

    def open(self):
        init_db(self.engine)
        self.redis.ping()
        self.broker.declare(self.post_queue, durable=True)
        self.broker.declare(self.binary_queue, durable=True)
        if isinstance(self.blobs, LocalBlobStore):
            self.blobs.ensure_root()
        logger.info("database, redis and queues ready")

    def close(self):
        if self.uploader is not None:
            self.uploader.close()
        self.redis.close()
        self.engine.dispose()
        logger.info("connections closed")

    def producer(self) -> Producer:
        return Producer(
            store=self.store,
            broker=self.broker,
            blobs=self.blobs,
            post_queue=self.post_queue,
            binary_queue=self.binary_queue,
            max_file_bytes=self.max_file_bytes,
        )

    def consumers(self) -> list:
        """one consumer per queue: post jobs and binary jobs"""
        if self.uploader is None:
            raise RuntimeError("consumers need a media uploader")
        processor = JobProcessor(
            blobs=self.blobs,
            transcoder=self.transcoder,
            uploader=self.uploader,
            keep_files=self.keep_files,
        )
        return [
            QueueConsumer(self.broker, self.post_queue, JobKind.POST, processor, self.store, self.max_attempts),
            QueueConsumer(self.broker, self.binary_queue, JobKind.BINARY, processor, self.store, self.max_attempts),
        ]
