import logging
from typing import Callable, Any, Tuple, Type
from functools import wraps
import time

logger = logging.getLogger(__name__)

def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
):
    """
    decorator to retry a function with exponential backoff

    usage:
        @retry_with_backoff(max_retries=5, initial_delay=2.0)
        def upload_image(data):
            # ... code that might fail ...

    exceptions not listed in retry_on propagate immediately.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            delay = initial_delay
            attempts = max(1, max_retries)

            for attempt in range(attempts):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt < attempts - 1:
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{attempts}): {str(e)}. "
                            f"retrying in {delay}s..."
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logger.error(
                            f"{func.__name__} failed after {attempts} attempts: {str(e)}"
                        )
                        # all retries exhausted
                        raise

        return wrapper
    return decorator


def handle_worker_error(job_id: str, error: Exception):
    """
    centralized error handler for job-level failures in the worker.
    the user-visible outcome is always written to the status record, this only logs.
    """
    logger.error(f"job {job_id} failed: {error}", exc_info=error)


class ImageQueueError(Exception):
    """base exception for imageq-specific errors"""
    pass


class SubmissionValidationError(ImageQueueError):
    """raised when a submission is rejected before anything is enqueued"""
    pass


class StagingError(ImageQueueError):
    """raised when input bytes cannot be staged or read back"""
    pass


class TranscodeError(ImageQueueError):
    """raised when an image cannot be decoded or re-encoded"""
    pass


class UploadError(ImageQueueError):
    """raised when the media host rejects or fails an upload"""
    pass


class EnvelopeDecodeError(ImageQueueError):
    """raised when a queue message is not a valid job envelope"""
    pass


class PublishError(ImageQueueError):
    """raised when a job envelope cannot be published to the queue"""
    pass


class PersistenceError(ImageQueueError):
    """raised when the status store cannot be read or written"""
    pass


class RecordNotFound(PersistenceError):
    """raised when no status record exists for an id"""
    pass


class InvalidTransition(PersistenceError):
    """raised when a status update would move a record backwards"""
    pass
