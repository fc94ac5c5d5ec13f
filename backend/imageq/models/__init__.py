from imageq.models.jobs import UploadJob, JobStatus, JobKind
from imageq.models.envelopes import PostJob, BinaryJob

__all__ = [
    "UploadJob",
    "JobStatus",
    "JobKind",
    "PostJob",
    "BinaryJob",
]
