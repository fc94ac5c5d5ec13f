"""
Job envelopes: the JSON unit of work placed on the queues.

Field names are the wire format shared by the API and the worker, so they
must not be renamed. Extra fields are ignored so older workers can read
newer envelopes.
"""
from datetime import datetime, timezone
from typing import List, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from imageq.core.errors import EnvelopeDecodeError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class PostJob(BaseModel):
    model_config = ConfigDict(extra="ignore")

    post_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    todo: str = ""
    file_paths: List[str] = Field(min_length=1)
    timestamp: str = Field(default_factory=_timestamp)

    @property
    def job_id(self) -> str:
        return self.post_id

    @property
    def handles(self) -> List[str]:
        return list(self.file_paths)


class BinaryJob(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job_id: str = Field(min_length=1)
    file_path: str = Field(min_length=1)
    timestamp: str = Field(default_factory=_timestamp)

    @property
    def handles(self) -> List[str]:
        return [self.file_path]


Envelope = Union[PostJob, BinaryJob]
E = TypeVar("E", PostJob, BinaryJob)


def encode_envelope(job: Envelope) -> bytes:
    return job.model_dump_json().encode("utf-8")


def _decode(model: Type[E], body: bytes) -> E:
    try:
        return model.model_validate_json(body)
    except (ValidationError, ValueError) as e:
        raise EnvelopeDecodeError(f"invalid {model.__name__} envelope: {e}") from e


def decode_post_job(body: bytes) -> PostJob:
    return _decode(PostJob, body)


def decode_binary_job(body: bytes) -> BinaryJob:
    return _decode(BinaryJob, body)
