from typing import List

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from starlette.concurrency import run_in_threadpool

from imageq.api.deps import get_producer
from imageq.core.errors import PersistenceError, PublishError, StagingError, SubmissionValidationError
from imageq.services.producer import IncomingFile, Producer

router = APIRouter()


@router.post("/upload")
def upload_post(
    title: str = Form(default=""),
    todo: str = Form(default=""),
    images: List[UploadFile] = File(default=[]),
    files: List[UploadFile] = File(default=[]),
    producer: Producer = Depends(get_producer),
):
    """stage the images, record a pending post and queue it for the worker"""
    # support both "images" and "files" field names
    uploads = images or files
    incoming = [IncomingFile(filename=f.filename, stream=f.file) for f in uploads]

    try:
        submission = producer.submit_post(title, todo, incoming)
    except SubmissionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save post: {e}")
    except PublishError as e:
        raise HTTPException(status_code=500, detail=f"Failed to queue job: {e}")

    return {
        "message": "Files uploaded and queued for processing",
        "post_id": submission.id,
        "status": submission.status.value,
        "file_paths": submission.file_paths,
    }


@router.post("/upload-binary")
async def upload_binary(request: Request, producer: Producer = Depends(get_producer)):
    """raw image bytes in the body; the Content-Type picks the file extension"""
    limit = producer.max_file_bytes

    # reject on the declared size before reading anything
    declared = request.headers.get("content-length", "")
    if limit is not None and declared.isdigit() and int(declared) > limit:
        raise HTTPException(status_code=413, detail="File too large")

    # chunked bodies carry no length, stop reading once past the limit
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if limit is not None and len(body) > limit:
            raise HTTPException(status_code=413, detail="File too large")

    if not body:
        raise HTTPException(status_code=400, detail="No file data provided")
    body = bytes(body)

    try:
        submission = await run_in_threadpool(
            producer.submit_binary, body, request.headers.get("content-type")
        )
    except SubmissionValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StagingError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save file: {e}")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save job: {e}")
    except PublishError as e:
        raise HTTPException(status_code=500, detail=f"Failed to queue job: {e}")

    return {
        "message": "File uploaded and queued for processing",
        "job_id": submission.id,
        "status": submission.status.value,
    }
