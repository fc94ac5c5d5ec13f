from fastapi import APIRouter, Depends, HTTPException, Query

from imageq.api.deps import get_store
from imageq.core.errors import PersistenceError, RecordNotFound
from imageq.models.jobs import JobKind
from imageq.services.job_tracker import StatusStore

router = APIRouter()


@router.get("/upload-status/{job_id}")
def upload_status(job_id: str, store: StatusStore = Depends(get_store)):
    """poll a submission until it is completed or failed"""
    try:
        record = store.get(job_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to query database: {e}")
    return record.to_status_dict()


@router.get("/posts")
def list_posts(limit: int = Query(default=50, ge=1, le=200), store: StatusStore = Depends(get_store)):
    """newest posts first"""
    try:
        posts = store.list_posts(limit=limit)
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to query database: {e}")
    return [post.to_post_dict() for post in posts]


@router.get("/posts/{post_id}")
def get_post(post_id: str, store: StatusStore = Depends(get_store)):
    try:
        record = store.get(post_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Post not found")
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=f"Failed to query database: {e}")
    if JobKind(record.kind) is not JobKind.POST:
        raise HTTPException(status_code=404, detail="Post not found")
    return record.to_post_dict()
