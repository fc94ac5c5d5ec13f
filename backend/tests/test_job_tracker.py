from datetime import datetime, timedelta, timezone

import pytest

from imageq.core.errors import InvalidTransition, PersistenceError, RecordNotFound
from imageq.models.jobs import ALLOWED_TRANSITIONS, JobKind, JobStatus, UploadJob, as_utc, utcnow

URL = "https://res.cloudinary.test/uploads/a.jpg"


def test_transition_table_covers_every_status():
    assert set(ALLOWED_TRANSITIONS) == set(JobStatus)
    assert ALLOWED_TRANSITIONS[JobStatus.COMPLETED] == {JobStatus.COMPLETED}


def test_create_starts_pending(store):
    store.create_pending("p1", JobKind.POST, title="Sunset", todo="crop")

    record = store.get("p1")
    assert record.status == JobStatus.PENDING
    assert record.kind == JobKind.POST
    assert record.title == "Sunset"
    assert record.image_urls == []
    assert record.error_message is None


def test_create_duplicate_id(store):
    store.create_pending("p1", JobKind.POST, title="Sunset")
    with pytest.raises(PersistenceError):
        store.create_pending("p1", JobKind.POST, title="Again")


def test_get_missing(store):
    with pytest.raises(RecordNotFound):
        store.get("nope")


def test_update_missing(store):
    with pytest.raises(RecordNotFound):
        store.mark_processing("nope")


def test_happy_path(store):
    store.create_pending("b1", JobKind.BINARY)
    store.mark_processing("b1")
    store.mark_completed("b1", [URL])

    status = store.get("b1").to_status_dict()
    assert status == {
        "job_id": "b1",
        "status": "completed",
        "image_urls": [URL],
        "image_url": URL,
    }


def test_completed_requires_urls(store):
    store.create_pending("p1", JobKind.POST, title="t")
    with pytest.raises(InvalidTransition):
        store.mark_completed("p1", [])
    assert store.get("p1").status == JobStatus.PENDING


def test_urls_only_with_completed(store):
    store.create_pending("p1", JobKind.POST, title="t")
    with pytest.raises(InvalidTransition):
        store.update("p1", JobStatus.PROCESSING, image_urls=[URL])


@pytest.mark.parametrize("target", [JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.FAILED])
def test_completed_never_moves_backwards(store, target):
    store.create_pending("p1", JobKind.POST, title="t")
    store.mark_completed("p1", [URL])
    with pytest.raises(InvalidTransition):
        store.update("p1", target, error_message="late failure")
    record = store.get("p1")
    assert record.status == JobStatus.COMPLETED
    assert record.image_urls == [URL]


def test_failed_can_be_retried(store):
    store.create_pending("b1", JobKind.BINARY)
    store.mark_processing("b1")
    store.mark_failed("b1", "upload failed")
    assert store.get("b1").to_status_dict()["error"] == "upload failed"

    # requeued redelivery
    store.mark_processing("b1")
    record = store.get("b1")
    assert record.status == JobStatus.PROCESSING
    assert record.error_message is None

    store.mark_completed("b1", [URL])
    assert store.get("b1").status == JobStatus.COMPLETED


def test_pending_is_never_reentered(store):
    store.create_pending("p1", JobKind.POST, title="t")
    store.mark_processing("p1")
    with pytest.raises(InvalidTransition):
        store.update("p1", JobStatus.PENDING)


def test_updated_at_is_monotonic(store):
    store.create_pending("p1", JobKind.POST, title="t")
    stamps = [store.get("p1").updated_at]
    for action in (store.mark_processing, store.mark_processing):
        action("p1")
        stamps.append(store.get("p1").updated_at)
    store.mark_completed("p1", [URL])
    stamps.append(store.get("p1").updated_at)
    assert stamps == sorted(stamps)


def test_list_posts_newest_first(store):
    store.create(UploadJob(id="old", kind=JobKind.POST, title="old", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)))
    store.create(UploadJob(id="new", kind=JobKind.POST, title="new", created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)))
    store.create_pending("bin", JobKind.BINARY)

    assert [p.id for p in store.list_posts()] == ["new", "old"]
    assert [p.id for p in store.list_posts(limit=1)] == ["new"]


def test_count_by_status(store):
    store.create_pending("a", JobKind.POST, title="a")
    store.create_pending("b", JobKind.BINARY)
    store.mark_failed("b", "boom")

    assert store.count_by_status() == {
        "pending": 1,
        "processing": 0,
        "completed": 0,
        "failed": 1,
    }


def test_timestamp_columns_are_timezone_aware():
    columns = UploadJob.__table__.c
    assert columns.created_at.type.timezone is True
    assert columns.updated_at.type.timezone is True


def test_timestamps_round_trip_as_utc(store):
    before = utcnow() - timedelta(seconds=1)
    store.create_pending("p1", JobKind.POST, title="t")
    store.mark_processing("p1")

    record = store.get("p1")
    assert as_utc(record.created_at) >= before
    assert as_utc(record.updated_at) >= as_utc(record.created_at)

    post = record.to_post_dict()
    assert post["created_at"].endswith("+00:00")
    assert post["updated_at"].endswith("+00:00")


def test_as_utc():
    naive = datetime(2024, 1, 1, 12, 0)
    assert as_utc(naive) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    aware = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert as_utc(aware) is aware
    assert as_utc(None) is None
