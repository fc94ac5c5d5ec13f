import cloudinary.exceptions
import cloudinary.uploader
import pytest

from imageq.core.errors import UploadError
from imageq.services.media import CloudinaryUploader

SECURE_URL = "https://res.cloudinary.com/demo/image/upload/v1/uploads/abc.jpg"


class FakeUploadApi:
    """stands in for cloudinary.uploader.upload; replies are returned or raised in order"""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def __call__(self, file, **options):
        self.calls.append((file.read(), options))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def uploader():
    return CloudinaryUploader(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        timeout=5,
        retries=3,
        retry_delay=0,
    )


def test_missing_credentials():
    with pytest.raises(ValueError):
        CloudinaryUploader(cloud_name="demo", api_key="", api_secret="")


def test_upload_sends_credentials_and_transformation(uploader, monkeypatch):
    api = FakeUploadApi({"secure_url": SECURE_URL, "public_id": "uploads/abc"})
    monkeypatch.setattr(cloudinary.uploader, "upload", api)

    assert uploader.upload(b"jpegbytes", "abc.jpg") == SECURE_URL

    data, options = api.calls[0]
    assert data == b"jpegbytes"
    assert options["filename"] == "abc.jpg"
    assert options["folder"] == "uploads"
    assert options["resource_type"] == "image"
    assert options["raw_transformation"] == "q_auto,f_auto,w_1280"
    assert (options["cloud_name"], options["api_key"], options["api_secret"]) == ("demo", "key", "secret")
    assert options["timeout"] == 5


def test_api_error_is_retried_then_raised(uploader, monkeypatch):
    api = FakeUploadApi(cloudinary.exceptions.Error("Server returned unexpected status code - 500"))
    monkeypatch.setattr(cloudinary.uploader, "upload", api)

    with pytest.raises(UploadError, match="500"):
        uploader.upload(b"data", "abc.jpg")
    assert len(api.calls) == 3


def test_transient_failure_recovers(uploader, monkeypatch):
    api = FakeUploadApi(ConnectionResetError("reset by peer"), {"secure_url": SECURE_URL})
    monkeypatch.setattr(cloudinary.uploader, "upload", api)

    assert uploader.upload(b"data", "abc.jpg") == SECURE_URL
    assert len(api.calls) == 2


def test_response_without_url(uploader, monkeypatch):
    monkeypatch.setattr(cloudinary.uploader, "upload", FakeUploadApi({"public_id": "abc"}))

    with pytest.raises(UploadError):
        uploader.upload(b"data", "abc.jpg")


def test_plain_url_is_accepted(uploader, monkeypatch):
    url = "http://res.cloudinary.com/demo/image/upload/v1/uploads/abc.jpg"
    monkeypatch.setattr(cloudinary.uploader, "upload", FakeUploadApi({"url": url}))

    assert uploader.upload(b"data", "abc.jpg") == url
