import cv2
import fakeredis
import numpy as np
import pytest

from imageq.core.container import Services
from imageq.core.db import make_engine
from imageq.core.errors import UploadError
from imageq.services.media import MediaUploader
from imageq.services.storage import MemoryBlobStore

CDN = "https://res.cloudinary.test/demo/image/upload/uploads"


class FakeUploader(MediaUploader):
    """records uploads; reject(filename) decides which ones fail"""

    def __init__(self):
        self.uploaded = []
        self.calls = 0
        self.reject = lambda filename: False

    def upload(self, data: bytes, filename: str) -> str:
        self.calls += 1
        if self.reject(filename):
            raise UploadError(f"upload rejected: {filename}")
        self.uploaded.append((filename, data))
        return f"{CDN}/{filename}"


def encode_image(ext: str, width: int = 32, height: int = 24, channels: int = 3) -> bytes:
    img = np.zeros((height, width, channels), dtype=np.uint8)
    img[:, : width // 2] = 200
    ok, buf = cv2.imencode(ext, img)
    assert ok
    return buf.tobytes()


@pytest.fixture
def jpeg_bytes():
    return encode_image(".jpg")


@pytest.fixture
def png_bytes():
    return encode_image(".png")


@pytest.fixture
def bmp_bytes():
    return encode_image(".bmp")


@pytest.fixture(name="engine")
def engine_fixture():
    engine = make_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture(name="redis_conn")
def redis_fixture():
    # a private server per test keeps queues isolated
    return fakeredis.FakeRedis(server=fakeredis.FakeServer())


@pytest.fixture(name="uploader")
def uploader_fixture():
    return FakeUploader()


@pytest.fixture(name="blobs")
def blobs_fixture():
    return MemoryBlobStore()


@pytest.fixture(name="services")
def services_fixture(engine, redis_conn, blobs, uploader):
    services = Services(
        engine=engine,
        redis_conn=redis_conn,
        blobs=blobs,
        uploader=uploader,
        consumer_name="test-worker",
        max_file_bytes=1024 * 1024,
        max_attempts=3,
    )
    services.open()
    yield services
    services.close()


@pytest.fixture(name="store")
def store_fixture(services):
    return services.store


@pytest.fixture(name="broker")
def broker_fixture(services):
    return services.broker
