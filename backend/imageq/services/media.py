import io
import logging

import cloudinary.exceptions
import cloudinary.uploader

from imageq.core.errors import UploadError, retry_with_backoff

logger = logging.getLogger(__name__)


class MediaUploader:
    """uploads image bytes to the remote media host and returns a public url"""

    def upload(self, data: bytes, filename: str) -> str:
        raise NotImplementedError

    def close(self):
        pass


class CloudinaryUploader(MediaUploader):
    """
    Image uploads through the Cloudinary SDK.

    Credentials go with every call instead of the SDK's global config, so
    several uploaders can live in one process. Cloudinary applies the
    incoming transformation (auto quality, auto format, max width) on its
    side, so the stored asset can differ from the bytes we send.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "uploads",
        transformation: str = "q_auto,f_auto,w_1280",
        timeout: float = 60.0,
        retries: int = 3,
        retry_delay: float = 2.0,
    ):
        if not (cloud_name and api_key and api_secret):
            raise ValueError(
                "cloudinary credentials not found. please set CLOUDINARY_CLOUD_NAME, "
                "CLOUDINARY_API_KEY, and CLOUDINARY_API_SECRET"
            )
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.transformation = transformation
        self.timeout = timeout
        self._upload_with_retry = retry_with_backoff(
            max_retries=retries,
            initial_delay=retry_delay,
            retry_on=(UploadError,),
        )(self._upload_once)

    def upload(self, data: bytes, filename: str) -> str:
        return self._upload_with_retry(data, filename)

    def _upload_once(self, data: bytes, filename: str) -> str:
        size_mb = len(data) / (1024 * 1024)
        logger.info(f"uploading {filename} ({size_mb:.2f} MB) to cloudinary")

        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(data),
                filename=filename,
                folder=self.folder,
                resource_type="image",
                raw_transformation=self.transformation,
                cloud_name=self.cloud_name,
                api_key=self.api_key,
                api_secret=self.api_secret,
                timeout=self.timeout,
            )
        except cloudinary.exceptions.Error as e:
            raise UploadError(f"error uploading to Cloudinary: {e}") from e
        except OSError as e:
            # connection failures below the sdk
            raise UploadError(f"error reaching Cloudinary: {e}") from e

        url = (result or {}).get("secure_url") or (result or {}).get("url")
        if not url:
            raise UploadError(f"cloudinary response has no url: {result}")

        logger.info(f"uploaded to cloudinary: {url}")
        return url
