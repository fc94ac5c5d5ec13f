import logging
from typing import Optional

import cv2
import numpy as np

from imageq.core.errors import TranscodeError

logger = logging.getLogger(__name__)

JPEG_FORMATS = ("image/jpeg", "image/jpg")
REENCODE_FORMATS = JPEG_FORMATS + ("image/png",)
PASSTHROUGH_FORMATS = ("image/webp",)


def sniff_format(data: bytes) -> Optional[str]:
    """detect the image format from magic bytes"""
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:2] == b"BM":
        return "image/bmp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return None


class ImageTranscoder:
    """
    re-encodes uploads as smaller jpegs before they go to the media host.

    jpeg and png are decoded and written back as jpeg at a fixed quality,
    webp is already compact and passes through untouched. any other format
    raises TranscodeError so the caller can fall back to the original bytes.
    """

    def __init__(self, quality: int = 80):
        if not 1 <= quality <= 100:
            raise ValueError(f"jpeg quality must be 1-100, got {quality}")
        self.quality = quality

    def transcode(self, data: bytes, declared_format: Optional[str] = None) -> bytes:
        fmt = (declared_format or "").split(";", 1)[0].strip().lower() or sniff_format(data)
        if fmt is None:
            raise TranscodeError("unknown image format")

        if fmt in PASSTHROUGH_FORMATS:
            return data

        if fmt not in REENCODE_FORMATS:
            raise TranscodeError(f"unsupported image format: {fmt}")

        if not data:
            raise TranscodeError("empty image data")

        # alpha is dropped, jpeg has no transparency
        img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            raise TranscodeError(f"error decoding {fmt}")

        ok, encoded = cv2.imencode(".jpg", img, [int(cv2.IMWRITE_JPEG_QUALITY), self.quality])
        if not ok:
            raise TranscodeError("error encoding compressed image")

        compressed = encoded.tobytes()
        logger.debug(f"transcoded {fmt}: {len(data)} -> {len(compressed)} bytes")
        return compressed
