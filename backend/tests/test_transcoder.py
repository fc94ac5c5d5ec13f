import cv2
import numpy as np
import pytest

from imageq.core.errors import TranscodeError
from imageq.services.transcoder import ImageTranscoder, sniff_format

from conftest import encode_image

WEBP_HEADER = b"RIFF\x24\x00\x00\x00WEBPVP8 "


def decode(data: bytes):
    return cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)


@pytest.fixture
def transcoder():
    return ImageTranscoder(quality=80)


def test_sniff_format(jpeg_bytes, png_bytes, bmp_bytes):
    assert sniff_format(jpeg_bytes) == "image/jpeg"
    assert sniff_format(png_bytes) == "image/png"
    assert sniff_format(bmp_bytes) == "image/bmp"
    assert sniff_format(WEBP_HEADER) == "image/webp"
    assert sniff_format(b"hello") is None


def test_jpeg_is_reencoded(transcoder, jpeg_bytes):
    out = transcoder.transcode(jpeg_bytes, "image/jpeg")
    assert sniff_format(out) == "image/jpeg"
    assert decode(out).shape == (24, 32, 3)


def test_png_becomes_jpeg(transcoder, png_bytes):
    out = transcoder.transcode(png_bytes, "image/png")
    assert sniff_format(out) == "image/jpeg"
    assert decode(out).shape == (24, 32, 3)


def test_png_with_alpha(transcoder):
    out = transcoder.transcode(encode_image(".png", channels=4), "image/png")
    assert sniff_format(out) == "image/jpeg"


def test_format_is_sniffed_when_not_declared(transcoder, png_bytes):
    assert sniff_format(transcoder.transcode(png_bytes)) == "image/jpeg"


def test_webp_passes_through(transcoder):
    data = WEBP_HEADER + b"\x00" * 16
    assert transcoder.transcode(data, "image/webp") == data


@pytest.mark.parametrize("declared", ["image/bmp", None])
def test_bmp_is_unsupported(transcoder, bmp_bytes, declared):
    with pytest.raises(TranscodeError, match="unsupported"):
        transcoder.transcode(bmp_bytes, declared)


def test_undecodable_data(transcoder):
    with pytest.raises(TranscodeError):
        transcoder.transcode(b"\xff\xd8\xff not really a jpeg", "image/jpeg")


def test_unknown_format(transcoder):
    with pytest.raises(TranscodeError):
        transcoder.transcode(b"plain text")


def test_quality_range():
    with pytest.raises(ValueError):
        ImageTranscoder(quality=0)
