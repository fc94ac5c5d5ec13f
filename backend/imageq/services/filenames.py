import mimetypes
import os
from typing import Optional
from uuid import uuid4

DEFAULT_EXTENSION = ".jpg"

# content types we know how to name; anything else is staged as .jpg like the clients expect
_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


def staged_filename(original_filename: Optional[str]) -> str:
    """
    generates a collision-free staging name that keeps the original extension
    example: photo.PNG -> 3f0c...e1.png
    """
    ext = os.path.splitext(original_filename or "")[1].lower()
    if not ext:
        ext = DEFAULT_EXTENSION
    return f"{uuid4()}{ext}"


def extension_for_content_type(content_type: Optional[str]) -> str:
    """map a request Content-Type to a staging extension, defaulting to .jpg"""
    if not content_type:
        return DEFAULT_EXTENSION
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type in _EXTENSIONS:
        return _EXTENSIONS[media_type]
    # loose matches like "image/x-png"
    if "png" in media_type:
        return ".png"
    if "webp" in media_type:
        return ".webp"
    return DEFAULT_EXTENSION


_CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".gif": "image/gif",
}


def content_type_for_handle(handle: str) -> Optional[str]:
    """declared format of a staged blob, from its extension"""
    ext = os.path.splitext(handle)[1].lower()
    if ext in _CONTENT_TYPES:
        return _CONTENT_TYPES[ext]
    return mimetypes.guess_type(f"x{ext}")[0]
