import io
import logging
import os
import shutil
import threading
import uuid
from typing import BinaryIO, Dict, Optional

from imageq.core.errors import StagingError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class BlobStore:
    """
    staged input bytes behind opaque string handles.

    the producer puts blobs and hands the handles to the queue, the consumer
    reads and deletes them. handles are only meaningful to the store that
    issued them.
    """

    def put(self, name: str, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        raise NotImplementedError

    def put_bytes(self, name: str, data: bytes, max_bytes: Optional[int] = None) -> str:
        return self.put(name, io.BytesIO(data), max_bytes=max_bytes)

    def read(self, handle: str) -> bytes:
        raise NotImplementedError

    def exists(self, handle: str) -> bool:
        raise NotImplementedError

    def delete(self, handle: str) -> bool:
        raise NotImplementedError

    def usage(self) -> dict:
        raise NotImplementedError


def _copy_limited(src: BinaryIO, dst: BinaryIO, max_bytes: Optional[int]) -> int:
    total = 0
    for chunk in iter(lambda: src.read(CHUNK_SIZE), b""):
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise StagingError(f"file exceeds {max_bytes} bytes")
        dst.write(chunk)
    return total


class LocalBlobStore(BlobStore):
    """blobs as files under a staging directory; handles are absolute paths"""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def ensure_root(self):
        os.makedirs(self.root, exist_ok=True)

    def _resolve(self, handle: str) -> Optional[str]:
        # only paths inside the staging root are ours
        path = os.path.abspath(handle)
        if os.path.commonpath([path, self.root]) != self.root or path == self.root:
            return None
        return path

    def put(self, name: str, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        self.ensure_root()
        final_path = os.path.join(self.root, os.path.basename(name))
        temp_path = f"{final_path}.{uuid.uuid4().hex}.part"
        try:
            with open(temp_path, "wb") as buffer:
                size = _copy_limited(stream, buffer, max_bytes)
            os.replace(temp_path, final_path)
        except StagingError:
            self._discard(temp_path)
            raise
        except OSError as e:
            self._discard(temp_path)
            raise StagingError(f"could not stage {name}: {e}") from e
        logger.info(f"file staged: {final_path} (size: {size} bytes)")
        return final_path

    def read(self, handle: str) -> bytes:
        path = self._resolve(handle)
        if path is None:
            raise StagingError(f"handle outside staging root: {handle}")
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise StagingError(f"could not read {handle}: {e}") from e

    def exists(self, handle: str) -> bool:
        path = self._resolve(handle)
        return path is not None and os.path.isfile(path)

    def delete(self, handle: str) -> bool:
        path = self._resolve(handle)
        if path is None:
            return False
        return self._discard(path)

    def _discard(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"could not delete {path}: {e}")
            return False

    def usage(self) -> dict:
        """current staging usage, for metrics"""
        files = 0
        total = 0
        try:
            for entry in os.scandir(self.root):
                if entry.is_file():
                    files += 1
                    total += entry.stat().st_size
        except FileNotFoundError:
            pass
        disk = shutil.disk_usage(self.root) if os.path.isdir(self.root) else None
        return {
            "backend": "local",
            "root": self.root,
            "files": files,
            "bytes": total,
            "disk_free_gb": disk.free / (1024**3) if disk else None,
        }


class MemoryBlobStore(BlobStore):
    """blobs held in process memory; only usable when api and worker share a process"""

    PREFIX = "mem://"

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, name: str, stream: BinaryIO, max_bytes: Optional[int] = None) -> str:
        buffer = io.BytesIO()
        _copy_limited(stream, buffer, max_bytes)
        handle = f"{self.PREFIX}{os.path.basename(name)}"
        with self._lock:
            self._blobs[handle] = buffer.getvalue()
        return handle

    def read(self, handle: str) -> bytes:
        with self._lock:
            try:
                return self._blobs[handle]
            except KeyError:
                raise StagingError(f"no blob for handle {handle}") from None

    def exists(self, handle: str) -> bool:
        with self._lock:
            return handle in self._blobs

    def delete(self, handle: str) -> bool:
        with self._lock:
            return self._blobs.pop(handle, None) is not None

    def usage(self) -> dict:
        with self._lock:
            return {
                "backend": "memory",
                "files": len(self._blobs),
                "bytes": sum(len(b) for b in self._blobs.values()),
            }
