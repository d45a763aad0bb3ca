"""Filesystem-backed object store."""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from clipforge.storage.base import ObjectStore, ObjectNotFoundError

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Stores objects as files under a root directory.

    Writes go to a temp file in the target directory and are renamed into
    place, so readers never observe a partially written object.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        key = key.lstrip("/")
        if ".." in Path(key).parts:
            raise ValueError(f"Invalid object key: {key}")
        return self.root / key

    def _write_atomic(self, path: Path, writer) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as handle:
                writer(handle)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        self._write_atomic(self._path(key), lambda handle: handle.write(data))

    async def get_bytes(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.read_bytes()

    async def upload_file(self, key: str, path: Path, content_type: str = "application/octet-stream") -> None:
        path = Path(path)
        with open(path, "rb") as source:
            self._write_atomic(self._path(key), lambda handle: shutil.copyfileobj(source, handle))
        logger.debug(f"Stored {path} as {key}")

    async def download_file(self, key: str, path: Path) -> Path:
        source = self._path(key)
        if not source.is_file():
            raise ObjectNotFoundError(key)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, path)
        return path

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        prefix = prefix.lstrip("/")
        # Walk from the deepest directory fully named by the prefix
        base_dir = self._path(prefix) if prefix.endswith("/") else self._path(prefix).parent
        if not base_dir.is_dir():
            return []

        keys = []
        for path in sorted(base_dir.rglob("*")):
            if not path.is_file() or path.name.startswith(".tmp-"):
                continue
            key = path.relative_to(self.root).as_posix()
            if key.startswith(prefix):
                keys.append(key)
                if limit is not None and len(keys) >= limit:
                    break
        return keys

    async def size(self, key: str) -> int:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path.stat().st_size
