"""Google Cloud Storage object store.

Uses default credentials (GOOGLE_APPLICATION_CREDENTIALS or ADC). The
client library is blocking, so every call runs in a worker thread.
"""
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from clipforge.storage.base import ObjectStore, ObjectNotFoundError

logger = logging.getLogger(__name__)


class GCSObjectStore(ObjectStore):
    """Objects stored as blobs in one GCS bucket."""

    def __init__(self, bucket_name: str, client=None):
        self.bucket_name = bucket_name
        self._client = client
        self._bucket = None

    def _get_bucket(self):
        if self._bucket is None:
            if self._client is None:
                from google.cloud import storage

                self._client = storage.Client()
            self._bucket = self._client.bucket(self.bucket_name)
        return self._bucket

    def _blob(self, key: str):
        return self._get_bucket().blob(key)

    @staticmethod
    def _not_found(exc: Exception) -> bool:
        from google.api_core import exceptions as gexc

        return isinstance(exc, gexc.NotFound)

    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        blob = self._blob(key)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)

    async def get_bytes(self, key: str) -> bytes:
        blob = self._blob(key)
        try:
            return await asyncio.to_thread(blob.download_as_bytes)
        except Exception as exc:
            if self._not_found(exc):
                raise ObjectNotFoundError(key) from exc
            raise

    async def upload_file(self, key: str, path: Path, content_type: str = "application/octet-stream") -> None:
        blob = self._blob(key)
        await asyncio.to_thread(blob.upload_from_filename, str(path), content_type=content_type)
        logger.debug(f"Uploaded {path} to gs://{self.bucket_name}/{key}")

    async def download_file(self, key: str, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        blob = self._blob(key)
        try:
            await asyncio.to_thread(blob.download_to_filename, str(path))
        except Exception as exc:
            if self._not_found(exc):
                # download_to_filename leaves an empty file behind
                path.unlink(missing_ok=True)
                raise ObjectNotFoundError(key) from exc
            raise
        return path

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._blob(key).exists)

    async def list(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        bucket = self._get_bucket()

        def _list():
            blobs = bucket.list_blobs(prefix=prefix, max_results=limit)
            return [blob.name for blob in blobs]

        return await asyncio.to_thread(_list)

    async def size(self, key: str) -> int:
        blob = await asyncio.to_thread(self._get_bucket().get_blob, key)
        if blob is None:
            raise ObjectNotFoundError(key)
        return int(blob.size or 0)
