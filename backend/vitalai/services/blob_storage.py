"""Byte storage for uploaded documents (local filesystem or AWS S3)."""
import asyncio
import json
import logging
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from vitalai.exceptions import DocumentNotFound, StorageUnavailable

logger = logging.getLogger(__name__)


class BlobStorage:
    """Async upload/download/delete of raw bytes keyed by sanitized filename."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def _call(self, func, *args):
        """Run a blocking storage call in a worker thread with the configured timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StorageUnavailable(f"Blob storage timed out after {self.timeout}s") from e

    async def upload(self, key: str, data: bytes, content_type: str = "", metadata: Optional[Dict[str, str]] = None) -> None:
        raise NotImplementedError

    async def download(self, key: str) -> bytes:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        raise NotImplementedError

    async def size(self, key: str) -> int:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError


class LocalBlobStorage(BlobStorage):
    """
    Stores each blob as a file under ``root``.

    Metadata is kept next to the blob in ``<key>.meta.json``. Keys are
    sanitized filenames, so they never contain path separators.
    """

    META_SUFFIX = ".meta.json"

    def __init__(self, root: str, public_base_url: str = "http://localhost:8000", timeout: float = 10.0):
        super().__init__(timeout=timeout)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        if "/" in key or "\\" in key or key in ("", ".", ".."):
            raise ValueError(f"Invalid blob key: {key!r}")
        return self.root / key

    def _meta_path(self, key: str) -> Path:
        return self.root / f"{key}{self.META_SUFFIX}"

    def _write(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str]) -> None:
        try:
            self._path(key).write_bytes(data)
            self._meta_path(key).write_text(
                json.dumps({"content_type": content_type, "metadata": metadata})
            )
        except OSError as e:
            raise StorageUnavailable(f"Failed to write {key}: {str(e)}") from e

    def _read(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError as e:
            raise DocumentNotFound(key) from e
        except OSError as e:
            raise StorageUnavailable(f"Failed to read {key}: {str(e)}") from e

    def _remove(self, key: str) -> None:
        path = self._path(key)
        if not path.exists():
            raise DocumentNotFound(key)
        try:
            path.unlink()
            self._meta_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Failed to delete {key}: {str(e)}") from e

    def _size(self, key: str) -> int:
        try:
            return self._path(key).stat().st_size
        except FileNotFoundError as e:
            raise DocumentNotFound(key) from e

    async def upload(self, key: str, data: bytes, content_type: str = "", metadata: Optional[Dict[str, str]] = None) -> None:
        await self._call(self._write, key, data, content_type, dict(metadata or {}))

    async def download(self, key: str) -> bytes:
        return await self._call(self._read, key)

    async def delete(self, key: str) -> None:
        await self._call(self._remove, key)

    async def exists(self, key: str) -> bool:
        return await self._call(self._path(key).is_file)

    async def size(self, key: str) -> int:
        return await self._call(self._size, key)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/api/documents/{quote(key)}/download"


class S3BlobStorage(BlobStorage):
    """Stores blobs as objects in one S3 bucket, keyed by sanitized filename."""

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        timeout: float = 10.0,
        client=None,
    ):
        super().__init__(timeout=timeout)
        self.bucket = bucket
        self.region = region
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region,
        )

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = error.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound")

    def _put(self, key: str, data: bytes, content_type: str, metadata: Dict[str, str]) -> None:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
                Metadata=metadata,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload to S3: {e}", extra={"document_name": key})
            raise StorageUnavailable(f"Failed to upload {key}: {str(e)}") from e

    def _get(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if self._is_missing(e):
                raise DocumentNotFound(key) from e
            raise StorageUnavailable(f"Failed to download {key}: {str(e)}") from e
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to download {key}: {str(e)}") from e

    def _head(self, key: str) -> Optional[dict]:
        try:
            return self.s3_client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise StorageUnavailable(f"Failed to inspect {key}: {str(e)}") from e
        except BotoCoreError as e:
            raise StorageUnavailable(f"Failed to inspect {key}: {str(e)}") from e

    def _delete(self, key: str) -> None:
        if self._head(key) is None:
            raise DocumentNotFound(key)
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete from S3: {e}", extra={"document_name": key})
            raise StorageUnavailable(f"Failed to delete {key}: {str(e)}") from e

    async def upload(self, key: str, data: bytes, content_type: str = "", metadata: Optional[Dict[str, str]] = None) -> None:
        await self._call(self._put, key, data, content_type, dict(metadata or {}))

    async def download(self, key: str) -> bytes:
        return await self._call(self._get, key)

    async def delete(self, key: str) -> None:
        await self._call(self._delete, key)

    async def exists(self, key: str) -> bool:
        return await self._call(self._head, key) is not None

    async def size(self, key: str) -> int:
        head = await self._call(self._head, key)
        if head is None:
            raise DocumentNotFound(key)
        return int(head.get("ContentLength", 0))

    def public_url(self, key: str) -> str:
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"
        return f"https://{self.bucket}.s3.amazonaws.com/{quote(key)}"


def build_blob_storage(settings) -> BlobStorage:
    """Select the blob backend from application settings."""
    backend = settings.blob_storage_backend.lower()
    if backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3_BUCKET must be set when BLOB_STORAGE_BACKEND=s3")
        return S3BlobStorage(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            timeout=settings.store_timeout_seconds,
        )
    if backend != "local":
        raise ValueError(f"Unknown blob storage backend: {settings.blob_storage_backend}")
    return LocalBlobStorage(
        root=settings.blob_storage_path,
        public_base_url=settings.public_base_url,
        timeout=settings.store_timeout_seconds,
    )
