"""
Blob storage for uploaded documents: local filesystem or an S3-compatible
bucket (MinIO, SeaweedFS, AWS).

Object keys look like ``{user_id}/{timestamp}_{filename}`` on both backends.
"""

from __future__ import annotations

import io
import os
from pathlib import Path
from typing import Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from acervo.core.config import settings
from acervo.core.exceptions import StorageError

logger = structlog.get_logger(__name__)


class StorageService:
    """Abstraction over local and S3-compatible object storage."""

    def __init__(self, backend: Optional[str] = None, root_dir: Optional[str] = None) -> None:
        self.backend = (backend or settings.STORAGE_BACKEND or "local").strip().lower()
        self.root_dir = Path(root_dir or settings.UPLOAD_DIR)
        self.bucket = settings.S3_BUCKET_NAME or None
        self._client = None
        self._bucket_checked = False

    def is_object_storage(self) -> bool:
        return self.backend in {"s3", "minio", "seaweedfs"}

    def _resolve_secure(self) -> bool:
        if settings.S3_SECURE is not None:
            return bool(settings.S3_SECURE)
        return (settings.S3_ENDPOINT or "").startswith("https://")

    def _get_client(self):
        if self._client is not None:
            return self._client
        if not settings.S3_ENDPOINT:
            raise StorageError("S3 endpoint not configured")
        if not settings.S3_ACCESS_KEY or not settings.S3_SECRET_KEY:
            raise StorageError("S3 credentials not configured")
        self._client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT,
            aws_access_key_id=settings.S3_ACCESS_KEY,
            aws_secret_access_key=settings.S3_SECRET_KEY,
            region_name=settings.S3_REGION,
            use_ssl=self._resolve_secure(),
        )
        return self._client

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        if not self.bucket:
            raise StorageError("S3 bucket not configured")
        client = self._get_client()
        try:
            client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
            try:
                client.create_bucket(Bucket=self.bucket)
            except ClientError as e2:
                code2 = str(e2.response.get("Error", {}).get("Code", ""))
                if code2 not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                    raise
        self._bucket_checked = True

    def _local_path(self, key: str) -> Path:
        root = self.root_dir.resolve()
        path = (root / key).resolve()
        if root != path and root not in path.parents:
            raise StorageError("Invalid storage path")
        return path

    def upload(self, key: str, payload: bytes, content_type: Optional[str] = None) -> None:
        """Store ``payload`` under ``key``."""
        if not key:
            raise StorageError("Storage path is empty")
        try:
            if not self.is_object_storage():
                path = self._local_path(key)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(payload)
                return
            self._ensure_bucket()
            client = self._get_client()
            extra = {"ContentType": content_type} if content_type else None
            if extra:
                client.upload_fileobj(io.BytesIO(payload), self.bucket, key, ExtraArgs=extra)
            else:
                client.upload_fileobj(io.BytesIO(payload), self.bucket, key)
        except StorageError:
            raise
        except (OSError, ClientError, BotoCoreError) as e:
            logger.error("Storage upload failed", key=key, backend=self.backend, error=str(e))
            raise StorageError("Error uploading file to storage") from e

    def download(self, key: str) -> bytes:
        """Read the blob stored under ``key``."""
        if not key:
            raise StorageError("Storage path is empty")
        try:
            if not self.is_object_storage():
                return self._local_path(key).read_bytes()
            self._ensure_bucket()
            client = self._get_client()
            obj = client.get_object(Bucket=self.bucket, Key=key)
            try:
                return obj["Body"].read()
            finally:
                obj["Body"].close()
        except StorageError:
            raise
        except (OSError, ClientError, BotoCoreError) as e:
            logger.error("Storage download failed", key=key, backend=self.backend, error=str(e))
            raise StorageError("Error downloading file from storage") from e

    def delete(self, key: str) -> None:
        """Delete a blob; a missing blob is not an error."""
        if not key:
            return
        try:
            if not self.is_object_storage():
                path = self._local_path(key)
                if path.exists():
                    os.remove(path)
                return
            self._ensure_bucket()
            self._get_client().delete_object(Bucket=self.bucket, Key=key)
        except StorageError:
            raise
        except (OSError, ClientError, BotoCoreError) as e:
            logger.error("Storage delete failed", key=key, backend=self.backend, error=str(e))
            raise StorageError("Error deleting file from storage") from e

    def exists(self, key: str) -> bool:
        if not key:
            return False
        if not self.is_object_storage():
            return self._local_path(key).exists()
        self._ensure_bucket()
        try:
            self._get_client().head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False
