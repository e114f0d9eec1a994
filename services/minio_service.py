"""MinIO-backed storage for listing logos and photos."""

from __future__ import annotations

import io
import mimetypes
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import urllib3
from minio import Minio
from minio.error import S3Error

from core.env import env_bool, env_float, env_str
from core.logging import get_logger
from services.listing_errors import TransientDependencyError
from services.listing_lifecycle import MediaUpload

logger = get_logger(__name__)


class MinioClientProtocol(Protocol):
    """Subset of MinIO client methods used within the project."""

    def bucket_exists(self, bucket_name: str) -> bool:
        ...

    def make_bucket(self, bucket_name: str) -> None:
        ...

    def put_object(self, bucket_name: str, object_name: str, data, length: int, content_type: str = ...):  # type: ignore[no-untyped-def]
        ...


@dataclass
class MinioMediaStore:
    client: MinioClientProtocol
    bucket: str
    public_base_url: str
    _bucket_ready: bool = False

    @classmethod
    def from_env(cls) -> Optional["MinioMediaStore"]:
        """Build a store from ``MINIO_*`` variables; None when storage is not configured."""
        endpoint = env_str("MINIO_ENDPOINT")
        access_key = env_str("MINIO_ACCESS_KEY")
        secret_key = env_str("MINIO_SECRET_KEY")
        if not (endpoint and access_key and secret_key):
            logger.info("MinIO is not configured; media uploads are disabled.")
            return None
        secure = env_bool("MINIO_SECURE", True)
        timeout = env_float("EXTERNAL_TIMEOUT_SECONDS", 9.0, minimum=1.0)
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=timeout, read=timeout),
            retries=urllib3.Retry(total=2, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
        )
        client = Minio(endpoint, access_key=access_key, secret_key=secret_key, secure=secure, http_client=http_client)
        bucket = env_str("MINIO_BUCKET", "easyfix-media") or "easyfix-media"
        scheme = "https" if secure else "http"
        public_base = env_str("MINIO_PUBLIC_BASE_URL") or f"{scheme}://{endpoint}"
        logger.info("MinIO client initialised for %s.", endpoint)
        return cls(client=client, bucket=bucket, public_base_url=public_base.rstrip("/"))

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)
        self._bucket_ready = True

    def upload(self, upload: MediaUpload, *, folder: str) -> str:
        """Store ``upload`` under ``folder`` and return its public URL."""
        extension = mimetypes.guess_extension(upload.content_type) or ""
        object_name = f"{folder.strip('/')}/{uuid.uuid4().hex}{extension}"
        try:
            self._ensure_bucket()
            self.client.put_object(
                self.bucket,
                object_name,
                io.BytesIO(upload.content),
                length=len(upload.content),
                content_type=upload.content_type,
            )
        except (S3Error, urllib3.exceptions.HTTPError) as exc:
            logger.error("MinIO upload failed for %s: %s", object_name, exc, exc_info=True)
            raise TransientDependencyError("media", "Image upload failed. Please try again.") from exc
        logger.info("Uploaded %s to bucket '%s'.", object_name, self.bucket)
        return f"{self.public_base_url}/{self.bucket}/{object_name}"


__all__ = ["MinioMediaStore"]
