from __future__ import annotations

import os
import uuid

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from core.config import settings


log = structlog.get_logger(__name__)

# what put_bytes may raise for either backend
STORAGE_ERRORS = (OSError, BotoCoreError, ClientError)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def object_key_for(prefix: str, content_type: str) -> str:
    # unique per upload, so rows never share an object
    ext = EXTENSIONS.get(content_type, "bin")
    return f"{prefix}/{uuid.uuid4().hex}.{ext}"


class ObjectStorage:
    """Durable image store: bytes in, public URL out."""

    def __init__(self, root: str | None = None, base_url: str | None = None) -> None:
        self.base_url = (base_url or settings.media_base_url).rstrip("/")
        # S3/MinIO if configured, else local
        self._use_s3 = bool(settings.s3_endpoint_url and settings.s3_bucket)
        if self._use_s3:
            self._s3 = boto3.client(
                "s3",
                endpoint_url=settings.s3_endpoint_url,
                aws_access_key_id=settings.s3_access_key_id,
                aws_secret_access_key=settings.s3_secret_access_key,
            )
            self._bucket = settings.s3_bucket  # type: ignore
        else:
            base_dir = os.path.abspath(root or settings.media_root)
            os.makedirs(base_dir, exist_ok=True)
            self.base_dir = base_dir

    def url_for(self, object_key: str) -> str:
        return f"{self.base_url}/{object_key}"

    def key_from_url(self, url: str) -> str | None:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    def put_bytes(self, object_key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        if self._use_s3:
            self._s3.put_object(Bucket=self._bucket, Key=object_key, Body=data, ContentType=content_type)
            return self.url_for(object_key)
        path = os.path.join(self.base_dir, object_key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        return self.url_for(object_key)

    def delete_url(self, url: str) -> bool:
        """Remove a stored object by URL. Never raises."""
        key = self.key_from_url(url)
        if key is None:
            log.warning("storage_delete_foreign_url", url=url)
            return False
        try:
            if self._use_s3:
                self._s3.delete_object(Bucket=self._bucket, Key=key)
            else:
                os.remove(os.path.join(self.base_dir, key))
        except STORAGE_ERRORS as e:
            log.warning("storage_delete_failed", url=url, error=str(e))
            return False
        log.info("storage_deleted", key=key)
        return True
