# app/services/storage_service.py

import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings
from app.core.logger import logger


@dataclass
class StoredObject:
    url: str
    key: str


class StorageError(Exception):
    """Raised when an object could not be written."""


def _object_key(folder: str, filename: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", os.path.basename(filename or "file"))
    return f"{folder.strip('/')}/{uuid.uuid4().hex}_{safe}"


class LocalStorageBackend:
    """Writes objects under LOCAL_STORAGE_DIR. Used in development."""

    def __init__(self, root: str):
        self.root = Path(root)

    def put(self, key: str, content: bytes, mime_type: str) -> str:
        path = self.root / key
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as e:
            raise StorageError(str(e)) from e
        return path.resolve().as_uri()


class S3StorageBackend:
    """
    Service layer for AWS S3 writes.
    """

    def __init__(self):
        self.s3_client = boto3.client(
            's3',
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None
        )
        self.bucket = settings.S3_BUCKET_NAME

    def put(self, key: str, content: bytes, mime_type: str) -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=mime_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {str(e)}")
            raise StorageError(str(e)) from e
        return f"https://{self.bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"


class StorageService:
    """store(bytes, filename, mime, folder) -> StoredObject, provider chosen by STORAGE_PROVIDER."""

    def __init__(self) -> None:
        self.provider = (settings.STORAGE_PROVIDER or "dev").strip().lower()
        self._backend = None

    @property
    def backend(self):
        if self._backend is None:
            if self.provider == "dev":
                self._backend = LocalStorageBackend(settings.LOCAL_STORAGE_DIR)
            elif self.provider == "s3":
                self._backend = S3StorageBackend()
            else:
                raise StorageError(f"Unsupported STORAGE_PROVIDER: {self.provider}")
        return self._backend

    def store(self, content: bytes, filename: str, mime_type: str, folder: str) -> StoredObject:
        key = _object_key(folder, filename)
        url = self.backend.put(key, content, mime_type)
        logger.info("object_stored provider=%s key=%s bytes=%d", self.provider, key, len(content))
        return StoredObject(url=url, key=key)


storage_service = StorageService()
