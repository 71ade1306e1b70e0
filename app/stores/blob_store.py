"""
Blob storage adapters for resume documents and preview images.

Paths handed out by a store are opaque to callers; they are only ever passed
back to the same store to read or delete the blob.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.core.exceptions import BlobStoreError

logger = logging.getLogger(__name__)


def _unique_name(filename: str) -> str:
    """UUID-named object keeping the original extension."""
    extension = os.path.splitext(filename or "")[1].lower()
    return f"{uuid.uuid4().hex}{extension}"


class BlobStore:
    """Contract shared by every blob backend."""

    def upload(self, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    def read(self, path: str) -> Optional[bytes]:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalBlobStore(BlobStore):
    """Stores blobs on the local filesystem under <root>/<namespace>/."""

    def __init__(self, root: str, namespace: str):
        self.root = Path(root).resolve()
        self.namespace = namespace

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root not in target.parents:
            raise BlobStoreError(f"Blob path escapes storage root: {path}")
        return target

    def upload(self, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
        path = f"{self.namespace}/{_unique_name(filename)}"
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f"Failed to store blob: {e}") from e
        logger.info("Stored blob %s (size=%d bytes)", path, len(data))
        return path

    def read(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.exists():
            return None
        try:
            return target.read_bytes()
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob {path}: {e}") from e

    def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            target.unlink()
            logger.info(f"Deleted blob: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            raise BlobStoreError(f"Failed to delete blob {path}: {e}") from e


class S3BlobStore(BlobStore):
    """Stores blobs in an S3 bucket under resumes/<namespace>/."""

    def __init__(self, bucket: str, namespace: str, region: str, s3_client=None):
        self.bucket = bucket
        self.namespace = namespace
        self.s3_client = s3_client or boto3.client(
            "s3",
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            region_name=region,
        )

    def upload(self, data: bytes, filename: str, content_type: str = "application/octet-stream") -> str:
        s3_key = f"resumes/{self.namespace}/{_unique_name(filename)}"
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=s3_key,
                Body=data,
                ContentType=content_type or "application/octet-stream",
            )
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to upload to S3: {str(e)}") from e
        logger.info("Uploaded blob to s3://%s/%s", self.bucket, s3_key)
        return s3_key

    def read(self, path: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise BlobStoreError(f"Failed to read from S3: {str(e)}") from e
        except BotoCoreError as e:
            raise BlobStoreError(f"Failed to read from S3: {str(e)}") from e

    def delete(self, path: str) -> None:
        # delete_object succeeds for keys that do not exist
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=path)
            logger.info(f"Deleted file from S3: s3://{self.bucket}/{path}")
        except (ClientError, BotoCoreError) as e:
            raise BlobStoreError(f"Failed to delete from S3: {str(e)}") from e


def build_blob_store(storage_settings, namespace: str) -> BlobStore:
    if storage_settings.backend == "s3":
        return S3BlobStore(storage_settings.s3_bucket, namespace, storage_settings.aws_region)
    if storage_settings.backend == "local":
        return LocalBlobStore(storage_settings.local_root, namespace)
    raise ValueError(f"Unknown storage backend: {storage_settings.backend}")
