"""
Object storage backends.

The publisher only needs five operations, so any store exposing them can
stand in for S3 (tests use an in-memory one).
"""

import logging
from pathlib import Path
from typing import Callable, List, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from .config import StorageConfig

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class ObjectStorage:
    """Interface for a hierarchical key/value object store."""

    def upload_file(
        self,
        local_path: Path,
        key: str,
        content_type: str,
        callback: Optional[Callable[[int], None]] = None,
    ) -> str:
        """Upload ``local_path`` under ``key`` and return its permanent URL."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def list_keys(self, prefix: str) -> List[str]:
        """Every key starting with ``prefix``, across all listing pages."""
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        raise NotImplementedError


class S3Storage(ObjectStorage):
    """S3 (or S3-compatible, e.g. MinIO) storage via boto3."""

    def __init__(self, config: StorageConfig, client=None):
        if not config.bucket:
            raise ValueError("storage.bucket must be configured")
        self.config = config
        self.bucket = config.bucket
        self.client = client or self._create_client()
        self.transfer_config = TransferConfig(
            multipart_threshold=config.multipart_threshold_mb * MB,
            multipart_chunksize=config.multipart_chunksize_mb * MB,
        )

    def _create_client(self):
        session = boto3.session.Session(
            aws_access_key_id=self.config.access_key,
            aws_secret_access_key=self.config.secret_key,
            region_name=self.config.region,
        )
        if self.config.endpoint_url:
            boto_config = BotoConfig(
                s3={"addressing_style": "path"},
                signature_version="s3v4",
            )
        else:
            boto_config = BotoConfig(signature_version="s3v4")
        return session.client("s3", endpoint_url=self.config.endpoint_url, config=boto_config)

    def upload_file(
        self,
        local_path: Path,
        key: str,
        content_type: str,
        callback: Optional[Callable[[int], None]] = None,
    ) -> str:
        self.client.upload_file(
            str(local_path),
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
            Callback=callback,
            Config=self.transfer_config,
        )
        return self.url_for(key)

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def list_keys(self, prefix: str) -> List[str]:
        keys = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                keys.append(obj["Key"])
        return keys

    def url_for(self, key: str) -> str:
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"
