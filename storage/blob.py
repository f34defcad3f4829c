from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Protocol
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from catalog.errors import Transient

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def write_destination(self, key: str, content_type: str | None = None, expires_in: int = 3600) -> str:
        ...

    def public_url(self, key: str) -> str:
        ...


@dataclass(frozen=True)
class BlobConfig:
    endpoint_url: str | None
    access_key_id: str | None
    secret_access_key: str | None
    bucket: str
    region: str
    public_base_url: str | None


def load_blob_config() -> BlobConfig:
    return BlobConfig(
        endpoint_url=os.getenv("BLOB_ENDPOINT_URL") or None,
        access_key_id=os.getenv("BLOB_ACCESS_KEY_ID") or None,
        secret_access_key=os.getenv("BLOB_SECRET_ACCESS_KEY") or None,
        bucket=os.getenv("BLOB_BUCKET", "contenthive-videos"),
        region=os.getenv("BLOB_REGION", "auto"),
        public_base_url=(os.getenv("BLOB_PUBLIC_BASE_URL") or "").rstrip("/") or None,
    )


class S3BlobStore:
    """S3-compatible object store (S3, R2, B2) addressed through presigned URLs."""

    def __init__(self, config: BlobConfig | None = None, client=None) -> None:  # type: ignore[no-untyped-def]
        self.config = config or load_blob_config()
        self.client = client or boto3.client(
            service_name="s3",
            endpoint_url=self.config.endpoint_url,
            aws_access_key_id=self.config.access_key_id,
            aws_secret_access_key=self.config.secret_access_key,
            config=Config(signature_version="s3v4"),
            region_name=self.config.region,
        )

    def write_destination(self, key: str, content_type: str | None = None, expires_in: int = 3600) -> str:
        params = {"Bucket": self.config.bucket, "Key": key}
        if content_type:
            params["ContentType"] = content_type
        try:
            return self.client.generate_presigned_url(
                ClientMethod="put_object",
                Params=params,
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("presigned upload url failed for %s: %s", key, exc)
            raise Transient(f"object store unavailable: {exc}") from exc

    def public_url(self, key: str) -> str:
        quoted = quote(key)
        if self.config.public_base_url:
            return f"{self.config.public_base_url}/{quoted}"
        endpoint = (self.config.endpoint_url or "https://s3.amazonaws.com").rstrip("/")
        return f"{endpoint}/{self.config.bucket}/{quoted}"
