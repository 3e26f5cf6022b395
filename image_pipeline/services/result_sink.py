from __future__ import annotations

import logging
import os
from pathlib import Path
import tempfile
from typing import Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from image_pipeline.config import Settings
from image_pipeline.errors import PersistError
from image_pipeline.schemas.work_item import CompressedImageResult

logger = logging.getLogger(__name__)


class ResultSink(Protocol):
    def write(self, result: CompressedImageResult) -> str:
        """Persist ``result`` and return where it went. Raises PersistError."""
        ...


class LocalResultSink:
    """Writes results under ``root`` keyed by product id and URL hash.

    Writes go to a temp file in the target directory and are moved into place
    with ``os.replace``, so a reader never sees a partial file.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def write(self, result: CompressedImageResult) -> str:
        target = self.root / result.key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=".jpg")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(result.bytes)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistError(f"failed to write {target}: {exc}", url=result.source_url) from exc

        return str(target)


class S3ResultSink:
    """Uploads results to an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO)."""

    def __init__(self, bucket: str, client, *, prefix: str = "") -> None:
        self.bucket = bucket
        self.client = client
        self.prefix = prefix

    def write(self, result: CompressedImageResult) -> str:
        key = f"{self.prefix}{result.key}"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=result.bytes,
                ContentType="image/jpeg",
                Metadata={"source-url": result.source_url, "quality": str(result.quality)},
            )
        except (BotoCoreError, ClientError) as exc:
            raise PersistError(f"upload to s3://{self.bucket}/{key} failed: {exc}", url=result.source_url) from exc
        return f"s3://{self.bucket}/{key}"


def _make_s3_client(s: Settings):
    required = [s.s3_access_key_id, s.s3_secret_access_key, s.s3_bucket_name]
    if any(v is None for v in required):
        raise ValueError("S3 result sink configuration is incomplete; check S3_* env vars.")

    session = boto3.session.Session()
    return session.client(
        service_name="s3",
        aws_access_key_id=s.s3_access_key_id,
        aws_secret_access_key=s.s3_secret_access_key,
        endpoint_url=s.s3_endpoint,
        config=BotoConfig(signature_version="s3v4"),
    )


def build_result_sink(s: Settings) -> ResultSink:
    if s.result_sink == "s3":
        return S3ResultSink(s.s3_bucket_name, _make_s3_client(s), prefix=s.s3_key_prefix)
    return LocalResultSink(s.result_dir)
