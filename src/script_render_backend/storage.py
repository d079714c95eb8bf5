"""
Artifact storage for rendered scripts.

This module provides two interchangeable stores:
- ``LocalArtifactStore`` writes PDFs under a directory that the API serves from
  a fixed public prefix (``/pdfs`` by default)
- ``S3ArtifactStore`` uploads PDFs to S3 and hands out presigned download URLs

Artifacts are written once. The storage key is derived from the version id and
the render timestamp, so a retried render never overwrites a different artifact.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Protocol
from uuid import uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from omegaconf import DictConfig

from .errors import RenderFailure
from .models import ArtifactRef
from .utils import ensure_directory, sanitize_label

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


class ArtifactStore(Protocol):
    def save(self, data: bytes, key_hint: str) -> ArtifactRef:
        """Persist ``data`` and return a reference to it."""
        ...

    def public_path(self, ref: ArtifactRef) -> str:
        """Return the path or URL a client uses to download ``ref``."""
        ...


def artifact_filename(key_hint: str) -> str:
    """
    Build the stored filename for a key hint.

    Example:
        >>> artifact_filename("script-v1-1700000000000")
        "script-v1-1700000000000.pdf"
    """
    stem = sanitize_label(key_hint.removesuffix(".pdf"), fallback="script")
    return f"{stem}.pdf"


class LocalArtifactStore:
    """
    Stores artifacts on the local filesystem.

    Attributes:
        root: Directory the PDFs are written to
        public_prefix: URL prefix the directory is served under
    """

    def __init__(self, root: Path, public_prefix: str = "/pdfs") -> None:
        self.root = ensure_directory(root)
        self.public_prefix = "/" + public_prefix.strip("/")

    def save(self, data: bytes, key_hint: str) -> ArtifactRef:
        filename = artifact_filename(key_hint)
        destination = self.root / filename

        # Write to a temporary sibling and rename so readers never see a partial file
        temp_path = destination.with_name(f".{filename}.{uuid4().hex}.tmp")
        try:
            temp_path.write_bytes(data)
            os.replace(temp_path, destination)
        except OSError as exc:
            temp_path.unlink(missing_ok=True)
            raise RenderFailure(f"Failed to store artifact {filename}: {exc}") from exc

        logger.info(f"Stored artifact {destination} ({len(data)} bytes)")
        return ArtifactRef(path=f"{self.public_prefix}/{filename}", size_bytes=len(data), mime_type=PDF_MIME_TYPE)

    def public_path(self, ref: ArtifactRef) -> str:
        return ref.path

    def resolve(self, ref: ArtifactRef) -> Path:
        """Map a reference back to its file on disk."""
        return self.root / Path(ref.path).name


class S3ArtifactStore:
    """
    Stores artifacts in an S3 bucket.

    References use ``s3://<bucket>/<key>`` paths; ``public_path`` turns them into
    presigned URLs for secure, time-limited downloads.

    Note:
        Credentials are not tested up front (no ``list_buckets`` call), credential
        errors surface during the actual upload.
    """

    def __init__(self, bucket: str, prefix: str = "", expiration: int = 3600, client=None) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required for the S3 artifact store")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.expiration = expiration
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3")
        return self._client

    def _key_for(self, filename: str) -> str:
        return f"{self.prefix}/{filename}" if self.prefix else filename

    def save(self, data: bytes, key_hint: str) -> ArtifactRef:
        key = self._key_for(artifact_filename(key_hint))
        try:
            logger.info(f"Uploading artifact to s3://{self.bucket}/{key}")
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=PDF_MIME_TYPE)
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"S3 upload failed: {exc}")
            raise RenderFailure(f"Failed to upload artifact to S3: {exc}") from exc
        return ArtifactRef(path=f"s3://{self.bucket}/{key}", size_bytes=len(data), mime_type=PDF_MIME_TYPE)

    def public_path(self, ref: ArtifactRef) -> str:
        key = ref.path.removeprefix(f"s3://{self.bucket}/")
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expiration,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Failed to generate presigned URL for {key}: {exc}")
            return ref.path


def build_artifact_store(config: DictConfig) -> ArtifactStore:
    """Create the store selected by ``storage.backend``."""
    backend: Optional[str] = config.storage.backend
    if backend == "s3":
        return S3ArtifactStore(
            bucket=config.storage.s3_bucket,
            prefix=config.storage.s3_prefix,
            expiration=config.storage.presign_expiration_seconds,
        )
    if backend != "local":
        raise ValueError(f"Unknown storage backend: {backend}")
    return LocalArtifactStore(Path(config.storage.local_dir), public_prefix=config.storage.public_prefix)
