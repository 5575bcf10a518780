"""
Document storage for paper submissions.

This module provides functionality for:
- Storing document bodies in a content-addressed local directory
- Mirroring stored documents to S3
- Loading documents back, from disk or from S3
- Generating presigned URLs for downloads

Documents are keyed by the SHA-256 of their content, so storing the same
bytes twice is a no-op. A body can be staged first: ``stage`` hashes and
measures it without adding it to the store, and ``commit`` or ``discard``
finishes the job. The S3 mirror is used only when a bucket is
configured; when running locally without AWS credentials, S3 operations are
skipped gracefully.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from .utils import ensure_directory

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 8 * 1024 * 1024


@dataclass
class StoredDocument:
    sha256: str
    size: int
    storage_key: str
    head: bytes


@dataclass
class StagedDocument:
    """A hashed body that is not in the store yet."""

    sha256: str
    size: int
    head: bytes
    body: Optional[bytes] = None
    spool_path: Optional[Path] = None


class DocumentStore:
    """
    Content-addressed document store with an optional S3 mirror.

    Attributes:
        root: Local directory holding document bodies
        bucket: S3 bucket name, or empty to disable the mirror
        prefix: Key prefix for S3 objects
    """

    def __init__(self, root: Path, bucket: str = "", prefix: str = "docs/") -> None:
        self.root = ensure_directory(Path(root))
        self.bucket = bucket
        self.prefix = prefix
        self._s3_client = None

    def _get_s3_client(self):
        """
        Get or create the S3 client.

        Returns:
            boto3 S3 client or None if bucket is not configured
        """
        if self._s3_client is None:
            if not self.bucket:
                return None
            try:
                self._s3_client = boto3.client("s3")
            except (BotoCoreError, NoCredentialsError) as e:
                logger.warning(f"Failed to create S3 client: {e}")
                self._s3_client = None
        return self._s3_client

    def _local_path(self, storage_key: str) -> Path:
        return self.root / storage_key[:2] / storage_key

    def store(self, content: Union[bytes, BinaryIO]) -> StoredDocument:
        """
        Store a document body.

        Args:
            content: The bytes, or a readable binary stream that is consumed

        Returns:
            StoredDocument describing the stored body
        """
        return self.commit(self.stage(content))

    def stage(self, content: Union[bytes, BinaryIO]) -> StagedDocument:
        """
        Hash and measure a document body without storing it.

        Bytes are kept in memory; streams are spooled to a ``.part`` file in
        the store directory. Pass the result to ``commit`` or ``discard``.
        """
        if isinstance(content, (bytes, bytearray)):
            body = bytes(content)
            return StagedDocument(sha256=hashlib.sha256(body).hexdigest(), size=len(body), head=body[:4096], body=body)

        hasher = hashlib.sha256()
        size = 0
        head = b""
        fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as buffer:
                while chunk := content.read(_CHUNK_SIZE):
                    if not head:
                        head = chunk[:4096]
                    hasher.update(chunk)
                    size += len(chunk)
                    buffer.write(chunk)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return StagedDocument(sha256=hasher.hexdigest(), size=size, head=head, spool_path=Path(tmp_name))

    def commit(self, staged: StagedDocument) -> StoredDocument:
        """Move a staged body into the store and mirror it to S3."""
        path = self._local_path(staged.sha256)
        if path.exists():
            self.discard(staged)
        else:
            ensure_directory(path.parent)
            if staged.spool_path is not None:
                os.replace(staged.spool_path, path)
                staged.spool_path = None
            else:
                path.write_bytes(staged.body)

        stored = StoredDocument(sha256=staged.sha256, size=staged.size, storage_key=staged.sha256, head=staged.head)
        self._mirror_to_s3(stored.storage_key)
        return stored

    def discard(self, staged: StagedDocument) -> None:
        if staged.spool_path is not None:
            staged.spool_path.unlink(missing_ok=True)
            staged.spool_path = None
        staged.body = None

    def _mirror_to_s3(self, storage_key: str) -> bool:
        client = self._get_s3_client()
        if client is None:
            return False

        s3_key = f"{self.prefix}{storage_key}"
        try:
            logger.info(f"Uploading {storage_key} to s3://{self.bucket}/{s3_key}")
            client.upload_file(str(self._local_path(storage_key)), self.bucket, s3_key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed: {e}")
            return False

    def load(self, storage_key: str) -> bytes:
        """
        Load a document body.

        Raises:
            FileNotFoundError: If the body is neither on disk nor in S3
        """
        path = self._local_path(storage_key)
        if path.exists():
            return path.read_bytes()

        client = self._get_s3_client()
        if client is not None:
            try:
                response = client.get_object(Bucket=self.bucket, Key=f"{self.prefix}{storage_key}")
                return response["Body"].read()
            except (BotoCoreError, ClientError) as e:
                logger.error(f"S3 download of {storage_key} failed: {e}")
        raise FileNotFoundError(f"Document {storage_key} not found")

    def generate_presigned_url(self, storage_key: str, expiration: int = 3600) -> Optional[str]:
        """
        Generate a presigned URL for downloading a document from S3.

        Returns:
            Presigned URL string, or None if S3 is not configured or generation fails
        """
        client = self._get_s3_client()
        if client is None:
            return None

        try:
            return client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": f"{self.prefix}{storage_key}"},
                ExpiresIn=expiration,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to generate presigned URL: {e}")
            return None
