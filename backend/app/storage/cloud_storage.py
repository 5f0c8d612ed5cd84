"""
Cloud Storage Service

Blob access for month partitions using Google Cloud Storage.
Partitions are addressed by path: acct_income_json/{YYYY-MM}.json
"""

import os
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import storage

from app.core.logging import get_logger

logger = get_logger("ledger.storage.gcs")


class CloudStorageService:
    """Service for reading and writing blobs in Google Cloud Storage."""

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        client: Optional[storage.Client] = None,
    ) -> None:
        """
        Initialize Cloud Storage service.

        Args:
            bucket_name: GCS bucket name. Defaults to STORAGE_BUCKET env var
                        or "{project_id}.appspot.com" (the Firebase default bucket)
            client: Pre-built storage client (optional)
        """
        self.client = client or storage.Client()

        if bucket_name:
            self.bucket_name = bucket_name
        else:
            self.bucket_name = os.environ.get(
                "STORAGE_BUCKET",
                f"{self.client.project}.appspot.com"
            )

        self._bucket: Optional[storage.Bucket] = None

    @property
    def bucket(self) -> storage.Bucket:
        """Get the storage bucket (without an extra metadata round-trip)."""
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def exists(self, path: str) -> bool:
        return self.bucket.blob(path).exists()

    def read_bytes(self, path: str) -> Optional[bytes]:
        """
        Download a blob.

        Args:
            path: Blob path within the bucket

        Returns:
            Blob content as bytes, or None if not found
        """
        blob = self.bucket.blob(path)
        try:
            return blob.download_as_bytes()
        except google_exceptions.NotFound:
            return None

    def write_bytes(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Upload a blob, replacing any existing content.

        Args:
            path: Blob path within the bucket
            content: Blob content as bytes
            content_type: MIME type (optional)

        Returns:
            The blob path
        """
        blob = self.bucket.blob(path)
        blob.upload_from_string(
            content,
            content_type=content_type or "application/octet-stream"
        )
        logger.debug(f"Uploaded gs://{self.bucket_name}/{path} ({len(content)} bytes)")
        return path

    def list_paths(self, prefix: str) -> list[str]:
        """
        List blob paths under a prefix.

        Args:
            prefix: Path prefix, e.g. "acct_income_json/"

        Returns:
            Sorted list of blob paths
        """
        return sorted(
            blob.name
            for blob in self.bucket.list_blobs(prefix=prefix)
            if blob.name and not blob.name.endswith("/")
        )
