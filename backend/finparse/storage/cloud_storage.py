"""
Cloud Storage Service

Fetches and uploads statement files in Google Cloud Storage.
Objects are addressed as gs://{bucket}/{object_path}; uploads land under
statements/{filename} in the configured bucket.
"""

from __future__ import annotations

import os
import posixpath
from pathlib import Path
from typing import Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import storage

from finparse.core.exceptions import StorageError
from finparse.core.logging import get_logger
from finparse.storage.base import StorageAccessor

logger = get_logger("finparse.storage.gcs")

GCS_SCHEME = "gs://"
UPLOAD_PREFIX = "statements"


def parse_gcs_uri(uri: str) -> tuple[str, str]:
    """
    Split a gs:// URI into bucket and object path.

    Args:
        uri: URI such as gs://bucket/path/to/statement.pdf

    Returns:
        (bucket_name, object_path)

    Raises:
        StorageError: If the URI has the wrong scheme or no object path
    """
    if not uri.startswith(GCS_SCHEME):
        raise StorageError(f"invalid GCS URI: {uri}", details={"uri": uri})
    bucket_name, _, object_path = uri[len(GCS_SCHEME):].partition("/")
    if not bucket_name or not object_path:
        raise StorageError(f"invalid GCS URI (no object path): {uri}", details={"uri": uri})
    return bucket_name, object_path


class CloudStorageService(StorageAccessor):
    """Service for reading and writing files in Google Cloud Storage."""

    def __init__(self, bucket_name: Optional[str] = None, client: Optional[storage.Client] = None) -> None:
        """
        Initialize Cloud Storage service.

        Args:
            bucket_name: Bucket used for uploads. Defaults to STORAGE_BUCKET env var
                        or "{project_id}-statements"
            client: Preconfigured storage client
        """
        self.client = client or storage.Client()

        if bucket_name:
            self.bucket_name = bucket_name
        else:
            self.bucket_name = os.environ.get(
                "STORAGE_BUCKET",
                f"{self.client.project}-statements"
            )

    def fetch(self, uri: str) -> bytes:
        bucket_name, object_path = parse_gcs_uri(uri)
        blob = self.client.bucket(bucket_name).blob(object_path)
        try:
            return blob.download_as_bytes()
        except google_exceptions.NotFound as e:
            raise StorageError(f"object not found: {uri}", details={"uri": uri}) from e
        except google_exceptions.GoogleAPIError as e:
            raise StorageError(f"reading object {bucket_name}/{object_path}: {e}", details={"uri": uri}) from e

    def extract_filename(self, uri: str) -> str:
        trimmed = uri[len(GCS_SCHEME):] if uri.startswith(GCS_SCHEME) else uri
        _, sep, object_path = trimmed.partition("/")
        if not sep:
            return trimmed
        return posixpath.basename(object_path)

    def upload(
        self,
        source: bytes | Path,
        name: str,
        content_type: Optional[str] = None,
    ) -> str:
        """
        Upload a file to Cloud Storage.

        Args:
            source: File content, or a local path to read it from
            name: Filename; stored as statements/{name}
            content_type: MIME type (optional)

        Returns:
            The gs:// URI of the uploaded object
        """
        content = source.read_bytes() if isinstance(source, Path) else source
        object_path = f"{UPLOAD_PREFIX}/{name}"
        blob = self.client.bucket(self.bucket_name).blob(object_path)
        try:
            blob.upload_from_string(
                content,
                content_type=content_type or "application/pdf"
            )
        except google_exceptions.GoogleAPIError as e:
            raise StorageError(f"uploading {name}: {e}", details={"bucket": self.bucket_name}) from e

        uri = f"{GCS_SCHEME}{self.bucket_name}/{object_path}"
        logger.info(f"Uploaded {len(content)} bytes to {uri}")
        return uri
