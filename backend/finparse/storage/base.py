from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class StorageAccessor(ABC):
    """Read (and upload) raw source files in object storage."""

    @abstractmethod
    def fetch(self, uri: str) -> bytes:
        """Return the file's bytes.

        Raises:
            StorageError: If the URI is malformed or the object cannot be read
        """

    @abstractmethod
    def extract_filename(self, uri: str) -> str:
        """Return the base filename of ``uri``."""

    @abstractmethod
    def upload(
        self,
        source: bytes | Path,
        name: str,
        content_type: Optional[str] = None,
    ) -> str:
        """Store ``source`` under ``name`` and return a URI ``fetch`` accepts."""
