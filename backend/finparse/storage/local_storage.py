from __future__ import annotations

from pathlib import Path
from typing import Optional

from finparse.core.exceptions import StorageError
from finparse.storage.base import StorageAccessor

FILE_SCHEME = "file://"


class LocalStorage(StorageAccessor):
    """Filesystem storage; accepts file:// URIs or plain paths."""

    def __init__(self, upload_dir: Path | None = None) -> None:
        self.upload_dir = upload_dir or Path(__file__).resolve().parents[2] / "data" / "uploads"

    @staticmethod
    def _path(uri: str) -> Path:
        return Path(uri[len(FILE_SCHEME):] if uri.startswith(FILE_SCHEME) else uri)

    def fetch(self, uri: str) -> bytes:
        path = self._path(uri)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"reading {path}: {e}", details={"uri": uri}) from e

    def extract_filename(self, uri: str) -> str:
        return self._path(uri).name

    def upload(
        self,
        source: bytes | Path,
        name: str,
        content_type: Optional[str] = None,
    ) -> str:
        content = source.read_bytes() if isinstance(source, Path) else source
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        target = self.upload_dir / name
        target.write_bytes(content)
        return f"{FILE_SCHEME}{target.resolve()}"
