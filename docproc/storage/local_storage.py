from pathlib import Path

from docproc.logging.logger import Log
from docproc.processor.exceptions import StorageError
from docproc.storage.base import BaseBlobStorage


class LocalBlobStorage(BaseBlobStorage):
    """Stores blobs as files below a root directory, one file per key."""

    FILES_ROOT = Path("/app/files")

    def __init__(self, files_root: Path | None = None) -> None:
        self._files_root = files_root if files_root is not None else self.FILES_ROOT

    def download(self, key: str) -> bytes:
        path = self._resolve_path(key)
        if not path.exists():
            raise StorageError(f"Blob not found: {key}")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read blob {key}: {exc}") from exc

    def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._resolve_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write blob {key}: {exc}") from exc
        Log.debug("Stored blob", key=key, content_type=content_type, size=len(data))

    def _resolve_path(self, key: str) -> Path:
        root = self._files_root.resolve()
        path = (root / key).resolve()
        if not path.is_relative_to(root):
            raise StorageError(f"Storage key escapes the storage root: {key}")
        return path
