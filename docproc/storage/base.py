import uuid
from abc import ABC, abstractmethod
from pathlib import PurePosixPath

EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/tiff": ".tiff",
    "image/webp": ".webp",
}


def build_storage_key(tenant_id: str, mime_type: str, prefix: str = "documents") -> str:
    """Build a fresh, never reused key: {prefix}/{tenant_id}/{uuid}{ext}"""
    extension = EXTENSIONS.get(mime_type, "")
    return str(PurePosixPath(prefix) / tenant_id / f"{uuid.uuid4().hex}{extension}")


class BaseBlobStorage(ABC):
    """Port for the binary store holding document files."""

    @abstractmethod
    def download(self, key: str) -> bytes:
        """Return the bytes stored under `key`.

        Raises:
            StorageError: if the key does not exist or cannot be read.
        """

    @abstractmethod
    def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Store `data` under `key`, overwriting nothing that callers still reference.

        Raises:
            StorageError: if the write fails.
        """
