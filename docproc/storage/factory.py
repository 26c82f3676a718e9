from pathlib import Path

from docproc.config.settings import Settings
from docproc.processor.exceptions import UnsupportedStorageBackendError
from docproc.storage.base import BaseBlobStorage
from docproc.storage.local_storage import LocalBlobStorage


class BlobStorageFactory:
    """Creates the blob storage adapter named by settings."""

    BACKENDS = ("local",)

    @staticmethod
    def create(settings: Settings) -> BaseBlobStorage:
        backend = settings.storage_backend.lower()
        if backend == "local":
            return LocalBlobStorage(Path(settings.storage_root))
        raise UnsupportedStorageBackendError(
            f"storage_backend '{settings.storage_backend}' is not supported. "
            f"Choose from: {list(BlobStorageFactory.BACKENDS)}"
        )
