from datetime import datetime
from typing import ClassVar


class ProcessingError(Exception):
    """Base exception for all document processing errors.

    `code` and `status_code` are the HTTP-equivalent classification reported
    to collaborators.
    """

    code: ClassVar[str] = "INTERNAL_ERROR"
    status_code: ClassVar[int] = 500


class NotFoundError(ProcessingError):
    """Raised when a reference does not resolve or points at a soft-deleted row."""

    code = "NOT_FOUND"
    status_code = 404


class DocumentNotFoundError(NotFoundError):
    """Raised when a processing document cannot be found in the database."""


class RevisionNotFoundError(NotFoundError):
    """Raised when a document revision cannot be found in the database."""


class PageNotFoundError(NotFoundError):
    """Raised when a document has no page with the requested number."""


class ProcessingValidationError(ProcessingError):
    """Raised for caller-fixable input problems, always before any I/O."""

    code = "VALIDATION_ERROR"
    status_code = 400


class LockConflictError(ProcessingError):
    """Raised on lock version mismatch or a lock that is missing, foreign or expired."""

    code = "CONFLICT"
    status_code = 409

    def __init__(
        self,
        message: str,
        current_version: int | None = None,
        expires_at: datetime | None = None,
    ) -> None:
        super().__init__(message)
        self.current_version = current_version
        self.expires_at = expires_at


class StorageError(ProcessingError):
    """Raised when a blob download or upload fails."""

    code = "STORAGE_ERROR"
    status_code = 502


class UnsupportedStorageBackendError(StorageError):
    """Raised when settings name a storage backend that is not available."""


class InvalidStateError(ProcessingError):
    """Raised when the document is in a state that does not allow the operation."""

    code = "INVALID_STATE"
    status_code = 422
