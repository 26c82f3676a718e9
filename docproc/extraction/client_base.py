from abc import ABC, abstractmethod

from docproc.database.models import ProcessingDocument
from docproc.revisions.models import RevisionInput


class BaseExtractionClient(ABC):
    """Contract for provider-specific structured-field extraction (OCR/LLM)."""

    @abstractmethod
    def run(self, document: ProcessingDocument, data: bytes) -> RevisionInput:
        """Return the fields read from the document's current binary."""
