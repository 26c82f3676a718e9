"""Example extraction client adapter.

Use this module as a reference when implementing new provider adapters.
Implement BaseExtractionClient and register the provider in ExtractionClientFactory.
"""

from docproc.database.models import ProcessingDocument
from docproc.extraction.client_base import BaseExtractionClient
from docproc.revisions.models import RevisionInput


class ExampleExtractionClient(BaseExtractionClient):
    """Example adapter that returns a fixed, mostly empty extraction.

    No network calls. Every document still gets a DRAFT revision, so it
    lands in the review queue for an operator to fill in.
    """

    def run(self, document: ProcessingDocument, data: bytes) -> RevisionInput:
        _ = data
        return RevisionInput(
            document_category="INVOICE",
            reason=f"Example extraction of {document.file_name}",
        )
