from docproc.processor.exceptions import InvalidStateError


class PdfProcessingError(InvalidStateError):
    """Raised when a PDF cannot be parsed or its pages cannot be copied."""
