from typing import ClassVar

from docproc.config.settings import Settings
from docproc.logging.logger import Log
from docproc.pdf.base import BasePdfEditor, BasePdfInspector, PageInfo
from docproc.pdf.exceptions import PdfProcessingError
from docproc.pdf.pdfplumber_adapter import PdfPlumberAdapter
from docproc.pdf.pymupdf_adapter import PyMuPdfAdapter


class FallbackPdfInspector(BasePdfInspector):
    """Tries each inspector in turn; some PDFs only parse with one engine."""

    def __init__(self, inspectors: list[BasePdfInspector]) -> None:
        if not inspectors:
            raise ValueError("FallbackPdfInspector needs at least one inspector")
        self._inspectors = inspectors

    def inspect(self, pdf_bytes: bytes) -> list[PageInfo]:
        errors: list[str] = []
        for inspector in self._inspectors:
            try:
                return inspector.inspect(pdf_bytes)
            except PdfProcessingError as exc:
                Log.warning(
                    f"{type(inspector).__name__} failed, trying next engine: {exc}"
                )
                errors.append(str(exc))
        raise PdfProcessingError("; ".join(errors))


class PdfAdapterFactory:
    """Creates PDF inspectors and editors based on settings."""

    INSPECTORS: ClassVar[dict[str, type[BasePdfInspector]]] = {
        "pymupdf": PyMuPdfAdapter,
        "pdfplumber": PdfPlumberAdapter,
    }

    @classmethod
    def create_inspector(cls, settings: Settings) -> BasePdfInspector:
        """Configured engine first, the remaining engines as fallbacks."""
        engine = settings.pdf_engine.lower()
        primary = cls.INSPECTORS.get(engine)
        if primary is None:
            raise ValueError(
                f"Unknown PDF engine '{engine}'. Choose from: {list(cls.INSPECTORS)}"
            )
        ordered = [primary] + [a for name, a in cls.INSPECTORS.items() if name != engine]
        return FallbackPdfInspector([adapter_cls() for adapter_cls in ordered])

    @classmethod
    def create_editor(cls, settings: Settings) -> BasePdfEditor:
        """Page copying is only implemented on PyMuPDF, regardless of engine."""
        _ = settings
        return PyMuPdfAdapter()
