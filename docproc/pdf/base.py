from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PageInfo:
    """Geometry of one PDF page, in PDF points (72 per inch)."""

    page_number: int
    width: int
    height: int
    rotation: int = 0


@dataclass(frozen=True)
class AppendSource:
    """A PDF or image file whose pages are appended to a document."""

    data: bytes
    mime_type: str
    file_name: str = ""


class BasePdfInspector(ABC):
    """Contract for adapters that read page metadata from PDF bytes."""

    @abstractmethod
    def inspect(self, pdf_bytes: bytes) -> list[PageInfo]:
        """Return one PageInfo per page, in document order.

        Raises:
            PdfProcessingError: if the bytes cannot be parsed as a PDF.
        """


class BasePdfEditor(ABC):
    """Contract for adapters that build new PDFs by copying pages.

    Page numbers are 1-indexed. Inputs are assumed validated by the caller;
    every method returns the bytes of a brand new document and never mutates
    its input.
    """

    @abstractmethod
    def delete_pages(self, pdf_bytes: bytes, page_numbers: list[int]) -> bytes:
        """Copy every page except `page_numbers`, preserving relative order."""

    @abstractmethod
    def reorder_pages(self, pdf_bytes: bytes, new_order: list[int]) -> bytes:
        """Copy pages so that position i holds source page `new_order[i]`."""

    @abstractmethod
    def merge(self, sources: list[bytes]) -> bytes:
        """Concatenate all pages of every source, in the given order."""

    @abstractmethod
    def extract_range(self, pdf_bytes: bytes, page_from: int, page_to: int) -> bytes:
        """Copy the inclusive range `page_from..page_to` into a new document."""

    @abstractmethod
    def append(self, pdf_bytes: bytes, sources: list[AppendSource]) -> bytes:
        """Copy every page of `pdf_bytes`, then every page of each source in order.

        An image source becomes a single page.
        """

    @abstractmethod
    def rotate_page(self, pdf_bytes: bytes, page_number: int, rotation: int) -> bytes:
        """Copy the document with page `page_number` set to `rotation` degrees clockwise."""
