from collections.abc import Callable, Iterable

import pymupdf

from docproc.pdf.base import AppendSource, BasePdfEditor, BasePdfInspector, PageInfo
from docproc.pdf.exceptions import PdfProcessingError

IMAGE_FILETYPES = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
    "image/tiff": "tiff",
}


class PyMuPdfAdapter(BasePdfInspector, BasePdfEditor):
    """Reads and rewrites PDFs using PyMuPDF."""

    def inspect(self, pdf_bytes: bytes) -> list[PageInfo]:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                return [
                    PageInfo(
                        page_number=index + 1,
                        width=round(page.rect.width),
                        height=round(page.rect.height),
                        rotation=page.rotation,
                    )
                    for index, page in enumerate(doc)
                ]
        except Exception as exc:
            raise PdfProcessingError(f"pymupdf inspection failed: {exc}") from exc

    def delete_pages(self, pdf_bytes: bytes, page_numbers: list[int]) -> bytes:
        excluded = set(page_numbers)
        return self._rebuild(
            [pdf_bytes],
            lambda page_count: [
                (0, number) for number in range(1, page_count[0] + 1) if number not in excluded
            ],
        )

    def reorder_pages(self, pdf_bytes: bytes, new_order: list[int]) -> bytes:
        return self._rebuild([pdf_bytes], lambda _counts: [(0, number) for number in new_order])

    def merge(self, sources: list[bytes]) -> bytes:
        return self._rebuild(
            sources,
            lambda counts: [
                (source_index, number)
                for source_index, count in enumerate(counts)
                for number in range(1, count + 1)
            ],
        )

    def extract_range(self, pdf_bytes: bytes, page_from: int, page_to: int) -> bytes:
        return self._rebuild(
            [pdf_bytes], lambda _counts: [(0, number) for number in range(page_from, page_to + 1)]
        )

    def append(self, pdf_bytes: bytes, sources: list[AppendSource]) -> bytes:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as target:  # type: ignore[no-untyped-call]
                for source in sources:
                    with self._open_as_pdf(source) as added:
                        target.insert_pdf(added)
                return target.tobytes(garbage=3, deflate=True)
        except PdfProcessingError:
            raise
        except Exception as exc:
            raise PdfProcessingError(f"pymupdf append failed: {exc}") from exc

    def rotate_page(self, pdf_bytes: bytes, page_number: int, rotation: int) -> bytes:
        try:
            with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:  # type: ignore[no-untyped-call]
                doc[page_number - 1].set_rotation(rotation)
                return doc.tobytes(garbage=3, deflate=True)
        except Exception as exc:
            raise PdfProcessingError(f"pymupdf rotation failed: {exc}") from exc

    def _open_as_pdf(self, source: AppendSource) -> pymupdf.Document:
        """Open a PDF source as is; convert an image source to a one-page PDF."""
        if source.mime_type == "application/pdf":
            return pymupdf.open(stream=source.data, filetype="pdf")  # type: ignore[no-untyped-call]
        filetype = IMAGE_FILETYPES.get(source.mime_type)
        if filetype is None:
            raise PdfProcessingError(f"cannot append {source.mime_type} to a PDF")
        with pymupdf.open(stream=source.data, filetype=filetype) as image:  # type: ignore[no-untyped-call]
            converted = image.convert_to_pdf()
        return pymupdf.open(stream=converted, filetype="pdf")  # type: ignore[no-untyped-call]

    def _rebuild(
        self,
        sources: list[bytes],
        plan: Callable[[list[int]], Iterable[tuple[int, int]]],
    ) -> bytes:
        """Open every source, ask `plan` for (source_index, page_number) pairs, copy them.

        `plan` receives the page count of each source.
        """
        opened: list[pymupdf.Document] = []
        try:
            for data in sources:
                opened.append(pymupdf.open(stream=data, filetype="pdf"))  # type: ignore[no-untyped-call]
            selection: Iterable[tuple[int, int]] = plan([doc.page_count for doc in opened])
            with pymupdf.open() as target:  # type: ignore[no-untyped-call]
                for source_index, number in selection:
                    target.insert_pdf(
                        opened[source_index], from_page=number - 1, to_page=number - 1
                    )
                if target.page_count == 0:
                    raise PdfProcessingError("refusing to write a PDF with no pages")
                return target.tobytes(garbage=3, deflate=True)
        except PdfProcessingError:
            raise
        except Exception as exc:
            raise PdfProcessingError(f"pymupdf page copy failed: {exc}") from exc
        finally:
            for doc in opened:
                doc.close()
