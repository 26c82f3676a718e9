import io

import pdfplumber

from docproc.pdf.base import BasePdfInspector, PageInfo
from docproc.pdf.exceptions import PdfProcessingError


class PdfPlumberAdapter(BasePdfInspector):
    """Reads page geometry using pdfplumber (pdfminer under the hood)."""

    def inspect(self, pdf_bytes: bytes) -> list[PageInfo]:
        try:
            with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
                return [
                    PageInfo(
                        page_number=page.page_number,
                        width=round(float(page.width)),
                        height=round(float(page.height)),
                        rotation=int(page.rotation or 0),
                    )
                    for page in pdf.pages
                ]
        except Exception as exc:
            raise PdfProcessingError(f"pdfplumber inspection failed: {exc}") from exc
