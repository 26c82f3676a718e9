import io
from collections.abc import Callable

import pymupdf
import pytest
from reportlab.lib.pagesizes import A4, letter
from reportlab.pdfgen import canvas


def build_pdf(labels: list[str], pagesize: tuple[float, float] = letter) -> bytes:
    """Generate a PDF with one page per label, each page showing its label."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize)
    for label in labels:
        c.drawString(72, 720, label)
        c.showPage()
    c.save()
    return buf.getvalue()


def page_texts(pdf_bytes: bytes) -> list[str]:
    """Text of each page, stripped, in document order."""
    with pymupdf.open(stream=pdf_bytes, filetype="pdf") as doc:
        return [page.get_text().strip() for page in doc]


@pytest.fixture()
def sample_pdf_bytes() -> bytes:
    """Generate a minimal single-page PDF with known text content."""
    return build_pdf(["Hello PDF World"])


@pytest.fixture()
def multi_page_pdf_bytes() -> bytes:
    """Generate a five-page letter PDF labelled 'Page 1'..'Page 5'."""
    return build_pdf([f"Page {n}" for n in range(1, 6)])


@pytest.fixture()
def mixed_size_pdf_bytes() -> bytes:
    """A letter page followed by an A4 page."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=letter)
    c.drawString(72, 720, "Letter page")
    c.showPage()
    c.setPageSize(A4)
    c.drawString(72, 720, "A4 page")
    c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture()
def png_bytes() -> bytes:
    """A 200x100 white PNG."""
    pix = pymupdf.Pixmap(pymupdf.csRGB, pymupdf.IRect(0, 0, 200, 100), False)
    pix.clear_with(255)
    return pix.tobytes("png")


@pytest.fixture()
def make_pdf() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture()
def read_page_texts() -> Callable[[bytes], list[str]]:
    return page_texts
