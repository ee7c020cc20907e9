"""Text extraction and page rendering for uploaded PDFs."""

from __future__ import annotations

import logging

import fitz  # PyMuPDF

from prep_app.constants.test_constants import DEFAULT_PDF_MAX_IMAGE_PAGES, PDF_RENDER_ZOOM

logger = logging.getLogger(__name__)


class PdfExtractionError(Exception):
    """Raised when a PDF cannot be opened or read."""


class PdfExtractor:
    """Reads PDF bytes: page text when the document has a text layer, PNG renders otherwise."""

    def __init__(
        self,
        max_image_pages: int = DEFAULT_PDF_MAX_IMAGE_PAGES,
        zoom: float = PDF_RENDER_ZOOM,
    ) -> None:
        self._max_image_pages = max_image_pages
        self._zoom = zoom

    def extract_text(self, pdf_bytes: bytes) -> str:
        doc = self._open(pdf_bytes)
        try:
            return "".join(page.get_text() + "\n\n" for page in doc)
        finally:
            doc.close()

    def render_pages(self, pdf_bytes: bytes) -> list[bytes]:
        """Render up to ``max_image_pages`` pages as PNG images."""
        doc = self._open(pdf_bytes)
        try:
            images: list[bytes] = []
            matrix = fitz.Matrix(self._zoom, self._zoom)
            for page_number, page in enumerate(doc):
                if page_number >= self._max_image_pages:
                    logger.info(
                        "PDF has %d pages; only the first %d are rendered.",
                        doc.page_count,
                        self._max_image_pages,
                    )
                    break
                pix = page.get_pixmap(matrix=matrix, alpha=False)
                images.append(pix.tobytes("png"))
            return images
        finally:
            doc.close()

    @staticmethod
    def _open(pdf_bytes: bytes) -> fitz.Document:
        if not pdf_bytes:
            raise PdfExtractionError("The uploaded PDF is empty.")
        try:
            return fitz.open(stream=pdf_bytes, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise PdfExtractionError(f"Could not read the PDF: {exc}") from exc
