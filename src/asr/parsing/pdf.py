"""
PDF Text Extraction

Full-text extraction for the full-text screening stage, using PyMuPDF (fitz).
Pages are emitted with ``PAGE n`` markers so reviewers can cite locations.
"""

import logging
from pathlib import Path

import fitz

from asr.core.exceptions import FullTextExtractionError

logger = logging.getLogger(__name__)


class PdfTextExtractor:
    """
    FullTextExtractor backed by PyMuPDF.

    Usage:
        extractor = PdfTextExtractor()
        text = extractor.extract_text(Path("pdfs/3f2a9c1b0d4e5f60.pdf"))
    """

    def __init__(self, max_pages: int | None = None) -> None:
        self._max_pages = max_pages

    def extract_text(self, path: Path) -> str:
        """
        Extract page-marked plain text.

        Raises:
            FullTextExtractionError: File missing, unreadable, or without text.
        """
        path = Path(path)
        if not path.exists():
            raise FullTextExtractionError(f"File not found: {path}", str(path))

        try:
            with fitz.open(path) as doc:
                page_count = len(doc)
                limit = min(page_count, self._max_pages) if self._max_pages else page_count
                pages = []
                for page_num in range(limit):
                    text = doc[page_num].get_text("text").strip()
                    if text:
                        pages.append(f"PAGE {page_num + 1}:\n{text}")
        except (RuntimeError, ValueError) as e:
            raise FullTextExtractionError(f"Failed to read PDF: {e}", str(path)) from e

        if not pages:
            raise FullTextExtractionError("PDF contains no extractable text", str(path))

        logger.debug("Extracted %d/%d pages from %s", len(pages), page_count, path.name)
        return "\n\n".join(pages)
