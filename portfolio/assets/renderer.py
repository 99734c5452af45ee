"""PDF to page-image rendering.

A resume is displayed by iterating its page images, so output files are
named by 1-based page index and returned in page order.
"""
from __future__ import annotations

import io
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import List, Optional

import fitz  # PyMuPDF
import PyPDF2
from PIL import Image
from PyPDF2.errors import PdfReadError

from .deadline import Cancelled, Result, run_with_deadline
from .errors import DocumentCorrupt, DocumentEncrypted

logger = logging.getLogger(__name__)

PAGE_PREFIX = "page"
PAGE_FORMAT = "JPEG"
PAGE_EXT = ".jpg"


def page_filename(page_number: int) -> str:
    return f"{PAGE_PREFIX}-{page_number}{PAGE_EXT}"


@dataclass
class RenderedDocument:
    page_count: int
    page_paths: List[str] = field(default_factory=list)


class DocumentRenderer:
    def __init__(self, dpi: int = 150, jpeg_quality: int = 90):
        self.dpi = dpi
        self.jpeg_quality = jpeg_quality

    def probe(self, pdf_path: str) -> int:
        """Return the page count, rejecting unreadable, encrypted and empty PDFs."""
        try:
            reader = PyPDF2.PdfReader(pdf_path)
            if reader.is_encrypted:
                raise DocumentEncrypted()
            page_count = len(reader.pages)
        except (PdfReadError, OSError, ValueError, KeyError, TypeError) as e:
            raise DocumentCorrupt() from e
        if page_count < 1:
            raise DocumentCorrupt("The PDF has no pages.")
        return page_count

    def render(self, pdf_path: str, out_dir: str, cancel: Optional[threading.Event] = None) -> RenderedDocument:
        """Render every page of ``pdf_path`` into ``out_dir`` as ``page-<n>.jpg``.

        The document is opened once for all pages. ``cancel`` is checked
        between pages.
        """
        page_count = self.probe(pdf_path)
        try:
            doc = fitz.open(pdf_path)
        except RuntimeError as e:
            raise DocumentCorrupt() from e

        paths: List[str] = []
        try:
            if doc.needs_pass:
                raise DocumentEncrypted()
            if len(doc) != page_count:
                logger.warning("Page count mismatch for %s: probe=%d render=%d", pdf_path, page_count, len(doc))
                page_count = len(doc)
            if page_count < 1:
                raise DocumentCorrupt("The PDF has no pages.")

            for i in range(page_count):
                if cancel is not None and cancel.is_set():
                    raise Cancelled(f"render cancelled after {i} of {page_count} pages")
                page = doc.load_page(i)
                pix = page.get_pixmap(dpi=self.dpi, alpha=False)
                img = Image.open(io.BytesIO(pix.tobytes("png")))
                path = os.path.join(out_dir, page_filename(i + 1))
                img.convert("RGB").save(path, PAGE_FORMAT, quality=self.jpeg_quality)
                paths.append(path)
        except RuntimeError as e:
            # fitz raises RuntimeError subclasses for damaged page streams
            raise DocumentCorrupt() from e
        finally:
            doc.close()

        logger.debug("Rendered %d pages from %s", page_count, pdf_path)
        return RenderedDocument(page_count=page_count, page_paths=paths)

    def render_with_deadline(self, pdf_path: str, out_dir: str, timeout: float) -> Result:
        return run_with_deadline(self.render, timeout, pdf_path, out_dir)
