"""
Page Rasterizer - turns a cached PDF into page images for OCR (ocr mode only).
"""

import logging
from pathlib import Path
from typing import List

from .backends import RasterBackend
from .cache_store import CacheStore, is_valid_file
from .exceptions import RasterError
from .models import CaseRecord

logger = logging.getLogger(__name__)


class PageRasterizer:
    """
    Render every page of a PDF, in physical order 1..N, into the case's
    cache subtree. The returned list is the page sequence: index i holds page i+1.
    """

    def __init__(self, backend: RasterBackend, cache_store: CacheStore, dpi: int = 150):
        self.backend = backend
        self.cache_store = cache_store
        self.dpi = dpi

    def rasterize(self, record: CaseRecord, pdf_path: Path, reuse_cached: bool = True) -> List[Path]:
        """
        Args:
            record: Case being processed
            pdf_path: Local PDF
            reuse_cached: Allow previously rendered images to be reused
                          (False when the PDF was just re-fetched)

        Returns:
            Ordered page image paths, no gaps, no duplicates

        Raises:
            RasterError: zero pages, unreadable PDF or a page that fails to render
        """
        page_count = self.backend.page_count(Path(pdf_path))
        if page_count < 1:
            raise RasterError(f"PDF has no pages: {Path(pdf_path).name}")

        if reuse_cached:
            cached = self.cache_store.cached_page_images(record, page_count)
            if cached:
                logger.info(f"[Hit Image Cache] {record.output_stem} ({page_count} pages)")
                return cached

        self.cache_store.ensure_case_dir(record)
        pages: List[Path] = []
        for page in range(1, page_count + 1):
            destination = self.cache_store.page_image_path(record, page)
            self.backend.render_page(Path(pdf_path), page, destination, self.dpi)
            if not is_valid_file(destination):
                raise RasterError(f"Page {page} of {record.output_stem} rendered to an empty image")
            pages.append(destination)

        logger.info(f"  Rasterized {page_count} pages at {self.dpi} dpi")
        return pages
