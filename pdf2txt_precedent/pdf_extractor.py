"""
PDF Text Extraction
Two interchangeable strategies selected once per run:
- TextLayerExtractor ("p2t"): the PDF's embedded text layer, whole document at once
- OcrExtractor ("ocr"): rasterize every page and OCR it, reassembled in page order
"""

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

from .backends import (
    OcrBackend,
    Pdf2ImageRaster,
    PdfplumberTextLayer,
    RasterBackend,
    TesseractOcr,
    TextLayerBackend,
)
from .cache_store import CacheStore
from .config import PipelineConfig
from .exceptions import ExtractError
from .models import CaseRecord, ExtractionMode, ExtractionResult
from .rasterizer import PageRasterizer

logger = logging.getLogger(__name__)

# A line holding nothing but a page or line number, e.g. "12", "- 3 -"
PAGE_OR_LINE_NUMBER_RE = re.compile(r'^\s*-?\s*\d+\s*-?\s*$')

PAGE_SEPARATOR = "\n\n"


def clean_text_layer(text: str) -> str:
    """
    Drop page/line-number lines and blank lines from text-layer output.

    Args:
        text: Raw text from the text-layer backend

    Returns:
        Cleaned text, one source line per line
    """
    lines = []
    for line in text.splitlines():
        if not line.strip():
            continue
        if PAGE_OR_LINE_NUMBER_RE.match(line):
            continue
        lines.append(line.rstrip())
    return "\n".join(lines)


def join_ocr_lines(text: str) -> str:
    """
    Reflow one page of OCR output.

    Tesseract breaks lines where the scan does; Japanese has no inter-word
    spaces, so wrapped lines are joined directly. A run of blank lines marks a
    paragraph end and becomes a single line break.
    """
    parts: List[str] = []
    pending_break = False
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            pending_break = True
            continue
        if pending_break and parts:
            parts.append("\n")
        parts.append(stripped)
        pending_break = False
    return "".join(parts)


class Extractor:
    """Common contract: a case and its local PDF in, text out."""

    mode: ExtractionMode

    def extract(self, record: CaseRecord, pdf_path: Path, pdf_refetched: bool = False) -> ExtractionResult:
        raise NotImplementedError


class TextLayerExtractor(Extractor):
    """Use the PDF's own text layer; document order is preserved by the backend."""

    mode = ExtractionMode.TEXT_LAYER

    def __init__(self, backend: Optional[TextLayerBackend] = None):
        self.backend = backend or PdfplumberTextLayer()

    def extract(self, record: CaseRecord, pdf_path: Path, pdf_refetched: bool = False) -> ExtractionResult:
        raw = self.backend.extract_text(Path(pdf_path))
        text = clean_text_layer(raw)
        if not text.strip():
            raise ExtractError("Text layer is empty (scanned PDF?); consider --mode ocr", fatal=True)
        logger.info(f"  Extracted {len(text)} chars from text layer")
        return ExtractionResult(text=text)


class OcrExtractor(Extractor):
    """
    OCR each rasterized page and concatenate in page order.

    A page that fails is re-run once, then replaced by an empty segment and
    reported as a warning. The case is lost only when every page fails or
    no page yields any text.
    """

    mode = ExtractionMode.OCR

    def __init__(
        self,
        rasterizer: PageRasterizer,
        ocr_backend: Optional[OcrBackend] = None,
        page_workers: int = 1,
        page_retries: int = 1,
    ):
        self.rasterizer = rasterizer
        self.ocr_backend = ocr_backend or TesseractOcr()
        self.page_workers = max(1, page_workers)
        self.page_retries = max(0, page_retries)
        self._availability_lock = threading.Lock()
        self._availability_checked = False
        self._availability_error: Optional[ExtractError] = None

    def ensure_available(self) -> None:
        """Check the OCR engine once per run; every case sees the same verdict."""
        with self._availability_lock:
            if not self._availability_checked:
                try:
                    self.ocr_backend.check_available()
                except ExtractError as e:
                    self._availability_error = e
                self._availability_checked = True
        if self._availability_error is not None:
            raise ExtractError(self._availability_error.message, fatal=True)

    def _ocr_page(self, index: int, image_path: Path) -> Tuple[int, Optional[str], Optional[str]]:
        """Returns (index, text or None, error or None)."""
        last_error: Optional[BaseException] = None
        for attempt in range(1 + self.page_retries):
            try:
                return index, self.ocr_backend.image_to_text(image_path), None
            except ExtractError as e:
                if e.fatal:
                    raise
                last_error = e
            except Exception as e:
                last_error = e
            if attempt < self.page_retries:
                logger.debug(f"OCR retry for page {index + 1} ({image_path.name}): {last_error}")
        return index, None, str(last_error)

    def extract(self, record: CaseRecord, pdf_path: Path, pdf_refetched: bool = False) -> ExtractionResult:
        self.ensure_available()

        pages = self.rasterizer.rasterize(record, Path(pdf_path), reuse_cached=not pdf_refetched)
        page_texts: List[Optional[str]] = [None] * len(pages)
        errors: List[Tuple[int, str]] = []

        if self.page_workers > 1 and len(pages) > 1:
            with ThreadPoolExecutor(max_workers=self.page_workers) as executor:
                futures = [executor.submit(self._ocr_page, i, p) for i, p in enumerate(pages)]
                outcomes = [f.result() for f in futures]
        else:
            outcomes = [self._ocr_page(i, p) for i, p in enumerate(pages)]

        # Slot each result by page index, never by completion order
        for index, text, error in outcomes:
            if error is not None:
                errors.append((index + 1, error))
            else:
                page_texts[index] = text

        if len(errors) == len(pages):
            raise ExtractError(
                f"OCR failed on all {len(pages)} pages (first error: {errors[0][1]})", fatal=True
            )

        text = PAGE_SEPARATOR.join(join_ocr_lines(t or "") for t in page_texts)
        if not text.strip():
            raise ExtractError(f"OCR found no text on any of {len(pages)} pages", fatal=True)

        result = ExtractionResult(text=text, page_count=len(pages))
        for page, error in sorted(errors):
            result.failed_pages.append(page)
            result.warnings.append(f"OCR failed on page {page}/{len(pages)}: {error}")

        logger.info(
            f"  OCR produced {len(result.text)} chars from {len(pages)} pages"
            + (f" ({len(errors)} failed)" if errors else "")
        )
        return result


def build_extractor(
    config: PipelineConfig,
    cache_store: CacheStore,
    text_layer: Optional[TextLayerBackend] = None,
    raster: Optional[RasterBackend] = None,
    ocr: Optional[OcrBackend] = None,
) -> Extractor:
    """
    Create the extractor for the run's mode, wiring the default backends
    unless replacements are given.
    """
    if config.mode == ExtractionMode.TEXT_LAYER:
        logger.info("Using text-layer extraction (pdfplumber)")
        return TextLayerExtractor(text_layer)

    rasterizer = PageRasterizer(
        raster or Pdf2ImageRaster(poppler_path=config.poppler_path),
        cache_store,
        dpi=config.dpi,
    )
    ocr_backend = ocr or TesseractOcr(
        lang=config.ocr_lang,
        crop_box=config.crop_box,
        timeout=config.ocr_timeout,
        tesseract_cmd=config.tesseract_cmd,
    )
    logger.info(f"Using OCR extraction (lang={config.ocr_lang}, dpi={config.dpi}, page_workers={config.page_workers})")
    return OcrExtractor(rasterizer, ocr_backend, page_workers=config.page_workers)
