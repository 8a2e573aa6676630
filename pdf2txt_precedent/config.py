"""
Configuration for the Precedent PDF-to-Text Pipeline
"""

import os
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from .models import ExtractionMode

# Load .env file
load_dotenv()

# ImageMagick-style geometry: WIDTHxHEIGHT+X+Y
_CROP_RE = re.compile(r"^\s*(\d+)x(\d+)\+(\d+)\+(\d+)\s*$")


def parse_crop_box(spec: Optional[str]) -> Optional[Tuple[int, int, int, int]]:
    """
    Parse a crop geometry like '1000x1475+150+150'.

    Returns:
        (left, upper, right, lower) box for Pillow, or None if spec is empty
    """
    if not spec:
        return None
    match = _CROP_RE.match(spec)
    if not match:
        raise ValueError(f"Invalid crop geometry '{spec}', expected WIDTHxHEIGHT+X+Y")
    width, height, left, top = (int(g) for g in match.groups())
    if width == 0 or height == 0:
        raise ValueError(f"Invalid crop geometry '{spec}', width and height must be positive")
    return (left, top, left + width, top + height)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Run-wide settings, threaded explicitly into every case pipeline.
    Frozen so concurrent workers can share one instance.
    """

    # Locations
    cache_dir: Path = Path("tmp")
    output_dir: Path = Path(".")
    log_dir: Path = Path("logs")
    job_name: Optional[str] = None

    # Behaviour
    mode: ExtractionMode = ExtractionMode.TEXT_LAYER
    use_cache: bool = True           # False == --do-not-use-cache
    force_rerun: bool = False        # True == --force-re-run
    max_workers: int = 4

    # Fetching
    fetch_retries: int = 3           # total attempts for transient errors
    fetch_backoff: float = 2.0       # seconds, doubled after each attempt
    fetch_timeout: int = 60          # seconds per request

    # OCR
    ocr_lang: str = "jpn"
    dpi: int = 150
    crop_box: Optional[Tuple[int, int, int, int]] = None
    page_workers: int = 1
    ocr_timeout: int = 0             # seconds per page, 0 disables
    tesseract_cmd: Optional[str] = None
    poppler_path: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'PipelineConfig':
        """Load configuration from environment variables."""
        return cls(
            cache_dir=Path(os.getenv("PDF2TXT_CACHE_DIR", "tmp")),
            output_dir=Path(os.getenv("PDF2TXT_OUTPUT_DIR", ".")),
            log_dir=Path(os.getenv("PDF2TXT_LOG_DIR", "logs")),
            mode=ExtractionMode.parse(os.getenv("PDF2TXT_MODE", "p2t")),
            max_workers=int(os.getenv("PDF2TXT_WORKERS", "4")),
            fetch_retries=int(os.getenv("PDF2TXT_FETCH_RETRIES", "3")),
            fetch_backoff=float(os.getenv("PDF2TXT_FETCH_BACKOFF", "2.0")),
            fetch_timeout=int(os.getenv("PDF2TXT_FETCH_TIMEOUT", "60")),
            ocr_lang=os.getenv("PDF2TXT_OCR_LANG", "jpn"),
            dpi=int(os.getenv("PDF2TXT_DPI", "150")),
            crop_box=parse_crop_box(os.getenv("PDF2TXT_CROP")),
            page_workers=int(os.getenv("PDF2TXT_PAGE_WORKERS", "1")),
            ocr_timeout=int(os.getenv("PDF2TXT_OCR_TIMEOUT", "0")),
            tesseract_cmd=os.getenv("TESSERACT_CMD") or None,
            poppler_path=os.getenv("POPPLER_PATH") or None,
        )

    def with_overrides(self, **overrides) -> 'PipelineConfig':
        """Return a copy with the given fields replaced (None values are ignored)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "mode" in values:
            values["mode"] = ExtractionMode.parse(values["mode"])
        for path_field in ("cache_dir", "output_dir", "log_dir"):
            if path_field in values:
                values[path_field] = Path(values[path_field])
        return replace(self, **values)

    def validate(self) -> bool:
        """Validate that settings are usable."""
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.page_workers < 1:
            raise ValueError("page_workers must be at least 1")
        if self.fetch_retries < 1:
            raise ValueError("fetch_retries must be at least 1")
        if self.fetch_backoff < 0:
            raise ValueError("fetch_backoff must not be negative")
        if self.fetch_timeout < 1:
            raise ValueError("fetch_timeout must be at least 1 second")
        if self.dpi < 1:
            raise ValueError("dpi must be positive")
        if self.ocr_timeout < 0:
            raise ValueError("ocr_timeout must not be negative")
        if not self.ocr_lang:
            raise ValueError("ocr_lang is required")
        return True
