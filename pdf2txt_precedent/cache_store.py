"""
Cache Store - maps a case to its working files under the cache directory.

Layout (one subtree per case, keyed by the output stem):
    {cache_dir}/{stem}/{stem}.pdf
    {cache_dir}/{stem}/{stem}-{page}.jpg
    {cache_dir}/{stem}/{stem}_err.txt

Entries are never removed here; cleaning the cache directory is left to the operator.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .models import CaseRecord

logger = logging.getLogger(__name__)


def is_valid_file(path: Path) -> bool:
    """A cache entry only counts if the file exists and is non-empty."""
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


@dataclass(frozen=True)
class CacheEntry:
    pdf_path: Path
    is_cached: bool


class CacheStore:
    """
    Decide reuse vs. re-fetch for a case's PDF and derived page images.
    """

    def __init__(self, cache_dir: Path, use_cache: bool = True):
        """
        Args:
            cache_dir: Root of the cache tree
            use_cache: False forces every PDF to be fetched again
        """
        self.cache_dir = Path(cache_dir)
        self.use_cache = use_cache

    def case_dir(self, record: CaseRecord) -> Path:
        return self.cache_dir / record.output_stem

    def ensure_case_dir(self, record: CaseRecord) -> Path:
        path = self.case_dir(record)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def pdf_path(self, record: CaseRecord) -> Path:
        return self.case_dir(record) / f"{record.output_stem}.pdf"

    def page_image_path(self, record: CaseRecord, page: int) -> Path:
        return self.case_dir(record) / f"{record.output_stem}-{page}.jpg"

    def error_log_path(self, record: CaseRecord) -> Path:
        return self.case_dir(record) / f"{record.output_stem}_err.txt"

    def resolve(self, record: CaseRecord) -> CacheEntry:
        """
        Return where the case's PDF lives and whether it can be reused.

        With caching disabled, or when the file is missing/empty, is_cached is
        False and whatever sits at the path gets overwritten by the fetcher.
        """
        path = self.pdf_path(record)
        if not self.use_cache:
            return CacheEntry(pdf_path=path, is_cached=False)
        return CacheEntry(pdf_path=path, is_cached=is_valid_file(path))

    def cached_page_images(self, record: CaseRecord, page_count: int) -> Optional[List[Path]]:
        """
        Return the cached page images for pages 1..page_count, or None unless
        every one of them is valid.
        """
        if not self.use_cache or page_count < 1:
            return None
        pages = [self.page_image_path(record, n) for n in range(1, page_count + 1)]
        if all(is_valid_file(p) for p in pages):
            return pages
        return None
