"""
Case Processor - Orchestrates the per-case pipeline and the batch
Cache lookup -> fetch -> (rasterize) -> extract -> write, one case at a time,
many cases in parallel.
"""

import logging
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .cache_store import CacheStore
from .case_loader import LoadedBatch
from .config import PipelineConfig
from .exceptions import (
    ExtractError,
    FetchError,
    Pdf2TxtError,
    RasterError,
    RecordError,
    WriteError,
)
from .fetcher import PDFFetcher
from .models import BatchReport, CaseRecord, CaseResult, CaseStatus
from .output_writer import OutputWriter
from .pdf_extractor import Extractor, build_extractor
from .progress_tracker import ProgressTracker

logger = logging.getLogger(__name__)

# Stage a typed error belongs to, regardless of where it surfaced
_ERROR_STAGES = (
    (FetchError, "fetch"),
    (RasterError, "raster"),
    (ExtractError, "extract"),
    (WriteError, "write"),
)


def _stage_for(error: Exception, current_stage: str) -> str:
    for error_type, stage in _ERROR_STAGES:
        if isinstance(error, error_type):
            return stage
    return current_stage


class CaseProcessor:
    """
    Main processor that runs the pipeline for every case in a batch.

    Pipeline (per case):
    1. Skip if the output file exists (unless force_rerun)
    2. Resolve the cached PDF; fetch it when missing or caching is off
    3. Extract text (text layer, or rasterize + OCR)
    4. Write the output file atomically

    Any error inside a case is recorded on that case's result; it never
    stops the rest of the batch.
    """

    def __init__(
        self,
        config: PipelineConfig,
        fetcher: Optional[PDFFetcher] = None,
        extractor: Optional[Extractor] = None,
        cache_store: Optional[CacheStore] = None,
        writer: Optional[OutputWriter] = None,
    ):
        """
        Initialize the case processor.

        Args:
            config: Run-wide settings
            fetcher: PDFFetcher instance (created from config if not provided)
            extractor: Extractor for the run's mode (created if not provided)
            cache_store: CacheStore instance (created if not provided)
            writer: OutputWriter instance (created if not provided)
        """
        self.config = config
        self.cache_store = cache_store or CacheStore(config.cache_dir, use_cache=config.use_cache)
        self.fetcher = fetcher or PDFFetcher(
            timeout=config.fetch_timeout,
            max_retries=config.fetch_retries,
            backoff=config.fetch_backoff,
        )
        self.extractor = extractor or build_extractor(config, self.cache_store)
        self.writer = writer or OutputWriter(config.output_dir, force_rerun=config.force_rerun)
        self.max_workers = config.max_workers

    def process_case(self, index: int, record: CaseRecord) -> CaseResult:
        """
        Process a single case.

        Args:
            index: Position of the record in the input batch
            record: The case

        Returns:
            CaseResult (never raises for pipeline errors)
        """
        t0 = time.time()
        result = CaseResult(
            index=index,
            key=record.output_stem,
            case_number=record.case_number,
            status=CaseStatus.FAILED,
            output_path=str(self.writer.output_path(record)),
        )

        if self.writer.should_skip(record):
            result.status = CaseStatus.SKIPPED
            return result

        logger.info(f"[START] {record.output_stem}")
        stage = "cache"
        try:
            entry = self.cache_store.resolve(record)
            self.cache_store.ensure_case_dir(record)

            stage = "fetch"
            if entry.is_cached:
                logger.info(f"[Hit PDF Cache] {entry.pdf_path}")
                result.pdf_from_cache = True
            else:
                logger.info(f"[START] download: {record.url}")
                self.fetcher.fetch(record.url, entry.pdf_path)
                logger.info(f"[END] download: {record.url}")

            stage = "extract"
            extraction = self.extractor.extract(record, entry.pdf_path, pdf_refetched=not entry.is_cached)
            result.page_count = extraction.page_count
            result.warnings = list(extraction.warnings)

            stage = "write"
            if self.writer.write(record, extraction.text):
                result.status = CaseStatus.WRITTEN
            else:
                # Output appeared while we were working; leave it alone
                result.status = CaseStatus.SKIPPED

        except Pdf2TxtError as e:
            result.stage = _stage_for(e, stage)
            result.error = e.message
        except OSError as e:
            result.stage = stage
            result.error = f"{type(e).__name__}: {e}"
        except Exception as e:
            logger.exception(f"  Unexpected error in {record.output_stem} during {stage}")
            result.stage = "unexpected"
            result.error = f"{type(e).__name__}: {e}"
        finally:
            result.duration_sec = time.time() - t0

        self._write_diagnostics(record, result)
        return result

    def _write_diagnostics(self, record: CaseRecord, result: CaseResult):
        """
        Keep a per-case `_err.txt` next to the cached PDF when there is something
        to report; remove a stale one from an earlier run otherwise.
        """
        path = self.cache_store.error_log_path(record)
        if not result.warnings and not result.error:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"  Could not remove old diagnostics for {record.output_stem}: {e}")
            return
        lines = [f"[{datetime.now().isoformat()}] {record.output_stem} ({record.url})"]
        if result.error:
            lines.append(f"FAILED at {result.stage}: {result.error}")
        lines.extend(f"WARNING: {w}" for w in result.warnings)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as e:
            logger.warning(f"  Could not write diagnostics for {record.output_stem}: {e}")

    def _run_case(self, index: int, record: CaseRecord, tracker: ProgressTracker) -> CaseResult:
        """Worker entry: honour a pending shutdown before starting any work."""
        if tracker.should_shutdown():
            return self._cancelled(index, record)
        return self.process_case(index, record)

    @staticmethod
    def _cancelled(index: int, record: CaseRecord) -> CaseResult:
        return CaseResult(
            index=index,
            key=record.output_stem,
            case_number=record.case_number,
            status=CaseStatus.CANCELLED,
        )

    @staticmethod
    def _rejected(index: int, error: RecordError) -> CaseResult:
        return CaseResult(
            index=index,
            key=error.key or f"#{index}",
            status=CaseStatus.FAILED,
            stage="input",
            error=error.message,
        )

    def process_batch(
        self,
        batch: LoadedBatch,
        tracker: Optional[ProgressTracker] = None,
        parallel: bool = True,
    ) -> BatchReport:
        """
        Process every case of a loaded batch.

        Args:
            batch: Records (and rejected entries) from the case loader
            tracker: ProgressTracker (a quiet one is created if not provided)
            parallel: Use a thread pool of config.max_workers

        Returns:
            BatchReport with results in input order
        """
        if tracker is None:
            tracker = ProgressTracker(
                output_dir=str(self.config.log_dir),
                job_name=self.config.job_name,
                install_signal_handlers=False,
            )

        self.config.cache_dir.mkdir(parents=True, exist_ok=True)
        self.config.output_dir.mkdir(parents=True, exist_ok=True)

        report = BatchReport(mode=self.config.mode.value, started_at=datetime.now())
        tracker.start_job(batch.total)

        results: List[CaseResult] = []
        for index, error in batch.rejected:
            rejected = self._rejected(index, error)
            tracker.record(rejected)
            results.append(rejected)

        if parallel and self.max_workers > 1 and len(batch.records) > 1:
            results.extend(self._process_parallel(batch.records, tracker))
        else:
            results.extend(self._process_sequential(batch.records, tracker))

        # Sort by original order so the report does not depend on completion order
        results.sort(key=lambda r: r.index)
        report.results = results
        report.finished_at = datetime.now()

        tracker.finish_job(report)
        return report

    def _process_sequential(
        self, records: List[Tuple[int, CaseRecord]], tracker: ProgressTracker
    ) -> List[CaseResult]:
        """Process cases one after another."""
        results = []
        for index, record in records:
            result = self._run_case(index, record, tracker)
            tracker.record(result)
            results.append(result)
        return results

    def _process_parallel(
        self, records: List[Tuple[int, CaseRecord]], tracker: ProgressTracker
    ) -> List[CaseResult]:
        """Process cases in parallel using ThreadPoolExecutor."""
        logger.info(f"Using {self.max_workers} parallel workers")
        results: List[CaseResult] = []
        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        interrupted = False
        try:
            futures: Dict[Future, Tuple[int, CaseRecord]] = {
                executor.submit(self._run_case, index, record, tracker): (index, record)
                for index, record in records
            }

            # Collect results as they complete
            for future in as_completed(futures):
                index, record = futures[future]
                try:
                    result = future.result()
                except CancelledError:
                    result = self._cancelled(index, record)
                except Exception as e:
                    logger.error(f"[ERROR] {record.output_stem}: {e}")
                    result = CaseResult(
                        index=index,
                        key=record.output_stem,
                        case_number=record.case_number,
                        status=CaseStatus.FAILED,
                        stage="unexpected",
                        error=str(e),
                    )
                tracker.record(result)
                results.append(result)

                if tracker.should_shutdown():
                    # Stop launching new cases; queued ones come back cancelled
                    for pending in futures:
                        pending.cancel()
        except KeyboardInterrupt:
            interrupted = True
            raise
        finally:
            executor.shutdown(wait=not interrupted, cancel_futures=True)

        return results
