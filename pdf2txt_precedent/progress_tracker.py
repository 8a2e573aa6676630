"""
Progress Tracker for batch runs
Per-case status lines with ETA, a failed-cases CSV for later retry, the final
JSON report, and graceful shutdown on Ctrl+C / SIGTERM.

Files created (under log_dir):
1. failed_{job_name}.csv - one row per failed case
2. report_{job_name}.json - the BatchReport, written atomically at the end
"""

import csv
import json
import logging
import os
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from .models import BatchReport, CaseResult, CaseStatus

logger = logging.getLogger(__name__)

FAILED_CSV_FIELDS = ['timestamp', 'index', 'key', 'case_number', 'stage', 'error']


def _format_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    hours = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    return f"{hours}h {mins}m"


class ProgressTracker:
    """
    Track batch progress and the operator's shutdown request.
    All mutating methods are safe to call from worker threads.
    """

    def __init__(
        self,
        output_dir: str = "logs",
        job_name: Optional[str] = None,
        install_signal_handlers: bool = True,
    ):
        """
        Args:
            output_dir: Directory for the failed CSV and the report
            job_name: Unique name for this job (default: timestamp)
            install_signal_handlers: Hook SIGINT/SIGTERM (main thread only)
        """
        self.output_dir = Path(output_dir)

        if job_name:
            self.job_name = job_name
        else:
            self.job_name = f"batch_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.failed_file = self.output_dir / f"failed_{self.job_name}.csv"
        self.report_file = self.output_dir / f"report_{self.job_name}.json"
        self.report_temp = self.output_dir / f"report_{self.job_name}.tmp"

        self.stats: Dict[str, int] = {status.value: 0 for status in CaseStatus}
        self.stats['partial'] = 0

        self.start_time: Optional[datetime] = None
        self.total_cases: int = 0
        self.done: int = 0

        self._shutdown_requested = threading.Event()
        self._lock = threading.RLock()
        self._previous_handlers: Dict[int, object] = {}

        if install_signal_handlers:
            self._setup_signal_handlers()

    def _setup_signal_handlers(self):
        """Setup handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            if self._shutdown_requested.is_set():
                # Second Ctrl+C: stop waiting for in-flight cases
                raise KeyboardInterrupt
            logger.warning("[!] Shutdown signal received, finishing in-flight cases (Ctrl+C again to abort)...")
            self._shutdown_requested.set()

        # Only set handlers in main thread
        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                self._previous_handlers[signum] = signal.signal(signum, signal_handler)
        except ValueError:
            # Not in main thread, skip signal handling
            self._previous_handlers.clear()

    def restore_signal_handlers(self):
        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except (ValueError, TypeError):
                pass
        self._previous_handlers.clear()

    def request_shutdown(self):
        self._shutdown_requested.set()

    def should_shutdown(self) -> bool:
        """Check if shutdown was requested."""
        return self._shutdown_requested.is_set()

    def start_job(self, total_cases: int):
        """
        Start tracking a new job.

        Args:
            total_cases: Number of entries in the batch, rejected ones included
        """
        self.total_cases = total_cases
        self.start_time = datetime.now()

        logger.info(f"{'='*60}")
        logger.info(f"Job: {self.job_name}")
        logger.info(f"Total cases: {total_cases}")
        logger.info(f"Failed log: {self.failed_file}")
        logger.info(f"{'='*60}")

    def record(self, result: CaseResult):
        """Count a finished case, log its status line, and log failures to CSV."""
        with self._lock:
            self.done += 1
            self.stats[result.status.value] += 1
            if result.is_partial:
                self.stats['partial'] += 1
            if result.status == CaseStatus.FAILED:
                self._write_failed_csv(result)
            done = self.done

        eta = self._eta(done)
        prefix = f"[{done}/{self.total_cases}]"
        if result.status == CaseStatus.WRITTEN:
            tag = "[WARN]" if result.is_partial else "[OK]"
            logger.info(f"{prefix} {tag} written {result.key} | ETA: {eta}")
            for warning in result.warnings:
                logger.warning(f"    {result.key}: {warning}")
        elif result.status == CaseStatus.SKIPPED:
            logger.info(f"{prefix} [Hit Text Cache] {result.key}")
        elif result.status == CaseStatus.CANCELLED:
            logger.info(f"{prefix} [CANCELLED] {result.key}")
        else:
            logger.warning(f"{prefix} [FAIL] {result.stage}: {result.key} - {str(result.error)[:200]}")

    def _eta(self, done: int) -> str:
        if not self.start_time or done == 0:
            return ""
        remaining = self.total_cases - done
        elapsed = (datetime.now() - self.start_time).total_seconds()
        return _format_duration(elapsed / done * remaining)

    def _write_failed_csv(self, result: CaseResult):
        """Append a failure to the CSV file."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            file_exists = self.failed_file.exists()
            with open(self.failed_file, 'a', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=FAILED_CSV_FIELDS)
                if not file_exists:
                    writer.writeheader()
                writer.writerow({
                    'timestamp': datetime.now().isoformat(),
                    'index': result.index,
                    'key': result.key,
                    'case_number': result.case_number,
                    'stage': result.stage or '',
                    'error': str(result.error or '')[:500],
                })
        except OSError as e:
            logger.error(f"Failed to write to failed CSV: {e}")

    def save_report(self, report: BatchReport) -> Optional[Path]:
        """Save the final report using atomic write."""
        with self._lock:
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                with open(self.report_temp, 'w', encoding='utf-8') as f:
                    json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(self.report_temp, self.report_file)
                return self.report_file
            except OSError as e:
                logger.error(f"Failed to save report: {e}")
                self.report_temp.unlink(missing_ok=True)
                return None

    def finish_job(self, report: BatchReport) -> Optional[Path]:
        """Complete the job: summary block, report file, signal handlers restored."""
        self.restore_signal_handlers()
        report_path = self.save_report(report)

        duration = ""
        if self.start_time:
            duration = _format_duration((datetime.now() - self.start_time).total_seconds())

        counts = report.counts()
        logger.info(f"{'='*60}")
        logger.info(f"Job Complete: {self.job_name}")
        logger.info(f"{'='*60}")
        logger.info(f"Total cases: {counts['total']}")
        logger.info(f"Written: {counts['written']} ({counts['partial']} with page warnings)")
        logger.info(f"Skipped (output exists): {counts['skipped']}")
        logger.info(f"Failed: {counts['failed']}")
        if counts['cancelled']:
            logger.info(f"Cancelled: {counts['cancelled']}")
        logger.info(f"Duration: {duration}")

        if counts['failed'] > 0:
            logger.info(f"[!] {counts['failed']} failures logged to: {self.failed_file}")
            logger.info("    Fix the cause and run again; finished cases are skipped")
        if report_path:
            logger.info(f"[OK] Report saved: {report_path}")
        return report_path
