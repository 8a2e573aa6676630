#!/usr/bin/env python
"""
Run Pipeline - CLI entry point for converting court-ruling PDFs to text.

Usage:
    # Text-layer extraction, cache in ./tmp, output in the current directory
    python -m pdf2txt_precedent.run_pipeline --input precedents.json

    # OCR mode with a custom cache and output folder
    python -m pdf2txt_precedent.run_pipeline -i precedents.json --mode ocr --tmp cache --output txt

    # Re-download every PDF and regenerate every text file
    python -m pdf2txt_precedent.run_pipeline -i precedents.json --do-not-use-cache --force-re-run
"""

import argparse
import logging
import sys
from typing import List, Optional

from .case_loader import LoadedBatch, load_cases
from .case_processor import CaseProcessor
from .config import PipelineConfig, parse_crop_box
from .exceptions import InputError
from .models import BatchReport
from .progress_tracker import ProgressTracker

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CASE_FAILURES = 1
EXIT_INPUT_ERROR = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pdf2txt-precedent',
        description='Download court-ruling PDFs listed in a JSON file and convert them to text',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic run (output files: {case_number}_{year}_{month}_{day}.txt)
  pdf2txt-precedent --input precedents.json

  # OCR with Tesseract (needs tesseract + jpn data and poppler-utils), cropping line numbers
  pdf2txt-precedent --input precedents.json --mode ocr --crop 1000x1475+150+150

  # Retry after fixing failures: finished cases are skipped automatically
  pdf2txt-precedent --input precedents.json --job-name retry1
        """
    )

    # Input / output
    parser.add_argument('-i', '--input', required=True, help='Case listing JSON file')
    parser.add_argument('-t', '--tmp', type=str, help='Cache folder for PDFs and page images (default: tmp)')
    parser.add_argument('-o', '--output', type=str, help='Folder for generated text files (default: .)')
    parser.add_argument(
        '-m', '--mode',
        type=str,
        choices=['p2t', 'text-layer', 'ocr'],
        help='Text extraction method: p2t (PDF text layer, default) or ocr'
    )

    # Cache control
    parser.add_argument(
        '--do-not-use-cache',
        action='store_true',
        help='Download PDFs again even if they are already in the cache folder'
    )
    parser.add_argument(
        '--force-re-run',
        action='store_true',
        help='Regenerate text files even if they already exist'
    )

    # Processing options
    parser.add_argument('--workers', type=int, help='Number of cases processed in parallel (default: 4)')
    parser.add_argument('--sequential', action='store_true', help='Force sequential processing (1 worker)')
    parser.add_argument('--fetch-retries', type=int, help='Download attempts on network errors (default: 3)')
    parser.add_argument('--limit', type=int, help='Only process the first N entries of the listing')

    # OCR options
    parser.add_argument('--ocr-lang', type=str, help='Tesseract language (default: jpn)')
    parser.add_argument('--dpi', type=int, help='Rasterization resolution for OCR (default: 150)')
    parser.add_argument('--crop', type=str, metavar='WxH+X+Y', help='Crop page images before OCR, e.g. 1000x1475+150+150')
    parser.add_argument('--page-workers', type=int, help='Pages OCR\'d in parallel within one case (default: 1)')

    # Logging
    parser.add_argument('--log-dir', type=str, help='Folder for the failed-cases CSV and run report (default: logs)')
    parser.add_argument('--job-name', type=str, help='Name used for log files (default: timestamp)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    return parser


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Environment (.env) first, command line on top."""
    config = PipelineConfig.from_env().with_overrides(
        cache_dir=args.tmp,
        output_dir=args.output,
        log_dir=args.log_dir,
        job_name=args.job_name,
        mode=args.mode,
        max_workers=1 if args.sequential else args.workers,
        fetch_retries=args.fetch_retries,
        ocr_lang=args.ocr_lang,
        dpi=args.dpi,
        crop_box=parse_crop_box(args.crop),
        page_workers=args.page_workers,
    )
    if args.do_not_use_cache:
        config = config.with_overrides(use_cache=False)
    if args.force_re_run:
        config = config.with_overrides(force_rerun=True)
    if args.limit is not None and args.limit < 1:
        raise ValueError("limit must be at least 1")
    config.validate()
    return config


def limit_batch(batch: LoadedBatch, limit: Optional[int]) -> LoadedBatch:
    if limit is None:
        return batch
    return LoadedBatch(
        records=[(i, r) for i, r in batch.records if i < limit],
        rejected=[(i, e) for i, e in batch.rejected if i < limit],
    )


def print_summary(report: BatchReport):
    counts = report.counts()
    print(f"\n{'='*50}", flush=True)
    print("Batch Processing Complete", flush=True)
    print(f"{'='*50}", flush=True)
    print(f"  Total cases: {counts['total']}", flush=True)
    print(f"  Written: {counts['written']} ({counts['partial']} with page warnings)", flush=True)
    print(f"  Skipped: {counts['skipped']}", flush=True)
    print(f"  Failed: {counts['failed']}", flush=True)
    if counts['cancelled']:
        print(f"  Cancelled: {counts['cancelled']}", flush=True)
    for result in report.failed_results:
        print(f"  ✗ {result.key} [{result.stage}] {result.error}", flush=True)


def run(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, run the batch, return the process exit code."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_INPUT_ERROR

    try:
        batch = limit_batch(load_cases(args.input), args.limit)
    except InputError as e:
        logger.error(f"Cannot load case listing: {e.message}")
        return EXIT_INPUT_ERROR

    logger.info(f"Mode: {config.mode.value} | cache: {config.cache_dir} | output: {config.output_dir}")

    tracker = ProgressTracker(output_dir=str(config.log_dir), job_name=config.job_name)
    try:
        processor = CaseProcessor(config)
        report = processor.process_batch(batch, tracker=tracker, parallel=config.max_workers > 1)
    except KeyboardInterrupt:
        tracker.restore_signal_handlers()
        print("Interrupted by user.", flush=True)
        return EXIT_CANCELLED
    except OSError as e:
        tracker.restore_signal_handlers()
        logger.error(f"Cannot prepare working directories: {e}")
        return EXIT_INPUT_ERROR

    print_summary(report)

    if report.cancelled:
        return EXIT_CANCELLED
    return EXIT_CASE_FAILURES if report.has_failures else EXIT_OK


def main():
    sys.exit(run())


if __name__ == '__main__':
    main()
