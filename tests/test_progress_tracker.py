from __future__ import annotations

import csv
import json
import signal
from pathlib import Path

from pdf2txt_precedent.models import BatchReport, CaseResult, CaseStatus
from pdf2txt_precedent.progress_tracker import ProgressTracker, _format_duration


def _result(index: int, status: CaseStatus, **kwargs) -> CaseResult:
    return CaseResult(index=index, key=f"A{index}_2021_4_1", case_number=f"A{index}", status=status, **kwargs)


def test_failures_are_appended_to_csv(tmp_path: Path) -> None:
    tracker = ProgressTracker(output_dir=str(tmp_path), job_name="job", install_signal_handlers=False)
    tracker.start_job(3)

    tracker.record(_result(0, CaseStatus.WRITTEN))
    tracker.record(_result(1, CaseStatus.FAILED, stage="fetch", error="HTTP 404"))
    tracker.record(_result(2, CaseStatus.FAILED, stage="extract", error="OCR failed"))

    with open(tracker.failed_file, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [(r["index"], r["stage"], r["error"]) for r in rows] == [
        ("1", "fetch", "HTTP 404"),
        ("2", "extract", "OCR failed"),
    ]
    assert tracker.stats["written"] == 1
    assert tracker.stats["failed"] == 2


def test_finish_job_writes_report(tmp_path: Path) -> None:
    tracker = ProgressTracker(output_dir=str(tmp_path), job_name="job", install_signal_handlers=False)
    report = BatchReport(
        results=[
            _result(0, CaseStatus.WRITTEN, warnings=["OCR failed on page 2/3: boom"]),
            _result(1, CaseStatus.SKIPPED),
        ],
        mode="ocr",
    )
    tracker.start_job(2)

    path = tracker.finish_job(report)

    assert path == tmp_path / "report_job.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["mode"] == "ocr"
    assert data["counts"]["partial"] == 1
    assert [r["status"] for r in data["results"]] == ["written", "skipped"]
    assert not (tmp_path / "report_job.tmp").exists()


def test_signal_handlers_restored_after_job(tmp_path: Path) -> None:
    before = signal.getsignal(signal.SIGINT)
    tracker = ProgressTracker(output_dir=str(tmp_path), job_name="job")
    assert signal.getsignal(signal.SIGINT) is not before

    tracker.finish_job(BatchReport())

    assert signal.getsignal(signal.SIGINT) is before


def test_request_shutdown() -> None:
    tracker = ProgressTracker(install_signal_handlers=False)

    assert not tracker.should_shutdown()
    tracker.request_shutdown()
    assert tracker.should_shutdown()


def test_format_duration() -> None:
    assert _format_duration(42) == "42s"
    assert _format_duration(125) == "2m 5s"
    assert _format_duration(7260) == "2h 1m"
