"""
Data Models for the Precedent PDF-to-Text Pipeline
Input records are validated with Pydantic; pipeline results are plain dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


PATH_SEPARATORS = ("/", "\\")


class CaseRecord(BaseModel):
    """
    One ruling from the upstream case listing.
    Immutable once loaded; every pipeline stage only reads it.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    case_number: str = Field(..., description="Case number, used verbatim in the output filename")
    year: int = Field(..., description="Ruling year")
    month: int = Field(..., description="Ruling month")
    day: int = Field(..., description="Ruling day")
    url: str = Field(..., description="PDF source: http(s) URL, file:// URL or local path")

    # Carried through from the listing, not used for naming
    key: Optional[str] = Field(None, description="Entry name in the listing, if it was an object")
    trial_type: Optional[str] = None
    case_name: Optional[str] = None
    court_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_aliases(cls, data: Any) -> Any:
        """Accept the upstream listing's field names and date shapes."""
        if not isinstance(data, dict):
            return data
        data = dict(data)

        if not data.get("url") and data.get("full_pdf_link"):
            data["url"] = data["full_pdf_link"]

        raw_date = data.get("date")
        if isinstance(raw_date, dict):
            for part in ("year", "month", "day"):
                if data.get(part) is None and raw_date.get(part) is not None:
                    data[part] = raw_date[part]
        elif isinstance(raw_date, str) and raw_date.strip():
            if any(data.get(part) is None for part in ("year", "month", "day")):
                try:
                    parsed = date_parser.parse(raw_date)
                except (ValueError, OverflowError) as e:
                    raise ValueError(f"unparseable date '{raw_date}': {e}")
                data.setdefault("year", parsed.year)
                data.setdefault("month", parsed.month)
                data.setdefault("day", parsed.day)
        return data

    @field_validator("url")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("case_number")
    @classmethod
    def _usable_in_filename(cls, value: str) -> str:
        # Used verbatim in the output filename
        if not value.strip():
            raise ValueError("must not be empty")
        if value != value.strip():
            raise ValueError("must not have leading or trailing whitespace")
        if any(sep in value for sep in PATH_SEPARATORS):
            raise ValueError("must not contain a path separator")
        return value

    @model_validator(mode="after")
    def _valid_calendar_date(self) -> "CaseRecord":
        try:
            date(self.year, self.month, self.day)
        except ValueError as e:
            raise ValueError(f"invalid ruling date {self.year}-{self.month}-{self.day}: {e}")
        return self

    @property
    def output_stem(self) -> str:
        """`{case_number}_{year}_{month}_{day}`, also the cache key."""
        return f"{self.case_number}_{self.year}_{self.month}_{self.day}"

    @property
    def output_filename(self) -> str:
        return f"{self.output_stem}.txt"


class ExtractionMode(str, Enum):
    """How raw text is pulled out of a PDF. Fixed for a whole run."""
    TEXT_LAYER = "p2t"
    OCR = "ocr"

    @classmethod
    def parse(cls, value: "str | ExtractionMode") -> "ExtractionMode":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        if normalized in ("p2t", "text-layer", "text_layer", "pdftotext"):
            return cls.TEXT_LAYER
        if normalized == "ocr":
            return cls.OCR
        raise ValueError(f"Unknown extraction mode: {value!r} (expected 'p2t' or 'ocr')")


class CaseStatus(str, Enum):
    WRITTEN = "written"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExtractionResult:
    """Text produced for one case, plus page-level diagnostics."""
    text: str
    page_count: int = 0
    failed_pages: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.failed_pages)


@dataclass
class CaseResult:
    """Outcome of one case pipeline run."""
    index: int                              # position in the input batch
    key: str                                # output stem, or listing key for rejected records
    status: CaseStatus
    case_number: str = ""
    output_path: Optional[str] = None
    stage: Optional[str] = None             # failing stage: input, cache, fetch, raster, extract, write
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    page_count: int = 0
    pdf_from_cache: bool = False
    duration_sec: float = 0.0

    @property
    def is_partial(self) -> bool:
        return self.status == CaseStatus.WRITTEN and bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "key": self.key,
            "case_number": self.case_number,
            "status": self.status.value,
            "output_path": self.output_path,
            "stage": self.stage,
            "error": self.error,
            "warnings": list(self.warnings),
            "page_count": self.page_count,
            "pdf_from_cache": self.pdf_from_cache,
            "duration_sec": round(self.duration_sec, 3),
        }


@dataclass
class BatchReport:
    """
    Aggregate outcome of a run.
    Results are kept in input order so the report content does not depend
    on the order in which concurrent cases finished.
    """
    results: List[CaseResult] = field(default_factory=list)
    mode: str = ExtractionMode.TEXT_LAYER.value
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def _count(self, status: CaseStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def written(self) -> int:
        return self._count(CaseStatus.WRITTEN)

    @property
    def skipped(self) -> int:
        return self._count(CaseStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(CaseStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(CaseStatus.CANCELLED)

    @property
    def partial(self) -> int:
        return sum(1 for r in self.results if r.is_partial)

    @property
    def has_failures(self) -> bool:
        return self.failed > 0

    @property
    def failed_results(self) -> List[CaseResult]:
        return [r for r in self.results if r.status == CaseStatus.FAILED]

    def counts(self) -> Dict[str, int]:
        return {
            "total": len(self.results),
            "written": self.written,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "partial": self.partial,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
        }
