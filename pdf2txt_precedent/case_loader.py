"""
Case Loader - reads the upstream case listing (JSON) into CaseRecords.

The listing is either an array of records or an object keyed by entry name.
A document that is not valid JSON of one of those shapes aborts the run;
individual bad records are rejected one by one and reported.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .exceptions import InputError, RecordError
from .models import CaseRecord

logger = logging.getLogger(__name__)


@dataclass
class LoadedBatch:
    """Validated records in input order, plus the rejected ones."""
    records: List[Tuple[int, CaseRecord]] = field(default_factory=list)
    rejected: List[Tuple[int, RecordError]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.records) + len(self.rejected)


def _format_validation_error(error: ValidationError) -> str:
    """Condense a pydantic error into one line: 'field: message; ...'."""
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "record"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def parse_record(raw: Any, key: Optional[str] = None) -> CaseRecord:
    """
    Validate one raw listing entry.

    Args:
        raw: Decoded JSON value for the entry
        key: Entry name when the listing is an object

    Returns:
        CaseRecord

    Raises:
        RecordError: if the entry is not a usable record
    """
    if not isinstance(raw, dict):
        raise RecordError(f"record must be a JSON object, got {type(raw).__name__}", key=key or "")

    data = dict(raw)
    if key is not None and not data.get("key"):
        data["key"] = key

    try:
        return CaseRecord.model_validate(data)
    except ValidationError as e:
        raise RecordError(_format_validation_error(e), key=key or "")


def _iter_entries(document: Any) -> Iterable[Tuple[Optional[str], Any]]:
    if isinstance(document, list):
        for entry in document:
            yield None, entry
    elif isinstance(document, dict):
        for name, entry in document.items():
            yield name, entry
    else:
        raise InputError(
            f"Case listing must be a JSON array or object, got {type(document).__name__}"
        )


def load_cases_from_data(document: Any) -> LoadedBatch:
    """
    Validate an already-decoded listing.

    Records whose output name collides with an earlier record are rejected:
    the first one wins.
    """
    batch = LoadedBatch()
    seen_stems: Dict[str, int] = {}

    for index, (name, entry) in enumerate(_iter_entries(document)):
        try:
            record = parse_record(entry, key=name)
        except RecordError as e:
            e.key = e.key or f"#{index}"
            logger.warning(f"Rejected record {e.key}: {e.message}")
            batch.rejected.append((index, e))
            continue

        stem = record.output_stem
        if stem in seen_stems:
            error = RecordError(
                f"duplicate output name '{record.output_filename}' (already used by record #{seen_stems[stem]})",
                key=name or stem,
            )
            logger.warning(f"Rejected record {error.key}: {error.message}")
            batch.rejected.append((index, error))
            continue

        seen_stems[stem] = index
        batch.records.append((index, record))

    logger.info(f"Loaded {len(batch.records)} cases ({len(batch.rejected)} rejected)")
    return batch


def load_cases(json_path: str) -> LoadedBatch:
    """
    Load and validate the case listing file.

    Args:
        json_path: Path to the listing JSON

    Returns:
        LoadedBatch

    Raises:
        InputError: if the file is unreadable or not a listing at all
    """
    path = Path(json_path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except FileNotFoundError:
        raise InputError(f"Input file not found: {path}")
    except json.JSONDecodeError as e:
        raise InputError(f"Input file is not valid JSON: {path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Cannot read input file {path}: {e}")

    return load_cases_from_data(document)
