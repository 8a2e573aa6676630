from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from pdf2txt_precedent.config import PipelineConfig
from pdf2txt_precedent.models import CaseRecord, ExtractionMode

from .fakes import FakeFetcher


@pytest.fixture()
def make_config(tmp_path: Path) -> Callable[..., PipelineConfig]:
    def _make(**overrides) -> PipelineConfig:
        values = dict(
            cache_dir=tmp_path / "tmp",
            output_dir=tmp_path / "out",
            log_dir=tmp_path / "logs",
            job_name="test",
            mode=ExtractionMode.TEXT_LAYER,
            max_workers=1,
            fetch_backoff=0.0,
        )
        values.update(overrides)
        return PipelineConfig(**values)

    return _make


@pytest.fixture()
def make_record() -> Callable[..., CaseRecord]:
    def _make(case_number: str = "令和3年(あ)第100号", year: int = 2021, month: int = 4,
              day: int = 1, url: str = "https://www.courts.go.jp/assets/hanrei/100.pdf") -> CaseRecord:
        return CaseRecord(case_number=case_number, year=year, month=month, day=day, url=url)

    return _make


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()
