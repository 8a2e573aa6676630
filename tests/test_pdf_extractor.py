from __future__ import annotations

from pathlib import Path

import pytest

from pdf2txt_precedent.cache_store import CacheStore
from pdf2txt_precedent.exceptions import ExtractError, RasterError
from pdf2txt_precedent.models import ExtractionMode
from pdf2txt_precedent.pdf_extractor import (
    OcrExtractor,
    TextLayerExtractor,
    build_extractor,
    clean_text_layer,
    join_ocr_lines,
)
from pdf2txt_precedent.rasterizer import PageRasterizer

from .fakes import FakeOcr, FakeRaster, FakeTextLayer


def test_clean_text_layer_drops_numbers_and_blank_lines() -> None:
    raw = "主文\n\n 1 \n本件上告を棄却する。  \n- 2 -\n12\n理由 3 について\n"

    assert clean_text_layer(raw) == "主文\n本件上告を棄却する。\n理由 3 について"


def test_join_ocr_lines_reflows_wrapped_lines() -> None:
    raw = "  本件上告を\n棄却する。 \n\n\n理由\n  第1 \n"

    assert join_ocr_lines(raw) == "本件上告を棄却する。\n理由第1"


def test_join_ocr_lines_ignores_leading_blank_lines() -> None:
    assert join_ocr_lines("\n\n主文\n") == "主文"


def test_text_layer_extractor(tmp_path: Path, make_record) -> None:
    backend = FakeTextLayer({"case": "判決\n- 1 -\n主文"})

    result = TextLayerExtractor(backend).extract(make_record(), tmp_path / "case.pdf")

    assert result.text == "判決\n主文"
    assert result.warnings == []


def test_empty_text_layer_is_fatal(tmp_path: Path, make_record) -> None:
    extractor = TextLayerExtractor(FakeTextLayer({"case": "\n 1 \n"}))

    with pytest.raises(ExtractError, match="Text layer is empty") as excinfo:
        extractor.extract(make_record(), tmp_path / "case.pdf")
    assert excinfo.value.fatal


def _ocr_extractor(tmp_path: Path, raster: FakeRaster, ocr: FakeOcr, page_workers: int = 1) -> OcrExtractor:
    store = CacheStore(tmp_path / "cache")
    return OcrExtractor(PageRasterizer(raster, store), ocr, page_workers=page_workers)


def test_ocr_pages_joined_in_page_order(tmp_path: Path, make_record) -> None:
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=3), FakeOcr())

    result = extractor.extract(make_record(), tmp_path / "case.pdf")

    assert result.page_count == 3
    assert result.text == "\n\n".join(
        f"PAGE-{n}-START本文\nPAGE-{n}-END" for n in (1, 2, 3)
    )


def test_ocr_page_order_ignores_completion_order(tmp_path: Path, make_record) -> None:
    # Page 1 finishes last
    ocr = FakeOcr(delays={1: 0.3, 2: 0.1})
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=4), ocr, page_workers=4)

    result = extractor.extract(make_record(), tmp_path / "case.pdf")

    positions = [result.text.index(f"PAGE-{n}-START") for n in (1, 2, 3, 4)]
    assert positions == sorted(positions)


def test_failed_page_leaves_empty_segment_and_warning(tmp_path: Path, make_record) -> None:
    ocr = FakeOcr(failing_pages={2})
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=3), ocr)

    result = extractor.extract(make_record(), tmp_path / "case.pdf")

    assert result.failed_pages == [2]
    assert result.is_partial
    assert "page 2/3" in result.warnings[0]
    assert result.text.split("\n\n") == ["PAGE-1-START本文\nPAGE-1-END", "", "PAGE-3-START本文\nPAGE-3-END"]
    # One retry before giving up on the page
    assert ocr.calls.count(2) == 2


def test_flaky_page_recovers_on_retry(tmp_path: Path, make_record) -> None:
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=2), FakeOcr(flaky_pages={1}))

    result = extractor.extract(make_record(), tmp_path / "case.pdf")

    assert result.failed_pages == []
    assert "PAGE-1-START" in result.text


def test_all_pages_failing_is_fatal(tmp_path: Path, make_record) -> None:
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=2), FakeOcr(failing_pages={1, 2}))

    with pytest.raises(ExtractError, match="all 2 pages"):
        extractor.extract(make_record(), tmp_path / "case.pdf")


def test_only_blank_pages_is_fatal(tmp_path: Path, make_record) -> None:
    # Page 2 fails outright, the others come back as whitespace
    ocr = FakeOcr(failing_pages={2}, blank_pages={1, 3})
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=3), ocr)

    with pytest.raises(ExtractError, match="no text") as excinfo:
        extractor.extract(make_record(), tmp_path / "case.pdf")
    assert excinfo.value.fatal


def test_blank_page_next_to_text_is_kept(tmp_path: Path, make_record) -> None:
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=2), FakeOcr(blank_pages={2}))

    result = extractor.extract(make_record(), tmp_path / "case.pdf")

    assert result.text == "PAGE-1-START本文\nPAGE-1-END\n\n"
    assert result.failed_pages == []


@pytest.mark.parametrize(
    "raster",
    [FakeRaster(pages=3, failing_pages={2}), FakeRaster(pages=3, empty_pages={2})],
    ids=["render-raises", "render-empty"],
)
def test_page_render_failure_is_raster_error(tmp_path: Path, make_record, raster: FakeRaster) -> None:
    ocr = FakeOcr()
    extractor = _ocr_extractor(tmp_path, raster, ocr)

    with pytest.raises(RasterError, match="2"):
        extractor.extract(make_record(), tmp_path / "case.pdf")
    assert raster.rendered == [1, 2]
    assert ocr.calls == []


def test_missing_ocr_engine_is_fatal_for_every_case(tmp_path: Path, make_record) -> None:
    ocr = FakeOcr(unavailable=True)
    raster = FakeRaster(pages=1)
    extractor = _ocr_extractor(tmp_path, raster, ocr)

    for _ in range(2):
        with pytest.raises(ExtractError, match="Tesseract"):
            extractor.extract(make_record(), tmp_path / "case.pdf")
    assert raster.rendered == []


def test_zero_page_pdf_is_raster_error(tmp_path: Path, make_record) -> None:
    extractor = _ocr_extractor(tmp_path, FakeRaster(pages=0), FakeOcr())

    with pytest.raises(RasterError):
        extractor.extract(make_record(), tmp_path / "case.pdf")


def test_page_images_reused_unless_pdf_refetched(tmp_path: Path, make_record) -> None:
    raster = FakeRaster(pages=2)
    extractor = _ocr_extractor(tmp_path, raster, FakeOcr())
    record = make_record()

    extractor.extract(record, tmp_path / "case.pdf")
    extractor.extract(record, tmp_path / "case.pdf")
    assert raster.rendered == [1, 2]

    extractor.extract(record, tmp_path / "case.pdf", pdf_refetched=True)
    assert raster.rendered == [1, 2, 1, 2]


def test_build_extractor_selects_mode(tmp_path: Path, make_config) -> None:
    store = CacheStore(tmp_path)

    text = build_extractor(make_config(), store, text_layer=FakeTextLayer())
    ocr = build_extractor(make_config(mode=ExtractionMode.OCR), store, raster=FakeRaster(), ocr=FakeOcr())

    assert isinstance(text, TextLayerExtractor)
    assert isinstance(ocr, OcrExtractor)
