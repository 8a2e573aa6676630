from __future__ import annotations

from pathlib import Path
from typing import List

import pytest
import requests

from pdf2txt_precedent import fetcher as fetcher_module
from pdf2txt_precedent.exceptions import PermanentFetchError, TransientFetchError
from pdf2txt_precedent.fetcher import PDFFetcher

PDF_BODY = b"%PDF-1.5\n" + b"x" * 200


class FakeResponse:
    def __init__(self, status_code: int, body: bytes = PDF_BODY):
        self.status_code = status_code
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.body), chunk_size):
            yield self.body[start:start + chunk_size]


class FakeSession:
    """Plays back a scripted list of responses (or exceptions)."""

    def __init__(self, script: List):
        self.script = list(script)
        self.requests: List[str] = []

    def get(self, url, stream=False, timeout=None):
        self.requests.append(url)
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


@pytest.fixture()
def sleeps() -> List[float]:
    return []


def _install(monkeypatch, script: List) -> FakeSession:
    session = FakeSession(script)
    monkeypatch.setattr(fetcher_module, "_get_session", lambda: session)
    return session


def _leftovers(directory: Path) -> List[str]:
    return [p.name for p in directory.iterdir() if p.name.endswith(".part")]


def test_download_writes_destination(tmp_path: Path, monkeypatch, sleeps) -> None:
    session = _install(monkeypatch, [FakeResponse(200)])
    destination = tmp_path / "case" / "case.pdf"

    PDFFetcher(sleep=sleeps.append).fetch("https://example.org/a.pdf", destination)

    assert destination.read_bytes() == PDF_BODY
    assert session.requests == ["https://example.org/a.pdf"]
    assert sleeps == []
    assert _leftovers(destination.parent) == []


def test_server_errors_are_retried_with_backoff(tmp_path: Path, monkeypatch, sleeps) -> None:
    session = _install(monkeypatch, [FakeResponse(503), FakeResponse(429), FakeResponse(200)])
    destination = tmp_path / "a.pdf"

    PDFFetcher(max_retries=3, backoff=1.5, sleep=sleeps.append).fetch("https://example.org/a.pdf", destination)

    assert destination.read_bytes() == PDF_BODY
    assert len(session.requests) == 3
    assert sleeps == [1.5, 3.0]


def test_network_errors_exhaust_retries(tmp_path: Path, monkeypatch, sleeps) -> None:
    _install(monkeypatch, [requests.ConnectionError("reset")] * 3)
    destination = tmp_path / "a.pdf"

    with pytest.raises(TransientFetchError, match="after 3 attempts"):
        PDFFetcher(max_retries=3, backoff=2.0, sleep=sleeps.append).fetch("https://example.org/a.pdf", destination)

    assert sleeps == [2.0, 4.0]
    assert not destination.exists()
    assert _leftovers(tmp_path) == []


def test_client_error_is_not_retried(tmp_path: Path, monkeypatch, sleeps) -> None:
    session = _install(monkeypatch, [FakeResponse(404)])

    with pytest.raises(PermanentFetchError, match="HTTP 404"):
        PDFFetcher(sleep=sleeps.append).fetch("https://example.org/gone.pdf", tmp_path / "a.pdf")

    assert len(session.requests) == 1
    assert sleeps == []


def test_non_pdf_body_keeps_previous_file(tmp_path: Path, monkeypatch, sleeps) -> None:
    _install(monkeypatch, [FakeResponse(200, b"<html>maintenance</html>")])
    destination = tmp_path / "a.pdf"
    destination.write_bytes(b"%PDF-old")

    with pytest.raises(PermanentFetchError, match="not a PDF"):
        PDFFetcher(sleep=sleeps.append).fetch("https://example.org/a.pdf", destination)

    assert destination.read_bytes() == b"%PDF-old"
    assert _leftovers(tmp_path) == []


def test_local_path_and_file_url(tmp_path: Path) -> None:
    source = tmp_path / "source.pdf"
    source.write_bytes(PDF_BODY)

    PDFFetcher().fetch(str(source), tmp_path / "out" / "plain.pdf")
    PDFFetcher().fetch(source.as_uri(), tmp_path / "out" / "uri.pdf")

    assert (tmp_path / "out" / "plain.pdf").read_bytes() == PDF_BODY
    assert (tmp_path / "out" / "uri.pdf").read_bytes() == PDF_BODY


def test_missing_local_file_is_permanent(tmp_path: Path) -> None:
    with pytest.raises(PermanentFetchError, match="not found"):
        PDFFetcher().fetch(str(tmp_path / "nope.pdf"), tmp_path / "out.pdf")


def test_unsupported_scheme_is_permanent(tmp_path: Path) -> None:
    with pytest.raises(PermanentFetchError, match="Unsupported"):
        PDFFetcher().fetch("ftp://example.org/a.pdf", tmp_path / "out.pdf")
