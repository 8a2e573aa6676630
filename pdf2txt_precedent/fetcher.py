"""
PDF Fetcher - downloads a ruling PDF into the cache.

Writes are atomic: data goes to a temporary file next to the destination and
is renamed into place only once it is complete and looks like a PDF.
"""

import logging
import os
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

import requests

from .exceptions import FetchError, PermanentFetchError, TransientFetchError

logger = logging.getLogger(__name__)

# Thread-local storage for per-thread HTTP sessions
_thread_local = threading.local()

PDF_MAGIC = b"%PDF"
RETRYABLE_STATUS = {408, 429}
CHUNK_SIZE = 64 * 1024
USER_AGENT = "pdf2txt-precedent/1.0"


def _get_session() -> requests.Session:
    session = getattr(_thread_local, "session", None)
    if session is None:
        session = requests.Session()
        session.headers.update({"User-Agent": USER_AGENT})
        _thread_local.session = session
    return session


def _local_source_path(source: str) -> Optional[Path]:
    """Return a filesystem path for file:// URLs and plain paths, None for http(s)."""
    parsed = urlparse(source)
    if parsed.scheme in ("http", "https"):
        return None
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    # Windows drive letters parse as a one-letter scheme
    if parsed.scheme == "" or len(parsed.scheme) == 1:
        return Path(source)
    raise PermanentFetchError(f"Unsupported source scheme '{parsed.scheme}': {source}")


class PDFFetcher:
    """
    Retrieve PDFs over HTTP(S) or from the local filesystem.
    Transient failures are retried with exponential backoff.
    """

    def __init__(
        self,
        timeout: int = 60,
        max_retries: int = 3,
        backoff: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            timeout: Per-request timeout in seconds
            max_retries: Total attempts for transient failures
            backoff: Base delay in seconds; attempt n waits backoff * 2**(n-1)
            sleep: Injected for tests
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self._sleep = sleep

    def fetch(self, source: str, destination: Path) -> Path:
        """
        Fetch source into destination.

        Args:
            source: URL or local path of the PDF
            destination: Cache path to (over)write

        Returns:
            destination

        Raises:
            PermanentFetchError: on 4xx, invalid content or a missing local file
            TransientFetchError: when every retry hit a network condition
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)

        last_error: Optional[FetchError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                self._fetch_once(source, destination)
                return destination
            except TransientFetchError as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"Fetch attempt {attempt}/{self.max_retries} failed for {source}: {e.message} "
                    f"(retrying in {delay:.1f}s)"
                )
                self._sleep(delay)

        raise TransientFetchError(
            f"Giving up on {source} after {self.max_retries} attempts: {last_error.message if last_error else 'unknown error'}"
        )

    def _fetch_once(self, source: str, destination: Path) -> None:
        local_path = _local_source_path(source)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".part", dir=str(destination.parent)
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, 'wb') as out:
                if local_path is not None:
                    self._copy_local(local_path, out)
                else:
                    self._download(source, out)
                out.flush()
                os.fsync(out.fileno())

            self._check_pdf(tmp_path, source)
            os.replace(tmp_path, destination)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def _copy_local(self, path: Path, out) -> None:
        if not path.is_file():
            raise PermanentFetchError(f"Local PDF not found: {path}")
        try:
            with open(path, 'rb') as src:
                shutil.copyfileobj(src, out, CHUNK_SIZE)
        except OSError as e:
            raise PermanentFetchError(f"Cannot read local PDF {path}: {e}")

    def _download(self, url: str, out) -> None:
        try:
            with _get_session().get(url, stream=True, timeout=self.timeout) as response:
                status = response.status_code
                if status in RETRYABLE_STATUS or status >= 500:
                    raise TransientFetchError(f"HTTP {status} from {url}")
                if status >= 400:
                    raise PermanentFetchError(f"HTTP {status} from {url}")
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        out.write(chunk)
        except (requests.ConnectionError, requests.Timeout, requests.exceptions.ChunkedEncodingError) as e:
            raise TransientFetchError(f"Network error for {url}: {e}")
        except requests.RequestException as e:
            raise PermanentFetchError(f"Request failed for {url}: {e}")

    def _check_pdf(self, path: Path, source: str) -> None:
        with open(path, 'rb') as f:
            head = f.read(1024)
        if not head:
            raise PermanentFetchError(f"Empty response body from {source}")
        if PDF_MAGIC not in head:
            raise PermanentFetchError(f"Response from {source} is not a PDF")
