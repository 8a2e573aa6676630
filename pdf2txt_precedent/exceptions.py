"""
Exceptions for the precedent PDF-to-text pipeline.

Only InputError is allowed to abort a run. Everything else is caught at the
case boundary by CaseProcessor and recorded as that case's outcome.
"""


class Pdf2TxtError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown pipeline error occurred."


class InputError(Pdf2TxtError):
    """Raised when the batch document cannot be used at all."""

    @property
    def default_message(self) -> str:
        return "Invalid batch input document."


class RecordError(InputError):
    """Raised for a single malformed case record."""

    def __init__(self, message: str = "", key: str = "") -> None:
        super().__init__(message)
        self.key = key

    @property
    def default_message(self) -> str:
        return "Malformed case record."


class FetchError(Pdf2TxtError):
    """Raised when a PDF cannot be retrieved."""

    transient = False

    @property
    def default_message(self) -> str:
        return "Failed to fetch PDF."


class TransientFetchError(FetchError):
    """Network or timeout condition, eligible for retry."""

    transient = True

    @property
    def default_message(self) -> str:
        return "Transient network error while fetching PDF."


class PermanentFetchError(FetchError):
    """Client error or malformed response; the case is abandoned."""

    @property
    def default_message(self) -> str:
        return "PDF source rejected the request or returned invalid content."


class RasterError(Pdf2TxtError):
    """Raised when a PDF cannot be rendered to page images."""

    @property
    def default_message(self) -> str:
        return "PDF could not be rasterized."


class ExtractError(Pdf2TxtError):
    """Raised when no usable text can be produced for a case."""

    def __init__(self, message: str = "", fatal: bool = True) -> None:
        super().__init__(message)
        self.fatal = fatal

    @property
    def default_message(self) -> str:
        return "Text extraction failed."


class WriteError(Pdf2TxtError):
    """Raised when the output text file cannot be written."""

    @property
    def default_message(self) -> str:
        return "Failed to write output text file."
