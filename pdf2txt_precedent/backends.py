"""
External capability backends.

The pipeline only talks to three narrow interfaces:
- TextLayerBackend: whole-document embedded text
- RasterBackend: page count and single-page rendering
- OcrBackend: text from one page image

The default implementations wrap pdfplumber, pdf2image (poppler) and
pytesseract. Tests substitute in-memory fakes.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import ExtractError, RasterError

logger = logging.getLogger(__name__)


class TextLayerBackend:
    """Extract the embedded text layer of a whole PDF."""

    def extract_text(self, pdf_path: Path) -> str:
        raise NotImplementedError


class RasterBackend:
    """Count and render PDF pages."""

    def page_count(self, pdf_path: Path) -> int:
        raise NotImplementedError

    def render_page(self, pdf_path: Path, page: int, destination: Path, dpi: int) -> None:
        raise NotImplementedError


class OcrBackend:
    """Recognise text in a single page image."""

    def check_available(self) -> None:
        """Raise ExtractError if the OCR engine cannot run at all."""

    def image_to_text(self, image_path: Path) -> str:
        raise NotImplementedError


class PdfplumberTextLayer(TextLayerBackend):
    """
    Text-layer extraction with pdfplumber.
    Pages are read in document order and joined with a newline.
    """

    def extract_text(self, pdf_path: Path) -> str:
        try:
            import pdfplumber
        except ImportError:
            raise ExtractError("pdfplumber not installed. Run: pip install pdfplumber", fatal=True)

        logger.debug(f"Extracting text layer with pdfplumber: {Path(pdf_path).name}")
        try:
            pages_text = []
            with pdfplumber.open(pdf_path) as pdf:
                for page in pdf.pages:
                    pages_text.append(page.extract_text() or "")
        except Exception as e:
            raise ExtractError(f"pdfplumber could not read {Path(pdf_path).name}: {e}", fatal=True)

        return "\n".join(pages_text)


class Pdf2ImageRaster(RasterBackend):
    """
    Page counting via pdfinfo and per-page JPEG rendering via pdftoppm,
    both through pdf2image.
    """

    def __init__(self, poppler_path: Optional[str] = None):
        self.poppler_path = poppler_path

    def page_count(self, pdf_path: Path) -> int:
        from pdf2image import pdfinfo_from_path
        from pdf2image.exceptions import PDFInfoNotInstalledError

        try:
            info = pdfinfo_from_path(str(pdf_path), poppler_path=self.poppler_path)
        except PDFInfoNotInstalledError as e:
            raise RasterError(f"pdfinfo (poppler-utils) is not installed: {e}")
        except Exception as e:
            raise RasterError(f"Unreadable PDF {Path(pdf_path).name}: {e}")

        try:
            return int(info.get("Pages", 0))
        except (TypeError, ValueError):
            raise RasterError(f"pdfinfo reported no page count for {Path(pdf_path).name}")

    def render_page(self, pdf_path: Path, page: int, destination: Path, dpi: int) -> None:
        from pdf2image import convert_from_path

        try:
            images = convert_from_path(
                str(pdf_path),
                dpi=dpi,
                first_page=page,
                last_page=page,
                fmt="jpeg",
                poppler_path=self.poppler_path,
            )
        except Exception as e:
            raise RasterError(f"pdftoppm failed on page {page} of {Path(pdf_path).name}: {e}")
        if len(images) != 1:
            raise RasterError(
                f"pdftoppm returned {len(images)} images for page {page} of {Path(pdf_path).name}"
            )

        destination = Path(destination)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".part", dir=str(destination.parent)
        )
        os.close(fd)
        try:
            images[0].save(tmp_name, format="JPEG")
            os.replace(tmp_name, destination)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise RasterError(f"Cannot save page image {destination.name}: {e}")
        finally:
            images[0].close()


class TesseractOcr(OcrBackend):
    """
    OCR with Tesseract through pytesseract.
    An optional crop box is applied first to drop margins (line numbers, stamps).
    """

    def __init__(
        self,
        lang: str = "jpn",
        crop_box: Optional[Tuple[int, int, int, int]] = None,
        timeout: int = 0,
        tesseract_cmd: Optional[str] = None,
    ):
        self.lang = lang
        self.crop_box = crop_box
        self.timeout = timeout
        self.tesseract_cmd = tesseract_cmd

    def _pytesseract(self):
        try:
            import pytesseract
        except ImportError:
            raise ExtractError("pytesseract not installed. Run: pip install pytesseract", fatal=True)
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        return pytesseract

    def check_available(self) -> None:
        pytesseract = self._pytesseract()
        try:
            version = pytesseract.get_tesseract_version()
            languages = pytesseract.get_languages(config="")
        except pytesseract.TesseractNotFoundError:
            raise ExtractError("Tesseract executable not found. Install tesseract or set TESSERACT_CMD", fatal=True)
        except Exception as e:
            raise ExtractError(f"Tesseract is not usable: {e}", fatal=True)

        missing = [code for code in self.lang.split("+") if code not in languages]
        if missing:
            raise ExtractError(
                f"Tesseract language data missing: {', '.join(missing)} (install e.g. tesseract-ocr-{missing[0]})",
                fatal=True,
            )
        logger.info(f"Using Tesseract {version} with lang={self.lang}")

    def image_to_text(self, image_path: Path) -> str:
        from PIL import Image

        pytesseract = self._pytesseract()
        with Image.open(image_path) as img:
            prepared = img
            if self.crop_box:
                prepared = img.crop(self.crop_box)
            if prepared.mode not in ("RGB", "L"):
                prepared = prepared.convert("RGB")
            return pytesseract.image_to_string(prepared, lang=self.lang, timeout=self.timeout)
