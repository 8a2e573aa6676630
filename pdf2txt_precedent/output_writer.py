"""
Output Writer - writes one `{case_number}_{year}_{month}_{day}.txt` per case.
"""

import logging
import os
import tempfile
from pathlib import Path

from .exceptions import WriteError
from .models import CaseRecord

logger = logging.getLogger(__name__)


class OutputWriter:
    """
    Deterministic, atomic output files.
    An existing file is left alone unless force_rerun is set.
    """

    def __init__(self, output_dir: Path, force_rerun: bool = False):
        self.output_dir = Path(output_dir)
        self.force_rerun = force_rerun

    def output_path(self, record: CaseRecord) -> Path:
        return self.output_dir / record.output_filename

    def should_skip(self, record: CaseRecord) -> bool:
        """True when the output exists and we are not forced to redo it."""
        return not self.force_rerun and self.output_path(record).exists()

    def write(self, record: CaseRecord, text: str) -> bool:
        """
        Write text to the case's output file via temp file + rename.

        Returns:
            True if written, False if skipped because the output already exists

        Raises:
            WriteError: on any filesystem error; no partial file is left behind
        """
        if self.should_skip(record):
            return False

        target = self.output_path(record)
        tmp_path = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.stem}.", suffix=".tmp", dir=str(target.parent)
            )
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, 'w', encoding='utf-8', newline='\n') as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, target)
        except OSError as e:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise WriteError(f"Cannot write {target}: {e}")
        except BaseException:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise

        logger.debug(f"Wrote {len(text)} chars to {target}")
        return True
