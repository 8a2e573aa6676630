"""
Precedent PDF-to-Text Pipeline
Converts court-ruling PDFs listed in a case listing into plain-text files,
using the embedded text layer or Tesseract OCR.
"""

from .case_loader import LoadedBatch, load_cases
from .case_processor import CaseProcessor
from .config import PipelineConfig
from .models import BatchReport, CaseRecord, CaseResult, CaseStatus, ExtractionMode

__version__ = "1.0.0"

__all__ = [
    'BatchReport',
    'CaseProcessor',
    'CaseRecord',
    'CaseResult',
    'CaseStatus',
    'ExtractionMode',
    'LoadedBatch',
    'PipelineConfig',
    'load_cases',
]
