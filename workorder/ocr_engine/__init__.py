"""
OCR Engine Module.

Single-flight text extraction over a lazily initialized Tesseract backend.
"""

from .engine import OCREngine, clean_text, get_ocr_engine, shutdown_ocr_engine
from .ocr_result import OCRResult, BatchItem
from .tesseract_backend import TesseractBackend

__all__ = [
    'OCREngine',
    'OCRResult',
    'BatchItem',
    'TesseractBackend',
    'clean_text',
    'get_ocr_engine',
    'shutdown_ocr_engine',
]
