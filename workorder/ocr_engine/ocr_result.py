"""
OCR Result Data Structures.

This module defines the data classes returned by the text extraction
engine.

Classes:
    OCRResult: Recognized text of one image with engine statistics
    BatchItem: Per-image outcome of a batch extraction
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class OCRResult:
    """
    Text recognized in one image.

    `confidence` is the engine's own mean word confidence on a 0-100
    scale. It is not comparable with the 0-1 classification confidence.

    Attributes:
        text: Cleaned text (whitespace collapsed, disallowed characters removed)
        raw_text: Text as returned by the backend
        confidence: Mean word confidence, 0-100
        word_count: Number of recognized words
        line_count: Number of recognized lines
        processing_time_ms: Recognition time in milliseconds
        language: Language bundle used (e.g. "kor+eng")
        engine: Backend name
    """
    text: str = ""
    raw_text: str = ""
    confidence: float = 0.0
    word_count: int = 0
    line_count: int = 0
    processing_time_ms: int = 0
    language: str = ""
    engine: str = ""

    def is_empty(self) -> bool:
        """Check if no usable text was recognized."""
        return not self.text.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'text': self.text,
            'raw_text': self.raw_text,
            'confidence': round(self.confidence, 2),
            'word_count': self.word_count,
            'line_count': self.line_count,
            'processing_time_ms': self.processing_time_ms,
            'language': self.language,
            'engine': self.engine,
        }

    def __repr__(self) -> str:
        return (
            f"OCRResult(words={self.word_count}, lines={self.line_count}, "
            f"confidence={self.confidence:.1f}%)"
        )


@dataclass
class BatchItem:
    """Outcome of one image in OCREngine.extract_batch()."""
    source: str
    success: bool
    result: Optional[OCRResult] = None
    error: Optional[str] = None
