"""
Tesseract OCR Backend.

This module provides text recognition using Tesseract (pytesseract).

Features:
    - Word confidences from image_to_data
    - Line reconstruction from block/paragraph/line numbers
    - Configurable Tesseract parameters
    - Per-call deadline (Tesseract process is killed on timeout)

Requirements:
    - Tesseract OCR installed on the system, with the kor and eng traineddata
    - pytesseract Python package

Author: ML Engineering Team
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import pytesseract
from PIL import Image

from workorder.settings import OCRSettings
from workorder.utils.logger import get_logger
from workorder.utils.exceptions import (
    ExtractionError,
    ExtractionTimeoutError,
    OCREngineNotAvailableError,
)
from .ocr_result import OCRResult

# Initialize module logger
logger = get_logger(__name__)


class TesseractBackend:
    """
    Tesseract OCR backend implementation.

    Tesseract must be installed on the system for this to work. The
    binary check happens in the constructor, so building a backend is
    the "warm-up" the engine performs once.

    Attributes:
        language: Tesseract language code (e.g., "kor+eng")
        psm: Page Segmentation Mode (1-13)
        oem: OCR Engine Mode (0-3)
        extra_config: Additional Tesseract configuration

    Example:
        >>> backend = TesseractBackend()
        >>> result = backend.extract(image)
        >>> print(f"Found {result.word_count} words")
    """

    name = "tesseract"

    def __init__(self, settings: Optional[OCRSettings] = None) -> None:
        """Initialize the Tesseract backend with configuration."""
        settings = settings or OCRSettings.from_config()
        self.language = settings.language
        self.psm = settings.psm
        self.oem = settings.oem
        self.extra_config = settings.extra_config

        self.version = self._check_dependencies()

        logger.debug(
            f"TesseractBackend initialized (lang={self.language}, "
            f"psm={self.psm}, oem={self.oem})"
        )

    def _check_dependencies(self) -> str:
        """
        Check that the Tesseract binary and language data are available.

        Raises:
            OCREngineNotAvailableError: If Tesseract is not installed.
        """
        try:
            version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            raise OCREngineNotAvailableError("tesseract", f"not installed or not in PATH: {e}")

        available = set(pytesseract.get_languages(config=''))
        missing = [lang for lang in self.language.split('+') if lang not in available]
        if missing:
            raise OCREngineNotAvailableError("tesseract", f"missing language data: {missing}")

        logger.info(f"Tesseract version: {version}")
        return version

    def _build_config(self) -> str:
        """
        Build Tesseract configuration string.

        Returns:
            Configuration string for Tesseract.
        """
        config_parts = [
            f"--psm {self.psm}",
            f"--oem {self.oem}"
        ]

        if self.extra_config:
            config_parts.append(self.extra_config)

        return ' '.join(config_parts)

    def extract(self, image: Image.Image, timeout: Optional[float] = None) -> OCRResult:
        """
        Recognize text in an image.

        Args:
            image: PIL Image to process.
            timeout: Seconds before the Tesseract process is killed.

        Returns:
            OCRResult with raw text; cleaning is left to the engine.

        Raises:
            ExtractionTimeoutError: If Tesseract exceeds the timeout.
            ExtractionError: If recognition fails.
        """
        start_time = time.monotonic()

        config = self._build_config()
        logger.debug(f"Running Tesseract OCR (config: {config})")

        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.language,
                config=config,
                output_type=pytesseract.Output.DICT,
                timeout=timeout or 0,
            )
        except RuntimeError as e:
            # pytesseract signals a killed process with a RuntimeError
            if 'timeout' in str(e).lower():
                raise ExtractionTimeoutError("image", timeout or 0)
            raise ExtractionError("image", str(e))
        except pytesseract.TesseractError as e:
            raise ExtractionError("image", str(e))

        lines, confidences = self._parse_tesseract_output(data)
        word_count = sum(len(words) for words in lines)
        processing_time_ms = int((time.monotonic() - start_time) * 1000)

        result = OCRResult(
            raw_text="\n".join(" ".join(words) for words in lines),
            confidence=sum(confidences) / len(confidences) if confidences else 0.0,
            word_count=word_count,
            line_count=len(lines),
            processing_time_ms=processing_time_ms,
            language=self.language,
            engine=self.name,
        )

        logger.info(
            f"OCR completed: {result.word_count} words, "
            f"{result.line_count} lines, "
            f"avg confidence: {result.confidence:.1f}% "
            f"({processing_time_ms}ms)"
        )
        return result

    def _parse_tesseract_output(self, data: Dict[str, List[Any]]) -> Tuple[List[List[str]], List[float]]:
        """
        Group recognized words into lines.

        Args:
            data: Dictionary output from image_to_data.

        Returns:
            Tuple of (words per line in reading order, word confidences).
        """
        line_groups: Dict[Tuple[int, int, int], List[str]] = {}
        confidences: List[float] = []

        for i, text in enumerate(data['text']):
            # Skip empty text
            if not text or not text.strip():
                continue

            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            line_groups.setdefault(key, []).append(text.strip())

            conf = float(data['conf'][i])
            # Tesseract returns -1 for non-word elements
            if conf >= 0:
                confidences.append(conf)

        return [line_groups[key] for key in sorted(line_groups)], confidences

    def close(self) -> None:
        """Nothing persistent to release; each call runs its own process."""
        logger.debug("TesseractBackend closed")
