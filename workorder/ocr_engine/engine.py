"""
Main OCR Engine Module.

This module provides the OCREngine class, the single entry point for text
extraction. The recognition backend is expensive to warm up and not
reentrant, so an engine holds exactly one lazily created backend and runs
one extraction at a time behind a lock.

Usage:
    from workorder.ocr_engine import get_ocr_engine

    engine = get_ocr_engine()
    result = engine.extract("storage/work_orders/2026/10/abc_ocr.png")
    print(result.text)

Author: ML Engineering Team
"""

import io
import re
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Union

from PIL import Image

from workorder.settings import OCRSettings
from workorder.utils.logger import get_logger
from workorder.utils.exceptions import ExtractionError, ExtractionTimeoutError
from .ocr_result import BatchItem, OCRResult
from .tesseract_backend import TesseractBackend

# Initialize module logger
logger = get_logger(__name__)


ImageInput = Union[bytes, str, Path, Image.Image]

# Word characters, whitespace, Hangul jamo and syllables, digits and - . , ( )
DISALLOWED_CHARS = re.compile(r"[^\w\sㄱ-ㅎㅏ-ㅣ가-힣0-9\-.,()]")
WHITESPACE_RUN = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    """
    Normalize recognized text.

    Collapses whitespace runs to a single space, removes characters
    outside the allow-list and trims the result.

    Example:
        >>> clean_text("  ABC   Corp\\n\\n#123 ★ ")
        'ABC Corp 123'
    """
    if not text:
        return ""
    text = WHITESPACE_RUN.sub(" ", text)
    text = DISALLOWED_CHARS.sub("", text)
    return WHITESPACE_RUN.sub(" ", text).strip()


class OCREngine:
    """
    Single-flight text extraction engine.

    The backend is created on first use and reused until shutdown(). Every
    extraction holds the engine lock for the duration of the backend call;
    the lock is released on success, failure and timeout alike.

    Attributes:
        settings: OCRSettings (language, psm, oem, timeout, debug)

    Example:
        >>> engine = OCREngine()
        >>> result = engine.extract(png_bytes)
        >>> result.confidence  # 0-100
        87.5
    """

    def __init__(
        self,
        settings: Optional[OCRSettings] = None,
        backend_factory: Optional[Callable[[], Any]] = None
    ) -> None:
        """
        Initialize the OCR engine.

        Args:
            settings: OCR settings. If None, loaded from configuration.
            backend_factory: Callable building the backend on first use.
                Defaults to a TesseractBackend with the same settings.
        """
        self.settings = settings or OCRSettings.from_config()
        self._backend_factory = backend_factory or (lambda: TesseractBackend(self.settings))
        self._backend = None
        self._lock = threading.Lock()

        logger.debug(f"OCR Engine created (lang={self.settings.language}, lazy backend)")

    @property
    def is_initialized(self) -> bool:
        return self._backend is not None

    def _ensure_backend(self):
        """Create the backend if needed. Caller must hold the lock."""
        if self._backend is None:
            started = time.monotonic()
            logger.info(f"Initializing OCR backend (lang={self.settings.language})")
            try:
                self._backend = self._backend_factory()
            except ExtractionError:
                raise
            except Exception as e:
                raise ExtractionError("backend initialization", str(e)) from e
            logger.info(f"OCR backend ready ({time.monotonic() - started:.2f}s)")
        return self._backend

    def _load_image(self, image: ImageInput) -> Image.Image:
        if isinstance(image, Image.Image):
            return image
        source = "bytes" if isinstance(image, bytes) else str(image)
        try:
            loaded = Image.open(io.BytesIO(image) if isinstance(image, bytes) else str(image))
            loaded.load()
        except Exception as e:
            raise ExtractionError(source, f"Failed to load image: {e}") from e
        return loaded

    def extract(self, image: ImageInput, timeout: Optional[float] = None) -> OCRResult:
        """
        Extract text from one image.

        Args:
            image: Encoded bytes, a file path or a PIL Image.
            timeout: Seconds to wait for the engine plus recognition.
                Defaults to settings.timeout_seconds; None there disables it.

        Returns:
            OCRResult with cleaned text and engine confidence (0-100).

        Raises:
            ExtractionTimeoutError: If the deadline passes while queued or
                while recognizing.
            ExtractionError: If the backend cannot start or recognition fails.
        """
        source = "bytes" if isinstance(image, bytes) else str(getattr(image, 'filename', None) or image)
        if timeout is None:
            timeout = self.settings.timeout_seconds

        pil_image = self._load_image(image)

        started = time.monotonic()
        if timeout:
            acquired = self._lock.acquire(timeout=timeout)
        else:
            acquired = self._lock.acquire()
        if not acquired:
            logger.warning(f"OCR queue wait exceeded {timeout}s for {source}")
            raise ExtractionTimeoutError(source, timeout)

        try:
            remaining = None
            if timeout:
                remaining = timeout - (time.monotonic() - started)
                if remaining <= 0:
                    raise ExtractionTimeoutError(source, timeout)

            backend = self._ensure_backend()
            try:
                result = backend.extract(pil_image, timeout=remaining)
            except ExtractionError:
                raise
            except Exception as e:
                raise ExtractionError(source, str(e)) from e
        finally:
            self._lock.release()

        result.text = clean_text(result.raw_text)
        result.language = result.language or self.settings.language

        if self.settings.debug:
            logger.debug(f"OCR text ({source}): {result.text[:200]}")

        return result

    def extract_batch(self, images: Sequence[ImageInput]) -> List[BatchItem]:
        """
        Extract from multiple images, one at a time.

        A failing image does not stop the batch.

        Returns:
            One BatchItem per input, in order.
        """
        items = []

        for i, image in enumerate(images):
            source = str(image) if isinstance(image, (str, Path)) else f"image {i + 1}"
            logger.debug(f"Processing image {i + 1}/{len(images)}")
            try:
                items.append(BatchItem(source=source, success=True, result=self.extract(image)))
            except ExtractionError as e:
                logger.error(f"Failed to process {source}: {e}")
                items.append(BatchItem(source=source, success=False, error=str(e)))

        return items

    def shutdown(self) -> None:
        """Release the backend. A later extract() initializes a new one."""
        with self._lock:
            if self._backend is not None:
                close = getattr(self._backend, 'close', None)
                if close is not None:
                    close()
                self._backend = None
                logger.info("OCR backend released")

    def get_backend_info(self) -> dict:
        """
        Get information about the current OCR configuration.

        Returns:
            Dictionary with backend details.
        """
        return {
            'initialized': self.is_initialized,
            'backend': getattr(self._backend, 'name', None),
            'language': self.settings.language,
            'psm': self.settings.psm,
            'oem': self.settings.oem,
            'timeout_seconds': self.settings.timeout_seconds,
            'debug': self.settings.debug,
        }


_engine: Optional[OCREngine] = None
_engine_lock = threading.Lock()


def get_ocr_engine() -> OCREngine:
    """Process-wide OCR engine built from configuration."""
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = OCREngine()
        return _engine


def shutdown_ocr_engine() -> None:
    """Release the process-wide engine's backend, if one was created."""
    with _engine_lock:
        if _engine is not None:
            _engine.shutdown()
