"""
Tests for the single-flight OCR engine.
"""

import threading
import time

import pytest
from PIL import Image

from conftest import FakeOCRBackend, make_image_bytes
from workorder.ocr_engine import OCREngine, clean_text
from workorder.settings import OCRSettings
from workorder.utils.exceptions import ExtractionError, ExtractionTimeoutError


class TestCleanText:
    """Test OCR text cleanup"""

    def test_collapses_whitespace(self):
        assert clean_text("  ABC   Corp\n\n invoice ") == "ABC Corp invoice"

    def test_removes_disallowed_characters(self):
        assert clean_text("ABC Corp invoice #123 ★") == "ABC Corp invoice 123"

    def test_keeps_hangul_and_punctuation(self):
        assert clean_text("엑스와이지 (주) 2026-10-08, 3.5") == "엑스와이지 (주) 2026-10-08, 3.5"

    def test_empty_input(self):
        assert clean_text(None) == ""
        assert clean_text("   ") == ""


class TestOCREngine:
    """Test lazy initialization, locking, timeouts and shutdown"""

    def test_backend_is_created_lazily(self, ocr_engine, ocr_backend):
        assert not ocr_engine.is_initialized
        ocr_backend.text = "ABC Corp"

        result = ocr_engine.extract(make_image_bytes(64, 64))

        assert ocr_engine.is_initialized
        assert result.text == "ABC Corp"
        assert result.confidence == 91.5
        assert result.language == "kor+eng"

    def test_accepts_path_and_pil_image(self, ocr_engine, ocr_backend, tmp_path):
        ocr_backend.text = "XYZ"
        path = tmp_path / "page.png"
        path.write_bytes(make_image_bytes(fmt="PNG"))

        assert ocr_engine.extract(str(path)).text == "XYZ"
        assert ocr_engine.extract(Image.new("L", (32, 32), 255)).text == "XYZ"

    def test_unreadable_image_raises_extraction_error(self, ocr_engine):
        with pytest.raises(ExtractionError):
            ocr_engine.extract(b"not an image")

    def test_backend_failure_is_wrapped(self, ocr_backend):
        ocr_backend.error = RuntimeError("tesseract crashed")
        engine = OCREngine(OCRSettings(timeout_seconds=5), backend_factory=lambda: ocr_backend)

        with pytest.raises(ExtractionError) as exc:
            engine.extract(make_image_bytes(32, 32))
        assert "tesseract crashed" in str(exc.value)

    def test_backend_initialization_failure(self):
        def failing_factory():
            raise OSError("tessdata missing")

        engine = OCREngine(OCRSettings(), backend_factory=failing_factory)
        with pytest.raises(ExtractionError):
            engine.extract(make_image_bytes(32, 32))
        assert not engine.is_initialized

    def test_lock_is_released_after_failure(self, ocr_backend):
        ocr_backend.error = RuntimeError("boom")
        engine = OCREngine(OCRSettings(timeout_seconds=1), backend_factory=lambda: ocr_backend)
        with pytest.raises(ExtractionError):
            engine.extract(make_image_bytes(32, 32))

        ocr_backend.error = None
        ocr_backend.text = "ok"
        assert engine.extract(make_image_bytes(32, 32)).text == "ok"

    def test_queue_wait_times_out(self, ocr_engine):
        ocr_engine._lock.acquire()
        try:
            started = time.monotonic()
            with pytest.raises(ExtractionTimeoutError):
                ocr_engine.extract(make_image_bytes(32, 32), timeout=0.2)
            assert time.monotonic() - started < 2
        finally:
            ocr_engine._lock.release()

    def test_concurrent_extractions_are_serialized(self):
        backend = FakeOCRBackend(text="ABC", delay=0.1)
        engine = OCREngine(OCRSettings(timeout_seconds=10), backend_factory=lambda: backend)
        image = make_image_bytes(32, 32)

        threads = [threading.Thread(target=engine.extract, args=(image,)) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert backend.max_active == 1
        intervals = sorted(backend.intervals)
        assert len(intervals) == 3
        for (_, previous_end), (next_start, _) in zip(intervals, intervals[1:]):
            assert next_start >= previous_end

    def test_batch_continues_after_failure(self, ocr_engine, ocr_backend):
        ocr_backend.text = "page"
        items = ocr_engine.extract_batch([make_image_bytes(32, 32), b"garbage", make_image_bytes(32, 32)])

        assert [item.success for item in items] == [True, False, True]
        assert items[1].error
        assert items[2].result.text == "page"

    def test_shutdown_releases_backend(self, ocr_engine, ocr_backend):
        ocr_engine.extract(make_image_bytes(32, 32))
        ocr_engine.shutdown()

        assert ocr_backend.closed
        assert not ocr_engine.is_initialized
        assert ocr_engine.get_backend_info()["backend"] is None


class TestTesseractBackend:
    """Test output parsing and error mapping with pytesseract patched"""

    @pytest.fixture
    def backend(self, monkeypatch):
        import pytesseract
        from workorder.ocr_engine import TesseractBackend

        monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
        monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng", "kor", "osd"])
        return TesseractBackend(OCRSettings(language="kor+eng", psm=6))

    def test_groups_words_into_lines(self, backend, monkeypatch):
        import pytesseract

        data = {
            "text": ["", "ABC", "Corp", "", "작업지시서"],
            "conf": ["-1", "90", "80", "-1", "70"],
            "block_num": [1, 1, 1, 1, 2],
            "par_num": [1, 1, 1, 1, 1],
            "line_num": [0, 1, 1, 1, 1],
        }
        captured = {}

        def fake_image_to_data(image, **kwargs):
            captured.update(kwargs)
            return data

        monkeypatch.setattr(pytesseract, "image_to_data", fake_image_to_data)

        result = backend.extract(Image.new("L", (10, 10)), timeout=3)

        assert result.raw_text == "ABC Corp\n작업지시서"
        assert result.word_count == 3
        assert result.line_count == 2
        assert result.confidence == pytest.approx(80.0)
        assert captured["lang"] == "kor+eng"
        assert "--psm 6" in captured["config"]
        assert captured["timeout"] == 3

    def test_killed_process_is_a_timeout(self, backend, monkeypatch):
        import pytesseract

        def slow(image, **kwargs):
            raise RuntimeError("Tesseract process timeout")

        monkeypatch.setattr(pytesseract, "image_to_data", slow)
        with pytest.raises(ExtractionTimeoutError):
            backend.extract(Image.new("L", (10, 10)), timeout=1)

    def test_missing_language_data(self, monkeypatch):
        import pytesseract
        from workorder.ocr_engine import TesseractBackend
        from workorder.utils.exceptions import OCREngineNotAvailableError

        monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
        monkeypatch.setattr(pytesseract, "get_languages", lambda config="": ["eng"])
        with pytest.raises(OCREngineNotAvailableError):
            TesseractBackend(OCRSettings(language="kor+eng"))
