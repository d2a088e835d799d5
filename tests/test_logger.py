"""
Tests for logger setup and per-document tagging.
"""

import logging
import threading

from workorder.utils.logger import (
    DocumentContextFilter,
    document_context,
    get_logger,
    setup_logger,
)


def make_record():
    return logging.LogRecord("workorder.test", logging.INFO, __file__, 1, "hello", None, None)


class TestDocumentContext:
    """Test the document tag added to records"""

    def test_tag_inside_and_outside_context(self):
        log_filter = DocumentContextFilter()

        outside = make_record()
        log_filter.filter(outside)
        with document_context(42):
            inside = make_record()
            log_filter.filter(inside)

        assert outside.document == "-"
        assert inside.document == "doc:42"

    def test_nested_context_restores_previous(self):
        log_filter = DocumentContextFilter()
        with document_context(1):
            with document_context(2):
                pass
            record = make_record()
            log_filter.filter(record)
        assert record.document == "doc:1"

    def test_context_is_per_thread(self):
        seen = {}

        def worker():
            record = make_record()
            DocumentContextFilter().filter(record)
            seen["thread"] = record.document

        with document_context(7):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()

        assert seen["thread"] == "-"


class TestSetupLogger:
    """Test handler configuration"""

    def test_file_handler_writes_document_tag(self, tmp_path):
        log_file = tmp_path / "logs" / "workorder.log"
        app_logger = setup_logger(level="DEBUG", log_file=str(log_file), colorize=False)
        try:
            with document_context(9):
                get_logger("pipeline.test").info("classified")
            for handler in app_logger.handlers:
                handler.flush()

            content = log_file.read_text(encoding="utf-8")
            assert "doc:9" in content
            assert "workorder.pipeline.test" in content
        finally:
            for handler in app_logger.handlers:
                handler.close()
            app_logger.handlers.clear()
            app_logger.propagate = True
            app_logger.setLevel(logging.NOTSET)

    def test_get_logger_namespacing(self):
        assert get_logger("workorder.storage").name == "workorder.storage"
        assert get_logger("tests").name == "workorder.tests"
