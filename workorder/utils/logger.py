"""
Logging Configuration Module.

Console (colorama) and rotating-file logging under the ``workorder``
namespace. Pipelines for several documents run on a thread pool, so
every record carries the id of the document its thread is working on
(``%(document)s`` in the format string, ``-`` outside a pipeline).

Usage:
    from workorder.utils.logger import setup_logger, get_logger, document_context

    setup_logger()
    logger = get_logger(__name__)

    with document_context(42):
        logger.info("Classifying work order...")
"""

import logging
import logging.handlers
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Any, Iterator

import colorama
from colorama import Fore, Style

colorama.init()

ROOT_LOGGER_NAME = "workorder"

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-8s | %(document)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_context = threading.local()


@contextmanager
def document_context(document_ref: Any) -> Iterator[None]:
    """Tag every record logged by this thread with ``document_ref``."""
    previous = getattr(_context, "document", None)
    _context.document = document_ref
    try:
        yield
    finally:
        _context.document = previous


def current_document() -> Any:
    return getattr(_context, "document", None)


class DocumentContextFilter(logging.Filter):
    """Adds the ``document`` attribute the format strings refer to."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "document"):
            ref = current_document()
            record.document = f"doc:{ref}" if ref is not None else "-"
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the whole line by level: cyan, green, yellow, red, bold red."""

    COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record: logging.LogRecord) -> str:
        return f"{self.COLORS.get(record.levelno, '')}{super().format(record)}{Style.RESET_ALL}"


def _make_handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(DocumentContextFilter())
    return handler


def setup_logger(
    level: str = "INFO",
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10485760,  # 10 MB
    backup_count: int = 5,
    colorize: bool = True
) -> logging.Logger:
    """
    Configure the ``workorder`` logger. Call once at startup.

    Args:
        level: Logging level name.
        log_format: Format string; may use ``%(document)s``.
        date_format: Date format string.
        log_file: Rotating log file path. None disables file logging.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files to keep.
        colorize: Color console lines by level.

    Returns:
        The configured application logger.
    """
    log_format = log_format or DEFAULT_FORMAT
    date_format = date_format or DEFAULT_DATE_FORMAT
    numeric_level = getattr(logging, level.upper())

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(numeric_level)
    app_logger.handlers.clear()

    console_formatter = (
        ColoredFormatter(log_format, datefmt=date_format) if colorize
        else logging.Formatter(log_format, datefmt=date_format)
    )
    app_logger.addHandler(_make_handler(logging.StreamHandler(sys.stdout), numeric_level, console_formatter))

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
        )
        app_logger.addHandler(
            _make_handler(file_handler, numeric_level, logging.Formatter(log_format, datefmt=date_format))
        )

    app_logger.propagate = False

    app_logger.debug(f"Logging initialized (level={level.upper()}, file={log_file or 'off'})")
    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``workorder`` namespace (pass ``__name__``)."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def setup_logger_from_config() -> logging.Logger:
    """Configure logging from the ``logging`` section of settings.yaml."""
    from config import get_config

    log_file = get_config("logging.file.path") if get_config("logging.file.enabled", False) else None

    return setup_logger(
        level=get_config("logging.level", "INFO"),
        log_format=get_config("logging.format"),
        date_format=get_config("logging.date_format"),
        log_file=log_file,
        max_bytes=get_config("logging.file.max_bytes", 10485760),
        backup_count=get_config("logging.file.backup_count", 5),
        colorize=get_config("logging.console.colorize", True)
    )


def _format_fields(fields: dict) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items())


def log_classification(
    document_ref: Any,
    method: str,
    client_id: Optional[int],
    confidence: float,
    cost_usd: float,
    error: Optional[str] = None,
    **extra: Any
) -> None:
    """
    Emit one structured line for a classification attempt.

    Every attempt is logged, successful or not, so accuracy and cost
    dashboards can be rebuilt from the log alone.

    Args:
        document_ref: Document id or uuid; defaults to the thread's
            document context.
        method: Classification method of the attempt.
        client_id: Matched entity id, or None.
        confidence: Attempt confidence in [0, 1].
        cost_usd: API cost of the attempt.
        error: Error message when the attempt failed.
        **extra: Additional key/value pairs to include.
    """
    logger = get_logger("classification.audit")
    fields = {
        "category": "ai_classification",
        "document": document_ref if document_ref is not None else current_document(),
        "method": method,
        "client_id": client_id,
        "confidence": f"{confidence:.3f}",
        "cost_usd": f"{cost_usd:.6f}",
    }
    fields.update(extra)
    if error:
        fields["error"] = error
        logger.error(f"Classification attempt | {_format_fields(fields)}")
    else:
        logger.info(f"Classification attempt | {_format_fields(fields)}")


def log_cost(provider: str, model: str, cost_usd: float, **extra: Any) -> None:
    """
    Emit one cost-tracking line for a billed API call.

    Args:
        provider: API provider name (e.g. "openai").
        model: Model name.
        cost_usd: Cost of the call in USD.
        **extra: Additional key/value pairs (token counts, latency).
    """
    logger = get_logger("cost")
    fields = {
        "category": "cost_tracking",
        "provider": provider,
        "model": model,
        "cost": f"${cost_usd:.6f}",
    }
    fields.update(extra)
    logger.info(f"API cost incurred | {_format_fields(fields)}")
