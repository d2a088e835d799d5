"""
Custom Exceptions Module.

This module defines all custom exceptions used throughout the work order
classifier. Each pipeline stage raises its own family so the orchestrator
can decide per family whether to abort, degrade or escalate.

Exception Hierarchy:
    WorkOrderError (base)
    ├── ConfigurationError
    ├── InputError
    │   ├── UploadValidationError
    │   └── ProcessingError
    ├── ExtractionError
    │   ├── OCREngineNotAvailableError
    │   └── ExtractionTimeoutError
    ├── ClassificationError
    │   ├── InferenceError
    │   ├── ResponseParseError
    │   └── EntityNotFoundError
    └── PersistenceError
        └── DocumentNotFoundError
"""


class WorkOrderError(Exception):
    """
    Base exception for all work order classifier errors.

    Attributes:
        message: Human-readable error message.
        details: Optional dictionary with additional error details.
    """

    def __init__(self, message: str, details: dict = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(WorkOrderError):
    """Raised when a configuration value is missing or invalid."""

    def __init__(self, key: str, reason: str = None):
        message = f"Invalid configuration: {key}"
        details = {"key": key, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# INPUT ERRORS
# =============================================================================

class InputError(WorkOrderError):
    """Base exception for upload and image handling errors."""
    pass


class UploadValidationError(InputError):
    """
    Raised when an upload violates type, size or count limits.

    Example:
        >>> raise UploadValidationError("scan.gif", "Unsupported MIME type: image/gif")
    """

    def __init__(self, filename: str, reason: str):
        message = f"Rejected upload: {filename}"
        details = {"filename": filename, "reason": reason}
        super().__init__(message, details)


class ProcessingError(InputError):
    """Raised when image bytes cannot be decoded, normalized or stored."""

    def __init__(self, filename: str, reason: str = None):
        message = f"Image processing failed: {filename}"
        details = {"filename": filename, "reason": reason}
        super().__init__(message, details)


# =============================================================================
# TEXT EXTRACTION ERRORS
# =============================================================================

class ExtractionError(WorkOrderError):
    """Raised when OCR initialization or recognition fails."""

    def __init__(self, source: str, reason: str = None):
        message = f"Text extraction failed for: {source}"
        details = {"source": source, "reason": reason}
        super().__init__(message, details)


class OCREngineNotAvailableError(ExtractionError):
    """Raised when the OCR engine cannot be initialized."""

    def __init__(self, engine_name: str, reason: str = None):
        super().__init__(engine_name, reason)
        self.message = f"OCR engine not available: {engine_name}"
        self.args = (self.message,)


class ExtractionTimeoutError(ExtractionError):
    """Raised when an extraction does not finish within its deadline."""

    def __init__(self, source: str, timeout: float):
        super().__init__(source, f"timed out after {timeout:.1f}s")
        self.timeout = timeout


# =============================================================================
# CLASSIFICATION ERRORS
# =============================================================================

class ClassificationError(WorkOrderError):
    """Base exception for classification stage failures."""
    pass


class InferenceError(ClassificationError):
    """Raised when an AI provider call fails or times out."""

    def __init__(self, model: str, reason: str = None):
        message = f"AI inference failed: {model}"
        details = {"model": model, "reason": reason}
        super().__init__(message, details)


class ResponseParseError(ClassificationError):
    """Raised when an AI provider returns output that is not valid JSON."""

    def __init__(self, content: str, reason: str = None):
        message = "Could not parse AI response"
        details = {"content": (content or "")[:200], "reason": reason}
        super().__init__(message, details)


class EntityNotFoundError(ClassificationError):
    """Raised when a referenced client/supplier does not exist."""

    def __init__(self, entity_ref):
        message = f"Entity not found: {entity_ref}"
        details = {"entity": entity_ref}
        super().__init__(message, details)


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================

class PersistenceError(WorkOrderError):
    """Raised when database operations fail."""

    def __init__(self, operation: str, reason: str = None):
        message = f"Database operation failed: {operation}"
        details = {"operation": operation, "reason": reason}
        super().__init__(message, details)


class DocumentNotFoundError(PersistenceError):
    """Raised when a document id or uuid has no matching row."""

    def __init__(self, document_ref):
        super().__init__("lookup", f"document {document_ref} not found")
        self.document_ref = document_ref


__all__ = [
    'WorkOrderError',
    'ConfigurationError',
    'InputError',
    'UploadValidationError',
    'ProcessingError',
    'ExtractionError',
    'OCREngineNotAvailableError',
    'ExtractionTimeoutError',
    'ClassificationError',
    'InferenceError',
    'ResponseParseError',
    'EntityNotFoundError',
    'PersistenceError',
    'DocumentNotFoundError',
]
