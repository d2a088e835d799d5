"""
Utility Module for Work Order Classifier.

This module provides common utilities used across all other modules:
    - Logging configuration
    - Exception hierarchy
    - File and timing helpers
"""

from .logger import setup_logger, get_logger, document_context, log_classification, log_cost
from .helpers import ensure_directory, get_file_extension, elapsed_ms, run_with_deadline

__all__ = [
    'setup_logger',
    'get_logger',
    'document_context',
    'log_classification',
    'log_cost',
    'ensure_directory',
    'get_file_extension',
    'elapsed_ms',
    'run_with_deadline',
]
