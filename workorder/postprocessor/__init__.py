"""
Postprocessor Module.

Normalization of AI-provided document fields.
"""

from .normalizers import DateNormalizer, normalize_short_text

__all__ = [
    'DateNormalizer',
    'normalize_short_text',
]
