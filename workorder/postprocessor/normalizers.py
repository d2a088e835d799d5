"""
Data Normalizers Module.

This module normalizes the free-form fields an AI provider returns with
a classification:
    - Work dates (to YYYY-MM-DD)
    - Short text fields (work type, notes)

Author: ML Engineering Team
"""

import re
from datetime import datetime
from typing import List, Optional

from dateutil import parser as date_parser

from workorder.utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)


class DateNormalizer:
    """
    Normalizes date strings to ISO format (YYYY-MM-DD).

    Handles ISO, dotted and slashed numeric dates, Korean
    "YYYY년 MM월 DD일" dates and English month names.

    Example:
        >>> normalizer = DateNormalizer()
        >>> normalizer.normalize("2026년 10월 8일")
        '2026-10-08'
        >>> normalizer.normalize("2026.10.08")
        '2026-10-08'
    """

    OUTPUT_FORMAT = "%Y-%m-%d"

    INPUT_FORMATS: List[str] = [
        "%Y-%m-%d",
        "%Y.%m.%d",
        "%Y/%m/%d",
        "%Y%m%d",
        "%m/%d/%Y",
        "%d.%m.%Y",
        "%B %d, %Y",
        "%b %d, %Y",
        "%d %B %Y",
    ]

    KOREAN_DATE = re.compile(r"(\d{4})\s*년\s*(\d{1,2})\s*월\s*(\d{1,2})\s*일")

    def normalize(self, date_str: Optional[str]) -> Optional[str]:
        """
        Normalize a date string.

        Args:
            date_str: Input date string in any recognized format.

        Returns:
            Normalized date string, or None if parsing fails.
        """
        if not date_str or not str(date_str).strip():
            return None

        date_str = self._clean_date_string(str(date_str))

        parsed_date = self._try_korean_format(date_str)

        # Try explicit formats first
        if parsed_date is None:
            parsed_date = self._try_explicit_formats(date_str)

        # If explicit formats fail, try dateutil parser
        if parsed_date is None:
            parsed_date = self._try_dateutil_parser(date_str)

        if parsed_date:
            return parsed_date.strftime(self.OUTPUT_FORMAT)

        logger.debug(f"Could not parse date: {date_str}")
        return None

    def _clean_date_string(self, date_str: str) -> str:
        """Collapse whitespace and strip ordinal suffixes and trailing dots."""
        date_str = ' '.join(date_str.split())
        date_str = re.sub(r'(\d+)(st|nd|rd|th)\b', r'\1', date_str, flags=re.IGNORECASE)
        return date_str.strip().rstrip('.')

    def _try_korean_format(self, date_str: str) -> Optional[datetime]:
        match = self.KOREAN_DATE.search(date_str)
        if not match:
            return None
        year, month, day = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day)
        except ValueError:
            return None

    def _try_explicit_formats(self, date_str: str) -> Optional[datetime]:
        """
        Try to parse date using explicit format strings.

        Returns:
            Parsed datetime or None.
        """
        for fmt in self.INPUT_FORMATS:
            try:
                return datetime.strptime(date_str, fmt)
            except ValueError:
                continue
        return None

    def _try_dateutil_parser(self, date_str: str) -> Optional[datetime]:
        """
        Try to parse date using dateutil's fuzzy parser.

        Year-first is assumed, matching how dates are written on Korean forms.
        """
        try:
            return date_parser.parse(date_str, yearfirst=True, fuzzy=True)
        except (ValueError, OverflowError):
            return None

    def is_valid_date(self, date_str: str) -> bool:
        """Check if a string represents a valid date."""
        return self.normalize(date_str) is not None


def normalize_short_text(value: Optional[str], max_length: int = 50) -> Optional[str]:
    """
    Collapse whitespace and cap length of a short AI-provided text field.

    Returns None for empty values and the literal strings "null"/"none".
    """
    if value is None:
        return None
    text = ' '.join(str(value).split())
    if not text or text.lower() in ('null', 'none'):
        return None
    return text[:max_length]
