"""
Classification Module.

Staged attribution of documents to clients/suppliers: keyword matching,
then text AI, then vision AI, plus manual override and feedback.
"""

from .classification_result import (
    Candidate,
    ClassificationAttempt,
    ClassificationOutcome,
    Matched,
    Unmatched,
)
from .keyword_matcher import KeywordMatcher
from .engine import ClassificationEngine, STRATEGIES, resolve_entity

__all__ = [
    'Candidate',
    'ClassificationAttempt',
    'ClassificationOutcome',
    'Matched',
    'Unmatched',
    'KeywordMatcher',
    'ClassificationEngine',
    'STRATEGIES',
    'resolve_entity',
]
