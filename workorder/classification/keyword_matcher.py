"""
Keyword Matcher Module.

Scores every active entity against OCR text by counting how many of its
keywords occur as (case-sensitive) substrings.
"""

from typing import List, Sequence

from workorder.storage.models import Entity
from workorder.utils.logger import get_logger
from .classification_result import Candidate

logger = get_logger(__name__)


class KeywordMatcher:
    """
    Keyword-ratio scorer.

    For an entity with k keywords of which m occur in the text, the
    candidate confidence is m / k. Entities without any match are not
    candidates. Candidates are sorted by descending confidence with a
    stable sort, so entities with equal confidence keep the directory
    order (priority, then name).

    Example:
        >>> matcher = KeywordMatcher()
        >>> matcher.score("ABC Corp invoice #123", [abc])[0].confidence
        1.0
    """

    def score(self, text: str, entities: Sequence[Entity]) -> List[Candidate]:
        """
        Score entities against text.

        Args:
            text: OCR text.
            entities: Directory snapshot in directory order.

        Returns:
            Candidates with at least one matched keyword, best first.
        """
        if not text:
            return []

        candidates = []
        for entity in entities:
            if not entity.keywords:
                continue
            matched = [kw for kw in entity.keywords if kw and kw in text]
            if matched:
                candidates.append(Candidate(
                    entity_id=entity.id,
                    code=entity.code,
                    name=entity.name,
                    confidence=len(matched) / len(entity.keywords),
                    matched_keywords=matched,
                ))

        # list.sort is stable
        candidates.sort(key=lambda c: c.confidence, reverse=True)

        logger.debug(
            f"Keyword scoring: {len(candidates)} candidates over {len(entities)} entities"
            + (f", top={candidates[0].name} ({candidates[0].confidence:.3f})" if candidates else "")
        )
        return candidates
