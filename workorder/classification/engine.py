"""
Classification Engine Module.

This module provides the ClassificationEngine class that attributes a
document to a client/supplier in escalating stages:

    keyword   -> free, instant substring matching against entity keywords
    ai_text   -> text model over the OCR text
    ai_vision -> vision model over the stored image (terminal)

A stage is accepted as soon as it identifies an entity with confidence at
or above the auto-accept threshold; otherwise the next, more expensive
stage runs. The vision stage is accepted whatever its confidence, which
bounds cost and latency per document.

Usage:
    from workorder.classification import ClassificationEngine

    engine = ClassificationEngine(directory)
    outcome = engine.classify(ocr_text, image_path)
    print(outcome.method, outcome.client_id, outcome.confidence)

Author: ML Engineering Team
"""

import time
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from workorder.evaluation import AccuracyReport
from workorder.model_inference import AIClassifier, InferenceResult
from workorder.settings import ClassificationSettings
from workorder.storage.entity_directory import EntityDirectory
from workorder.storage.models import ClassificationMethod, Entity, FeedbackRecord
from workorder.utils.logger import get_logger, log_classification
from workorder.utils.exceptions import ClassificationError, InferenceError
from .classification_result import (
    Candidate,
    ClassificationAttempt,
    ClassificationOutcome,
    Matched,
    Unmatched,
)
from .keyword_matcher import KeywordMatcher

# Initialize module logger
logger = get_logger(__name__)


STRATEGY_AUTO = "auto"
STAGE_ORDER = ("keyword", "ai_text", "ai_vision")
STRATEGIES = (STRATEGY_AUTO,) + STAGE_ORDER


def resolve_entity(
    client_code: Optional[str],
    client_name: Optional[str],
    entities: Sequence[Entity]
) -> Optional[Entity]:
    """
    Map an AI answer onto a directory entity.

    The code is tried first (exact), then the name (case-insensitive exact).
    """
    if client_code:
        code = client_code.strip()
        for entity in entities:
            if entity.code == code:
                return entity

    if client_name:
        name = client_name.strip().casefold()
        for entity in entities:
            if entity.name.strip().casefold() == name:
                return entity

    return None


class ClassificationEngine:
    """
    Staged document classifier.

    The entity directory is read once per classify() call and never
    cached between calls, so keyword edits apply to the next document.

    Attributes:
        directory: EntityDirectory providing the active-entity snapshot
        ai_classifier: AIClassifier used by the ai_text and ai_vision stages
        settings: ClassificationSettings (thresholds, candidate count)

    Example:
        >>> engine = ClassificationEngine(directory, AIClassifier())
        >>> outcome = engine.classify("ABC Corp invoice #123", "main.jpg")
        >>> outcome.method
        <ClassificationMethod.KEYWORD: 'keyword'>
    """

    def __init__(
        self,
        directory: EntityDirectory,
        ai_classifier: Optional[AIClassifier] = None,
        settings: Optional[ClassificationSettings] = None
    ) -> None:
        self.directory = directory
        self.ai_classifier = ai_classifier or AIClassifier()
        self.settings = settings or ClassificationSettings.from_config()
        self.keyword_matcher = KeywordMatcher()

        self._stages: Dict[str, Callable[..., ClassificationAttempt]] = {
            "keyword": self._keyword_stage,
            "ai_text": self._ai_text_stage,
            "ai_vision": self._ai_vision_stage,
        }

        logger.debug(
            f"ClassificationEngine initialized (auto_accept>={self.settings.auto_accept_threshold}, "
            f"candidate>={self.settings.candidate_threshold})"
        )

    # =========================================================================
    # AUTOMATIC CLASSIFICATION
    # =========================================================================

    def classify(
        self,
        ocr_text: Optional[str],
        image_path: Optional[Union[str, Path]] = None,
        strategy: str = STRATEGY_AUTO,
        document_ref: Optional[Union[int, str]] = None
    ) -> ClassificationOutcome:
        """
        Classify one document.

        Args:
            ocr_text: Cleaned OCR text (may be empty).
            image_path: Stored main image for the vision stage.
            strategy: 'auto' runs the escalation chain; 'keyword',
                'ai_text' or 'ai_vision' run only that stage.
            document_ref: Document id/uuid used in log lines.

        Returns:
            ClassificationOutcome with the winning attempt and the trail.

        Raises:
            ValueError: If the strategy is unknown.
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown strategy '{strategy}', expected one of {STRATEGIES}")

        text = (ocr_text or "").strip()
        entities = self.directory.list_active()
        stages = STAGE_ORDER if strategy == STRATEGY_AUTO else (strategy,)

        attempts: List[ClassificationAttempt] = []
        final: Optional[ClassificationAttempt] = None

        for index, stage in enumerate(stages):
            attempt = self._run_stage(stage, text, image_path, entities)
            attempts.append(attempt)
            self._log_attempt(document_ref, attempt)

            is_last = index == len(stages) - 1
            if attempt.error is None and (is_last or self._accepts(attempt)):
                final = attempt
                break

            if is_last:
                final = Unmatched(
                    method=ClassificationMethod.ERROR,
                    confidence=0.0,
                    reasoning=attempt.error,
                    error=attempt.error,
                )
                break

            logger.info(
                f"Escalating from {stage} (document={document_ref}, "
                f"confidence={attempt.confidence:.3f}, error={attempt.error})"
            )

        outcome = ClassificationOutcome(final=final, attempts=attempts)

        logger.info(
            f"Classification finished (document={document_ref}): method={outcome.method.value} "
            f"client_id={outcome.client_id} confidence={outcome.confidence:.3f} "
            f"trail=[{outcome.trail}] cost=${outcome.cost_usd:.6f}"
        )
        return outcome

    def _accepts(self, attempt: ClassificationAttempt) -> bool:
        """Auto-accept rule: an entity at or above the threshold."""
        return attempt.matched and attempt.confidence >= self.settings.auto_accept_threshold

    def _run_stage(
        self,
        stage: str,
        text: str,
        image_path: Optional[Union[str, Path]],
        entities: Sequence[Entity]
    ) -> ClassificationAttempt:
        """Run one stage; stage failures become an Unmatched attempt carrying the error."""
        started = time.monotonic()
        try:
            attempt = self._stages[stage](text, image_path, entities)
        except (ClassificationError, FuturesTimeoutError, TimeoutError) as e:
            message = str(e) or type(e).__name__
            logger.warning(f"Classification stage {stage} failed: {message}")
            cost = 0.0
            if isinstance(e, ClassificationError):
                cost = float(e.details.get('cost_usd', 0.0))
            attempt = Unmatched(
                method=ClassificationMethod(stage),
                confidence=0.0,
                reasoning=message,
                cost_usd=cost,
                error=message,
            )
        attempt.latency_ms = int((time.monotonic() - started) * 1000)
        return attempt

    def _keyword_stage(self, text: str, image_path, entities: Sequence[Entity]) -> ClassificationAttempt:
        if not text:
            return Unmatched(
                method=ClassificationMethod.KEYWORD,
                confidence=0.0,
                reasoning="No text was extracted from the document",
            )

        candidates = self.keyword_matcher.score(text, entities)
        if not candidates:
            return Unmatched(
                method=ClassificationMethod.KEYWORD,
                confidence=0.0,
                reasoning="No registered client keywords found in the text",
            )

        best = candidates[0]
        entity = next(e for e in entities if e.id == best.entity_id)
        total = len(entity.keywords)
        return Matched(
            method=ClassificationMethod.KEYWORD,
            confidence=best.confidence,
            reasoning=(
                f"Keyword match: {', '.join(best.matched_keywords)} "
                f"({len(best.matched_keywords)}/{total} keywords)"
            ),
            candidates=candidates[:self.settings.max_candidates],
            matched_entity=entity,
        )

    def _ai_text_stage(self, text: str, image_path, entities: Sequence[Entity]) -> ClassificationAttempt:
        if not text:
            return Unmatched(
                method=ClassificationMethod.AI_TEXT,
                confidence=0.0,
                reasoning="No text available for text classification",
            )
        result = self.ai_classifier.classify_by_text(text, entities)
        return self._attempt_from_inference(ClassificationMethod.AI_TEXT, result, entities)

    def _ai_vision_stage(self, text: str, image_path, entities: Sequence[Entity]) -> ClassificationAttempt:
        if not image_path:
            raise InferenceError(self.ai_classifier.settings.vision_model, "no image available")
        result = self.ai_classifier.classify_by_image(image_path, entities)
        return self._attempt_from_inference(ClassificationMethod.AI_VISION, result, entities)

    def _attempt_from_inference(
        self,
        method: ClassificationMethod,
        result: InferenceResult,
        entities: Sequence[Entity]
    ) -> ClassificationAttempt:
        entity = resolve_entity(result.client_code, result.client_name, entities)
        common = dict(
            method=method,
            confidence=result.confidence,
            reasoning=result.reasoning or f"{method.value} classification",
            cost_usd=result.cost_usd,
            work_date=result.work_date,
            work_type=result.work_type,
        )

        if entity is None:
            if result.client_name or result.client_code:
                common['reasoning'] = (
                    f"{common['reasoning']} (reported client "
                    f"'{result.client_name or result.client_code}' is not registered)"
                )
            return Unmatched(**common)

        candidate = Candidate(
            entity_id=entity.id,
            code=entity.code,
            name=entity.name,
            confidence=result.confidence,
        )
        return Matched(candidates=[candidate], matched_entity=entity, **common)

    def _log_attempt(self, document_ref, attempt: ClassificationAttempt) -> None:
        log_classification(
            document_ref,
            attempt.method.value,
            attempt.client_id,
            attempt.confidence,
            attempt.cost_usd,
            error=attempt.error,
            latency_ms=attempt.latency_ms,
        )

    # =========================================================================
    # MANUAL CLASSIFICATION AND FEEDBACK
    # =========================================================================

    def manual_classify(
        self,
        document_id: int,
        entity_id: int,
        reason: Optional[str] = None
    ) -> Matched:
        """
        Operator override.

        Always confidence 1.0 and method manual; the choice is trusted and
        not checked against the document content.

        Raises:
            EntityNotFoundError: If the entity does not exist.
        """
        entity = self.directory.require(entity_id)
        attempt = Matched(
            method=ClassificationMethod.MANUAL,
            confidence=1.0,
            reasoning=reason or "Classified manually by an operator",
            matched_entity=entity,
        )
        self._log_attempt(document_id, attempt)
        return attempt

    def record_feedback(
        self,
        document_id: int,
        predicted_client_id: Optional[int],
        actual_client_id: int,
        corrected_by: Optional[str] = None
    ) -> FeedbackRecord:
        """Store predicted vs. actual entity for accuracy reporting."""
        record = FeedbackRecord(
            document_id=document_id,
            predicted_client_id=predicted_client_id,
            actual_client_id=actual_client_id,
            is_correct=predicted_client_id == actual_client_id,
            corrected_by=corrected_by,
        )
        record = self.directory.db.insert_feedback(record)

        logger.info(
            f"Classification feedback stored: document={document_id} "
            f"predicted={predicted_client_id} actual={actual_client_id} "
            f"correct={record.is_correct}"
        )
        return record

    def accuracy(self) -> AccuracyReport:
        """Accuracy of automatic guesses over all stored feedback."""
        return AccuracyReport.from_feedback(self.directory.db.list_feedback())

    def select_best_candidate(self, candidates: Sequence[Candidate]) -> Optional[Candidate]:
        """
        Highest-confidence candidate if it reaches the candidate threshold.

        Used to suggest an entity to operators for documents that were not
        auto-accepted.
        """
        if not candidates:
            return None
        best = max(candidates, key=lambda c: c.confidence)
        if best.confidence >= self.settings.candidate_threshold:
            return best
        return None
