"""
Classification Result Data Structures.

A stage produces either a Matched attempt (an entity was identified) or
an Unmatched attempt (no entity, or the stage failed). The outcome of a
classify() call is the winning attempt plus the trail of all attempts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from workorder.storage.models import ClassificationMethod, DocumentStatus, Entity


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


@dataclass
class Candidate:
    """One scored alternative entity."""
    entity_id: Optional[int]
    code: str
    name: str
    confidence: float
    matched_keywords: List[str] = field(default_factory=list)

    def __post_init__(self):
        self.confidence = _clamp(self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id': self.entity_id,
            'code': self.code,
            'name': self.name,
            'confidence': self.confidence,
            'matched_keywords': list(self.matched_keywords),
        }


@dataclass
class ClassificationAttempt:
    """
    Result of one classification stage.

    Attributes:
        method: Stage that produced the attempt
        confidence: Classification confidence in [0, 1]
        reasoning: Human-readable explanation
        candidates: Top-N scored alternatives
        cost_usd: API cost of the stage
        latency_ms: Wall time of the stage
        error: Error message when the stage failed
        work_date: Work date reported by an AI stage
        work_type: Work summary reported by an AI stage
    """
    method: ClassificationMethod
    confidence: float = 0.0
    reasoning: str = ""
    candidates: List[Candidate] = field(default_factory=list)
    cost_usd: float = 0.0
    latency_ms: int = 0
    error: Optional[str] = None
    work_date: Optional[str] = None
    work_type: Optional[str] = None

    def __post_init__(self):
        self.method = ClassificationMethod(self.method)
        self.confidence = _clamp(self.confidence)

    @property
    def matched(self) -> bool:
        return False

    @property
    def entity(self) -> Optional[Entity]:
        return None

    @property
    def client_id(self) -> Optional[int]:
        return None

    def to_dict(self) -> Dict[str, Any]:
        entity = self.entity
        return {
            'matched': self.matched,
            'method': self.method.value,
            'client_id': self.client_id,
            'client_code': entity.code if entity else None,
            'client_name': entity.name if entity else None,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'candidates': [c.to_dict() for c in self.candidates],
            'cost_usd': self.cost_usd,
            'latency_ms': self.latency_ms,
            'error': self.error,
        }


@dataclass
class Matched(ClassificationAttempt):
    """An attempt that identified an entity."""
    matched_entity: Optional[Entity] = None

    def __post_init__(self):
        super().__post_init__()
        if self.matched_entity is None:
            raise ValueError("Matched attempt requires an entity")

    @property
    def matched(self) -> bool:
        return True

    @property
    def entity(self) -> Optional[Entity]:
        return self.matched_entity

    @property
    def client_id(self) -> Optional[int]:
        return self.matched_entity.id


@dataclass
class Unmatched(ClassificationAttempt):
    """An attempt that found no entity or failed."""


@dataclass
class ClassificationOutcome:
    """
    Final result of a classify() call.

    Only `final` is persisted on the document; `attempts` keeps every
    stage that ran, in order, for diagnostics.
    """
    final: ClassificationAttempt
    attempts: List[ClassificationAttempt] = field(default_factory=list)

    @property
    def method(self) -> ClassificationMethod:
        return self.final.method

    @property
    def confidence(self) -> float:
        return self.final.confidence

    @property
    def reasoning(self) -> str:
        return self.final.reasoning

    @property
    def client_id(self) -> Optional[int]:
        return self.final.client_id

    @property
    def entity(self) -> Optional[Entity]:
        return self.final.entity

    @property
    def cost_usd(self) -> float:
        """Cost of every attempt, including the ones that escalated."""
        return sum(a.cost_usd for a in self.attempts)

    @property
    def latency_ms(self) -> int:
        return sum(a.latency_ms for a in self.attempts)

    @property
    def status(self) -> DocumentStatus:
        """Document status implied by the outcome."""
        if self.final.matched:
            return DocumentStatus.CLASSIFIED
        if self.final.method == ClassificationMethod.ERROR:
            return DocumentStatus.FAILED
        return DocumentStatus.UNCLASSIFIED

    @property
    def trail(self) -> str:
        """Compact 'method:confidence' chain, e.g. 'keyword:0.50 > ai_text:0.90'."""
        return " > ".join(f"{a.method.value}:{a.confidence:.2f}" for a in self.attempts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'final': self.final.to_dict(),
            'attempts': [a.to_dict() for a in self.attempts],
            'cost_usd': self.cost_usd,
            'latency_ms': self.latency_ms,
            'status': self.status.value,
        }
