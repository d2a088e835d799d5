"""
Inference Result Data Structure.

This module defines the InferenceResult class that holds one AI
provider's answer to "which client is this document for?".
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class InferenceResult:
    """
    Parsed answer of a text or vision classification call.

    Attributes:
        client_name: Entity name the model read or chose (may be None)
        client_code: Entity code the model matched (may be None)
        confidence: Model-reported confidence clamped into [0, 1]
        reasoning: Model's explanation
        work_date: Normalized work date (YYYY-MM-DD) or None
        work_type: Short work summary
        notes: Remarks the model found on the document
        model: Model name used
        prompt_tokens: Provider-reported input tokens
        completion_tokens: Provider-reported output tokens
        cost_usd: Cost computed from token usage
        latency_ms: Wall time of the provider call
        raw: Parsed JSON object as returned
    """
    client_name: Optional[str] = None
    client_code: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ""
    work_date: Optional[str] = None
    work_type: Optional[str] = None
    notes: Optional[str] = None
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, Any]:
        return {
            'client_name': self.client_name,
            'client_code': self.client_code,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'work_date': self.work_date,
            'work_type': self.work_type,
            'notes': self.notes,
            'model': self.model,
            'prompt_tokens': self.prompt_tokens,
            'completion_tokens': self.completion_tokens,
            'cost_usd': self.cost_usd,
            'latency_ms': self.latency_ms,
        }

    def __repr__(self) -> str:
        return (
            f"InferenceResult(client='{self.client_name}', code='{self.client_code}', "
            f"confidence={self.confidence:.2f}, cost=${self.cost_usd:.6f})"
        )
