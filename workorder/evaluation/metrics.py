"""
Metrics Module.

This module turns stored feedback and document rows into the numbers an
accuracy/cost dashboard needs.

Metrics Include:
    - Feedback accuracy (automatic guess vs. operator correction)
    - Most frequent misclassifications
    - Document counts by status and classification method
    - Average confidence and processing time
    - Accumulated API cost

Author: ML Engineering Team
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from workorder.storage.models import FeedbackRecord
from workorder.utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)


@dataclass
class AccuracyReport:
    """
    Accuracy of automatic classification measured by operator feedback.

    Attributes:
        total_feedbacks: Number of feedback records
        correct_predictions: Records where the automatic guess was kept
        accuracy: correct_predictions / total_feedbacks (0 when empty)
        confusions: (predicted_client_id, actual_client_id) -> count for
            wrong guesses
        timestamp: Report timestamp
    """
    total_feedbacks: int = 0
    correct_predictions: int = 0
    accuracy: float = 0.0
    confusions: Dict[Tuple[Optional[int], int], int] = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    @classmethod
    def from_feedback(cls, records: Sequence[FeedbackRecord]) -> "AccuracyReport":
        total = len(records)
        correct = sum(1 for r in records if r.is_correct)
        confusions = Counter(
            (r.predicted_client_id, r.actual_client_id) for r in records if not r.is_correct
        )
        return cls(
            total_feedbacks=total,
            correct_predictions=correct,
            accuracy=correct / total if total else 0.0,
            confusions=dict(confusions),
        )

    def top_confusions(self, n: int = 5) -> List[Tuple[Tuple[Optional[int], int], int]]:
        return Counter(self.confusions).most_common(n)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'total_feedbacks': self.total_feedbacks,
            'correct_predictions': self.correct_predictions,
            'accuracy': self.accuracy,
            'timestamp': self.timestamp,
            'confusions': [
                {'predicted_client_id': p, 'actual_client_id': a, 'count': n}
                for (p, a), n in self.top_confusions(len(self.confusions))
            ],
        }


@dataclass
class PipelineStats:
    """
    Aggregate view of ingested documents.

    Attributes:
        total_documents: Live (not deleted) documents
        by_status: status -> count
        by_method: classification method -> count
        avg_confidence: Mean classification confidence (None when no data)
        avg_processing_time_ms: Mean pipeline latency (None when no data)
        total_api_cost_usd: Sum of accumulated API cost
        entities: total/active/inactive entity counts
        accuracy: Feedback accuracy report
        timestamp: Report timestamp
    """
    total_documents: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_method: Dict[str, int] = field(default_factory=dict)
    avg_confidence: Optional[float] = None
    avg_processing_time_ms: Optional[float] = None
    total_api_cost_usd: float = 0.0
    entities: Dict[str, int] = field(default_factory=dict)
    accuracy: AccuracyReport = field(default_factory=AccuracyReport)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()

    @classmethod
    def from_database(
        cls,
        document_stats: Dict[str, Any],
        entity_stats: Dict[str, int],
        feedback: Sequence[FeedbackRecord]
    ) -> "PipelineStats":
        return cls(
            total_documents=document_stats.get('total', 0),
            by_status=dict(document_stats.get('by_status', {})),
            by_method=dict(document_stats.get('by_method', {})),
            avg_confidence=document_stats.get('avg_confidence'),
            avg_processing_time_ms=document_stats.get('avg_processing_time_ms'),
            total_api_cost_usd=document_stats.get('total_api_cost_usd') or 0.0,
            entities=dict(entity_stats),
            accuracy=AccuracyReport.from_feedback(feedback),
        )

    @property
    def automation_rate(self) -> float:
        """Share of live documents classified without operator input."""
        if not self.total_documents:
            return 0.0
        automatic = sum(
            self.by_method.get(m, 0) for m in ('keyword', 'ai_text', 'ai_vision')
        )
        return automatic / self.total_documents

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'total_documents': self.total_documents,
            'by_status': self.by_status,
            'by_method': self.by_method,
            'avg_confidence': self.avg_confidence,
            'avg_processing_time_ms': self.avg_processing_time_ms,
            'total_api_cost_usd': self.total_api_cost_usd,
            'automation_rate': self.automation_rate,
            'entities': self.entities,
            'accuracy': self.accuracy.to_dict(),
            'timestamp': self.timestamp,
        }

    def print_report(self) -> str:
        """Generate a formatted report string."""
        avg_conf = f"{self.avg_confidence:.2f}" if self.avg_confidence is not None else "n/a"
        avg_time = (
            f"{self.avg_processing_time_ms:.0f} ms"
            if self.avg_processing_time_ms is not None else "n/a"
        )
        lines = [
            "=" * 60,
            "WORK ORDER PIPELINE REPORT",
            "=" * 60,
            f"Timestamp: {self.timestamp}",
            f"Documents: {self.total_documents}",
            f"Entities:  {self.entities.get('active_clients', 0)} active / "
            f"{self.entities.get('total_clients', 0)} total",
            "-" * 60,
            "",
            "OVERALL METRICS:",
            f"  Avg Confidence:      {avg_conf}",
            f"  Avg Processing Time: {avg_time}",
            f"  Total API Cost:      ${self.total_api_cost_usd:.4f}",
            f"  Automation Rate:     {self.automation_rate * 100:.1f}%",
            f"  Feedback Accuracy:   {self.accuracy.accuracy * 100:.1f}% "
            f"({self.accuracy.correct_predictions}/{self.accuracy.total_feedbacks})",
            "",
            "-" * 60,
            "BY STATUS:",
        ]

        for status, count in sorted(self.by_status.items()):
            lines.append(f"  {status:<14} {count}")

        lines.extend(["", "BY METHOD:"])
        for method, count in sorted(self.by_method.items()):
            lines.append(f"  {method:<14} {count}")

        confusions = self.accuracy.top_confusions()
        if confusions:
            lines.extend(["", "MOST FREQUENT CORRECTIONS (predicted -> actual):"])
            for (predicted, actual), count in confusions:
                lines.append(f"  {predicted} -> {actual}: {count}")

        lines.append("=" * 60)

        report = "\n".join(lines)
        logger.debug("Pipeline report generated")
        return report
