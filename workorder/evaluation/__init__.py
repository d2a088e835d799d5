"""
Evaluation Module.

Accuracy and cost reporting over stored documents and feedback.
"""

from .metrics import AccuracyReport, PipelineStats

__all__ = [
    'AccuracyReport',
    'PipelineStats',
]
