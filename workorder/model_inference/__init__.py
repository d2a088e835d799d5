"""
Model Inference Module.

OpenAI-backed text and vision classification of documents.
"""

from .classifier import AIClassifier, clamp_confidence, format_entity_list, parse_json_content
from .inference_result import InferenceResult

__all__ = [
    'AIClassifier',
    'InferenceResult',
    'clamp_confidence',
    'format_entity_list',
    'parse_json_content',
]
