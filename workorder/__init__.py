"""
Work Order Classifier - Source Package.

This package contains the core modules of the work order classifier,
which attributes photographed work orders and purchase orders to the
client or supplier they belong to.

Modules:
    - input_handler: Upload validation, image normalization and storage
    - ocr_engine: Single-flight Tesseract text extraction
    - storage: SQLite persistence and the entity directory
    - model_inference: OpenAI text and vision classification
    - classification: Staged keyword -> AI text -> AI vision classifier
    - postprocessor: Normalization of AI-provided fields
    - pipeline: Ingestion orchestrator and notifications
    - evaluation: Accuracy and cost reporting

Architecture:
    Upload → Normalize → Store → OCR → Classify → Persist → Notify
                                                     ↓
                                                 Evaluation
"""

__version__ = "1.0.0"
__author__ = "ML Engineering Team"

__all__ = [
    'input_handler',
    'ocr_engine',
    'storage',
    'model_inference',
    'classification',
    'postprocessor',
    'pipeline',
    'evaluation',
    'utils',
]
