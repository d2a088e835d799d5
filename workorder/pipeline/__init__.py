"""
Pipeline Module.

End-to-end ingestion of photographed documents and the lifecycle
operations on stored documents.
"""

from .notifier import CompositeNotifier, DocumentEvent, LoggingNotifier, Notifier
from .orchestrator import IngestionOrchestrator, IngestRequest, IngestResult

__all__ = [
    'IngestionOrchestrator',
    'IngestRequest',
    'IngestResult',
    'Notifier',
    'LoggingNotifier',
    'CompositeNotifier',
    'DocumentEvent',
]
