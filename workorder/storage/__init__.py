"""
Storage Module.

Persistence of entities, documents and feedback (SQLite) and the entity
directory built on top of it.
"""

from .models import (
    ClassificationMethod,
    DocumentStatus,
    ContactInfo,
    Entity,
    ImageDescriptor,
    Document,
    FeedbackRecord,
)
from .database_handler import DatabaseHandler
from .entity_directory import EntityDirectory
from .entity_loader import EntityLoader

__all__ = [
    'ClassificationMethod',
    'DocumentStatus',
    'ContactInfo',
    'Entity',
    'ImageDescriptor',
    'Document',
    'FeedbackRecord',
    'DatabaseHandler',
    'EntityDirectory',
    'EntityLoader',
]
