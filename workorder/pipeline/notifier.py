"""
Notifier Module.

Document lifecycle events are handed to a Notifier. Delivery (push,
websocket, e-mail) is left to implementations; the default only logs.
"""

from enum import Enum
from typing import Iterable, List, Optional

from workorder.storage.models import Document
from workorder.utils.logger import get_logger

logger = get_logger(__name__)


class DocumentEvent(str, Enum):
    CREATED = "created"
    CLASSIFIED = "classified"
    UPDATED = "updated"
    FAILED = "failed"
    DELETED = "deleted"


class Notifier:
    """Base class for event sinks. Subclasses override notify()."""

    def notify(self, event: DocumentEvent, document: Document, client_name: Optional[str] = None) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Writes one structured log line per event."""

    def notify(self, event: DocumentEvent, document: Document, client_name: Optional[str] = None) -> None:
        logger.info(
            f"Document event | event={DocumentEvent(event).value} document={document.id} "
            f"uuid={document.uuid} client={client_name or document.client_name or '-'} "
            f"uploaded_by={document.uploaded_by or '-'} status={document.status.value}"
        )


class CompositeNotifier(Notifier):
    """Fans an event out to several notifiers. A failing notifier is logged and skipped."""

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self.notifiers: List[Notifier] = list(notifiers)

    def notify(self, event: DocumentEvent, document: Document, client_name: Optional[str] = None) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(event, document, client_name)
            except Exception as e:
                logger.error(
                    f"Notifier {type(notifier).__name__} failed for document {document.id} "
                    f"({DocumentEvent(event).value}): {e}"
                )
