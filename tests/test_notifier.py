"""
Tests for document event notifiers.
"""

from conftest import RecordingNotifier
from workorder.pipeline import CompositeNotifier, DocumentEvent, LoggingNotifier, Notifier
from workorder.storage import Document, DocumentStatus


def make_document():
    return Document(uuid="doc-1", id=7, status=DocumentStatus.CLASSIFIED, uploaded_by="kim")


class TestCompositeNotifier:
    """Test fan-out to several notifiers"""

    def test_event_reaches_every_notifier(self):
        first, second = RecordingNotifier(), RecordingNotifier()
        composite = CompositeNotifier([first, LoggingNotifier(), second])

        composite.notify(DocumentEvent.CLASSIFIED, make_document(), "ABC Corp")

        assert first.events == [(DocumentEvent.CLASSIFIED, 7, "ABC Corp")]
        assert second.events == first.events

    def test_failing_notifier_is_skipped(self):
        class BrokenNotifier(Notifier):
            def notify(self, event, document, client_name=None):
                raise RuntimeError("push service unavailable")

        after = RecordingNotifier()
        composite = CompositeNotifier([BrokenNotifier(), after])

        composite.notify(DocumentEvent.DELETED, make_document())

        assert after.events == [(DocumentEvent.DELETED, 7, None)]

    def test_empty_composite(self):
        CompositeNotifier([]).notify(DocumentEvent.CREATED, make_document())
