"""
End-to-end tests of the ingestion orchestrator with fake OCR and AI.
"""

import threading
from pathlib import Path

import pytest

from conftest import ai_reply, make_upload
from workorder.input_handler import UploadedFile, UploadMetadata
from workorder.pipeline import DocumentEvent, IngestRequest, Notifier
from workorder.storage import ClassificationMethod, DocumentStatus
from workorder.utils.exceptions import (
    DocumentNotFoundError,
    InputError,
    PersistenceError,
    ProcessingError,
    UploadValidationError,
)


def stored_files(root):
    if not Path(root).exists():
        return []
    return [p for p in Path(root).rglob("*") if p.is_file()]


class TestIngest:
    """Test the happy path and degraded paths of ingest()"""

    def test_keyword_match_end_to_end(self, orchestrator, ocr_backend, entities, notifier):
        ocr_backend.text = "ABC Corp invoice #123"

        document = orchestrator.ingest([make_upload()], UploadMetadata(uploaded_by="kim"))

        assert document.status == DocumentStatus.CLASSIFIED
        assert document.classification_method == ClassificationMethod.KEYWORD
        assert document.client_id == entities["ABC"].id
        assert document.confidence_score == 1.0
        assert document.ocr_text == "ABC Corp invoice 123"
        assert document.uploaded_by == "kim"
        assert document.api_cost_usd == 0.0
        assert document.image_count == 1
        assert Path(document.primary_image.path).is_file()
        assert [event for event, _, _ in notifier.events] == [
            DocumentEvent.CREATED, DocumentEvent.CLASSIFIED,
        ]
        assert notifier.events[-1][2] == "ABC Corp"

    def test_metadata_fields_are_kept(self, orchestrator, ocr_backend, entities):
        ocr_backend.text = "ABC"
        document = orchestrator.ingest(
            [make_upload()],
            UploadMetadata(uploaded_by="lee", client_name="에이비씨", site_name="Plant 2"),
        )
        assert document.client_name == "에이비씨"
        assert document.site_name == "Plant 2"

    def test_ai_text_result_and_cost(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.text = "XYZ 배관 작업"
        fake_openai.completions.queue(ai_reply(
            client_code="XYZ", confidence=0.88, work_date="2026.10.08", work_type="배관 수리",
        ))

        document = orchestrator.ingest([make_upload()])

        assert document.classification_method == ClassificationMethod.AI_TEXT
        assert document.client_id == entities["XYZ"].id
        assert document.confidence_score == pytest.approx(0.88)
        assert document.api_cost_usd == pytest.approx(0.008)
        assert document.work_date == "2026-10-08"
        assert document.work_type == "배관 수리"

    def test_ocr_failure_degrades_to_empty_text(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.error = RuntimeError("tesseract crashed")
        fake_openai.completions.queue(ai_reply(client_code="XYZ", confidence=0.7))

        document = orchestrator.ingest([make_upload()])

        assert document.ocr_text == ""
        assert document.classification_method == ClassificationMethod.AI_VISION
        assert document.client_id == entities["XYZ"].id
        assert document.status == DocumentStatus.CLASSIFIED

    def test_vision_without_entity_is_unclassified(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.text = "illegible"
        fake_openai.completions.queue(ai_reply(confidence=0.1))
        fake_openai.completions.queue(ai_reply(confidence=0.3))

        document = orchestrator.ingest([make_upload()])

        assert document.status == DocumentStatus.UNCLASSIFIED
        assert document.client_id is None
        assert document.api_cost_usd == pytest.approx(0.016)

    def test_classification_error_marks_document_failed(
        self, orchestrator, ocr_backend, entities, fake_openai, notifier
    ):
        ocr_backend.text = "illegible"
        fake_openai.completions.queue_error(ConnectionError("provider down"))
        fake_openai.completions.queue_error(ConnectionError("provider down"))

        document = orchestrator.ingest([make_upload()])

        assert document.status == DocumentStatus.FAILED
        assert document.classification_method == ClassificationMethod.ERROR
        assert document.confidence_score == 0.0
        assert "provider down" in document.reasoning
        assert notifier.events[-1][0] == DocumentEvent.FAILED

    def test_unexpected_failure_after_creation_marks_document_failed(self, orchestrator, db, ocr_backend):
        class BrokenClassifier:
            def classify(self, *args, **kwargs):
                raise RuntimeError("boom")

        orchestrator.classifier = BrokenClassifier()
        ocr_backend.text = "ABC"

        document = orchestrator.ingest([make_upload()])

        assert document.status == DocumentStatus.FAILED
        assert "boom" in document.reasoning
        assert len(db.list_documents()) == 1

    def test_corrupt_image_creates_no_document(self, orchestrator, db, image_settings):
        corrupt = UploadedFile("broken.jpg", b"\xff\xd8\xff\xe0 garbage bytes", "image/jpeg")

        with pytest.raises(ProcessingError):
            orchestrator.ingest([make_upload("good.jpg"), corrupt])

        assert db.list_documents() == []
        assert stored_files(image_settings.storage_root) == []

    def test_rejected_upload_creates_no_document(self, orchestrator, db):
        files = [make_upload(f"p{i}.jpg", width=16, height=16) for i in range(6)]
        with pytest.raises(UploadValidationError):
            orchestrator.ingest(files)
        assert db.list_documents() == []

    def test_multiple_images_primary_first(self, orchestrator, ocr_backend, entities):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload("front.jpg"), make_upload("back.png")])

        assert document.image_count == 2
        assert [img.filename for img in document.images] == ["front.jpg", "back.png"]
        assert len(ocr_backend.intervals) == 1

    def test_unknown_strategy_is_rejected_before_storage(self, orchestrator, db, image_settings):
        with pytest.raises(InputError):
            orchestrator.ingest([make_upload()], strategy="bogus")

        assert db.list_documents() == []
        assert stored_files(image_settings.storage_root) == []

    def test_failing_notifier_does_not_fail_ingestion(self, orchestrator, ocr_backend, entities):
        class ExplodingNotifier(Notifier):
            def notify(self, event, document, client_name=None):
                raise RuntimeError("push service unavailable")

        orchestrator.notifier = ExplodingNotifier()
        ocr_backend.text = "ABC Corp"

        document = orchestrator.ingest([make_upload()])

        assert document.status == DocumentStatus.CLASSIFIED


class TestConcurrentIngest:
    """Test independent pipelines with a shared OCR engine"""

    def test_ocr_calls_do_not_overlap(self, orchestrator, ocr_backend, entities):
        ocr_backend.text = "ABC Corp"
        ocr_backend.delay = 0.2
        requests = [
            IngestRequest(files=[make_upload("first.jpg")], metadata=UploadMetadata(uploaded_by="a")),
            IngestRequest(files=[make_upload("second.jpg")], metadata=UploadMetadata(uploaded_by="b")),
        ]

        results = orchestrator.ingest_many(requests)

        assert all(result.success for result in results)
        assert [r.document.uploaded_by for r in results] == ["a", "b"]
        assert all(r.document.status == DocumentStatus.CLASSIFIED for r in results)
        assert ocr_backend.max_active == 1
        (_, first_end), (second_start, _) = sorted(ocr_backend.intervals)
        assert second_start >= first_end

    def test_rejected_request_does_not_stop_batch(self, orchestrator, ocr_backend, entities):
        ocr_backend.text = "ABC Corp"
        requests = [
            IngestRequest(files=[UploadedFile("bad.jpg", b"nope", "image/jpeg")]),
            IngestRequest(files=[make_upload()]),
        ]

        results = orchestrator.ingest_many(requests)

        assert isinstance(results[0].error, ProcessingError)
        assert results[0].document is None
        assert results[1].success


class TestDocumentOperations:
    """Test reclassification, image appends and lifecycle"""

    def test_manual_reclassify_records_feedback(self, orchestrator, ocr_backend, entities, db):
        ocr_backend.text = "ABC Corp invoice"
        document = orchestrator.ingest([make_upload()])
        assert document.client_id == entities["ABC"].id

        updated = orchestrator.reclassify(document.id, entities["XYZ"].id, "Wrong vendor", "kim")

        assert updated.client_id == entities["XYZ"].id
        assert updated.classification_method == ClassificationMethod.MANUAL
        assert updated.confidence_score == 1.0
        assert updated.status == DocumentStatus.CLASSIFIED
        assert updated.reasoning == "Wrong vendor"

        feedback = db.list_feedback(document.id)
        assert len(feedback) == 1
        assert feedback[0].predicted_client_id == entities["ABC"].id
        assert feedback[0].actual_client_id == entities["XYZ"].id
        assert feedback[0].is_correct is False
        assert feedback[0].corrected_by == "kim"

    def test_second_manual_correction_adds_no_feedback(self, orchestrator, ocr_backend, entities, db):
        ocr_backend.text = "ABC Corp invoice"
        document = orchestrator.ingest([make_upload()])

        orchestrator.reclassify(document.id, entities["XYZ"].id)
        orchestrator.reclassify(document.id, entities["ABC"].id)

        assert len(db.list_feedback(document.id)) == 1

    def test_rerun_adds_cost(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.text = "XYZ 배관"
        fake_openai.completions.queue(ai_reply(client_code="XYZ", confidence=0.9))
        document = orchestrator.ingest([make_upload()])

        fake_openai.completions.queue(ai_reply(client_code="ABC", confidence=0.95))
        rerun = orchestrator.rerun_classification(document.id, "ai_text")

        assert rerun.client_id == entities["ABC"].id
        assert rerun.api_cost_usd == pytest.approx(0.016)
        assert rerun.ocr_text == document.ocr_text
        assert len(ocr_backend.intervals) == 1

    def test_add_images_does_not_reclassify(self, orchestrator, ocr_backend, entities, notifier):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])

        updated = orchestrator.add_images(document.id, [make_upload("extra.jpg")])

        assert updated.image_count == 2
        assert updated.images[0].uuid == document.images[0].uuid
        assert updated.classification_method == ClassificationMethod.KEYWORD
        assert len(ocr_backend.intervals) == 1
        assert notifier.events[-1][0] == DocumentEvent.UPDATED

    def test_delete_restore_purge(self, orchestrator, ocr_backend, entities, db):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])

        with pytest.raises(PersistenceError):
            orchestrator.purge(document.id)

        assert orchestrator.delete(document.id).status == DocumentStatus.DELETED
        assert db.list_documents() == []
        with pytest.raises(InputError):
            orchestrator.add_images(document.id, [make_upload()])

        assert orchestrator.restore(document.id).status == DocumentStatus.CLASSIFIED
        orchestrator.delete(document.id)
        orchestrator.purge(document.id)

        assert db.get_document_by_id(document.id) is None
        assert not Path(document.primary_image.path).exists()

    def test_restore_keeps_unclassified_outcome(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.text = ""
        fake_openai.completions.queue(ai_reply(confidence=0.4))
        document = orchestrator.ingest([make_upload()])
        assert document.status == DocumentStatus.UNCLASSIFIED

        orchestrator.delete(document.id)
        restored = orchestrator.restore(document.id)

        assert restored.status == DocumentStatus.UNCLASSIFIED
        assert restored.client_id is None

    def test_restore_keeps_failed_outcome(self, orchestrator, ocr_backend, entities, fake_openai):
        ocr_backend.text = "illegible"
        fake_openai.completions.queue_error(ConnectionError("provider down"))
        fake_openai.completions.queue_error(ConnectionError("provider down"))
        document = orchestrator.ingest([make_upload()])

        orchestrator.delete(document.id)

        assert orchestrator.restore(document.id).status == DocumentStatus.FAILED

    def test_reclassify_refuses_deleted_document(self, orchestrator, ocr_backend, entities, db):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])
        orchestrator.delete(document.id)

        with pytest.raises(InputError):
            orchestrator.reclassify(document.id, entities["XYZ"].id)

        stored = db.require_document(document.id)
        assert stored.status == DocumentStatus.DELETED
        assert stored.client_id == entities["ABC"].id
        assert db.list_feedback(document.id) == []

    def test_rerun_rejects_unknown_strategy(self, orchestrator, ocr_backend, entities, db):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])

        with pytest.raises(InputError):
            orchestrator.rerun_classification(document.id, "bogus")
        assert db.require_document(document.id).status == DocumentStatus.CLASSIFIED

    def test_concurrent_add_images_keeps_every_image(self, orchestrator, ocr_backend, entities, image_settings):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])
        errors = []

        def append(index):
            try:
                orchestrator.add_images(document.id, [make_upload(f"extra{index}.jpg")])
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=append, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        stored = orchestrator.get(document.id)
        assert stored.image_count == 5
        assert sorted(img.filename for img in stored.images[1:]) == [f"extra{i}.jpg" for i in range(4)]
        for descriptor in stored.images:
            assert Path(descriptor.path).is_file()

    def test_missing_document(self, orchestrator):
        with pytest.raises(DocumentNotFoundError):
            orchestrator.delete(404)
        with pytest.raises(DocumentNotFoundError):
            orchestrator.get(404)

    def test_stats(self, orchestrator, ocr_backend, entities):
        ocr_backend.text = "ABC Corp"
        document = orchestrator.ingest([make_upload()])
        orchestrator.reclassify(document.id, entities["XYZ"].id)

        stats = orchestrator.stats()

        assert stats.total_documents == 1
        assert stats.by_method == {"manual": 1}
        assert stats.accuracy.total_feedbacks == 1
        assert stats.accuracy.accuracy == 0.0
        assert "WORK ORDER PIPELINE REPORT" in stats.print_report()
