"""
Ingestion Orchestrator Module.

This module wires the pipeline stages together for one document:

    validate -> normalize -> store -> create document -> OCR -> classify -> persist

Everything up to and including storage must succeed or the request is
rejected with no document row. Once the document exists, later failures
are recorded on it (status 'failed', error in 'reasoning') instead of
being raised, so uploaded photos are never lost.

Usage:
    from workorder.pipeline import IngestionOrchestrator
    from workorder.input_handler import UploadedFile, UploadMetadata

    orchestrator = IngestionOrchestrator()
    document = orchestrator.ingest(
        [UploadedFile.from_path("order.jpg")],
        UploadMetadata(uploaded_by="kim"),
    )

Author: ML Engineering Team
"""

import time
import uuid
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from workorder.classification import STRATEGIES, ClassificationEngine, ClassificationOutcome
from workorder.evaluation import PipelineStats
from workorder.input_handler import (
    ImageNormalizer,
    ImageStore,
    NormalizedImage,
    UploadedFile,
    UploadHandler,
    UploadMetadata,
)
from workorder.ocr_engine import OCREngine, get_ocr_engine
from workorder.settings import PipelineSettings
from workorder.storage import (
    ClassificationMethod,
    DatabaseHandler,
    Document,
    DocumentStatus,
    EntityDirectory,
    ImageDescriptor,
)
from workorder.utils.logger import document_context, get_logger
from workorder.utils.helpers import elapsed_ms, run_with_deadline
from workorder.utils.exceptions import (
    DocumentNotFoundError,
    ExtractionError,
    InputError,
    PersistenceError,
    ProcessingError,
    WorkOrderError,
)
from .notifier import DocumentEvent, LoggingNotifier, Notifier

# Initialize module logger
logger = get_logger(__name__)


AUTOMATIC_METHODS = (
    ClassificationMethod.KEYWORD,
    ClassificationMethod.AI_TEXT,
    ClassificationMethod.AI_VISION,
)


@dataclass
class IngestRequest:
    """One logical document to ingest: its images (primary first) and metadata."""
    files: List[UploadedFile]
    metadata: UploadMetadata = field(default_factory=UploadMetadata)
    strategy: Optional[str] = None


@dataclass
class IngestResult:
    """Outcome of one request in ingest_many()."""
    request: IngestRequest
    document: Optional[Document] = None
    error: Optional[WorkOrderError] = None

    @property
    def success(self) -> bool:
        return self.document is not None


class IngestionOrchestrator:
    """
    Runs the ingestion pipeline and the document maintenance operations.

    Documents are independent; several pipelines may run at once and
    only the OCR stage is serialized (by the OCR engine lock).

    Attributes:
        db: DatabaseHandler for documents, entities and feedback
        directory: EntityDirectory over the same database
        classifier: ClassificationEngine
        ocr_engine: OCREngine (process-wide instance by default)
        notifier: Notifier receiving document events
        settings: PipelineSettings (timeouts, worker count)
    """

    def __init__(
        self,
        db: Optional[DatabaseHandler] = None,
        upload_handler: Optional[UploadHandler] = None,
        normalizer: Optional[ImageNormalizer] = None,
        store: Optional[ImageStore] = None,
        ocr_engine: Optional[OCREngine] = None,
        classifier: Optional[ClassificationEngine] = None,
        notifier: Optional[Notifier] = None,
        settings: Optional[PipelineSettings] = None
    ) -> None:
        """
        Initialize the orchestrator.

        Every collaborator not passed in is built from configuration.
        """
        self.settings = settings or PipelineSettings.from_config()
        self.db = db or DatabaseHandler(self.settings.database_path)
        self.directory = EntityDirectory(self.db)
        self.upload_handler = upload_handler or UploadHandler()
        self.normalizer = normalizer or ImageNormalizer()
        self.store = store or ImageStore(
            self.normalizer.settings.storage_root, self.normalizer.extension
        )
        self.ocr_engine = ocr_engine or get_ocr_engine()
        self.classifier = classifier or ClassificationEngine(self.directory)
        self.notifier = notifier or LoggingNotifier()

        logger.info(
            f"IngestionOrchestrator initialized (db={self.db.db_path}, "
            f"storage={self.store.root}, workers={self.settings.max_workers})"
        )

    # =========================================================================
    # INGESTION
    # =========================================================================

    def ingest(
        self,
        files: Sequence[UploadedFile],
        metadata: Optional[UploadMetadata] = None,
        strategy: Optional[str] = None
    ) -> Document:
        """
        Ingest one document made of one or more images.

        Args:
            files: Uploaded images; the first becomes the primary image.
            metadata: Uploader and optional free-text fields.
            strategy: Classification strategy; None means 'auto'.

        Returns:
            The stored Document after classification (or after failure).

        Raises:
            InputError: If the strategy is unknown.
            UploadValidationError: If the upload violates limits.
            ProcessingError: If any image cannot be normalized or stored.
                No document exists in that case.
            PersistenceError: If the database is unavailable.
        """
        started = time.monotonic()
        metadata = metadata or UploadMetadata()
        self._check_strategy(strategy)

        files = self.upload_handler.validate(files)
        normalized = [self._normalize(upload) for upload in files]
        descriptors = self._store_all(normalized)

        document = self.db.create_document(Document(
            uuid=uuid.uuid4().hex,
            images=descriptors,
            client_name=metadata.client_name,
            site_name=metadata.site_name,
            uploaded_by=metadata.uploaded_by,
            status=DocumentStatus.PENDING,
        ))
        logger.info(
            f"Document created: id={document.id} uuid={document.uuid} "
            f"images={document.image_count} uploaded_by={document.uploaded_by}"
        )
        self._notify(DocumentEvent.CREATED, document)

        return self._classify_document(document, strategy, started, run_ocr=True)

    def ingest_many(self, requests: Sequence[IngestRequest]) -> List[IngestResult]:
        """
        Ingest several independent documents concurrently.

        Returns:
            One IngestResult per request, in request order. Requests
            rejected before a document existed carry the error instead.
        """
        results: List[IngestResult] = []

        with ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_workers),
            thread_name_prefix="ingest",
        ) as pool:
            futures = [
                pool.submit(self.ingest, req.files, req.metadata, req.strategy)
                for req in requests
            ]
            for req, future in zip(requests, futures):
                try:
                    results.append(IngestResult(request=req, document=future.result()))
                except WorkOrderError as e:
                    logger.error(f"Ingestion rejected: {e}")
                    results.append(IngestResult(request=req, error=e))

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch ingestion finished: {succeeded}/{len(results)} documents created")
        return results

    def add_images(self, document_id: int, files: Sequence[UploadedFile]) -> Document:
        """
        Append images to an existing document without reclassifying it.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            InputError: If the document is deleted.
            UploadValidationError / ProcessingError: As for ingest().
        """
        document = self.db.require_document(document_id)
        if document.status == DocumentStatus.DELETED:
            raise InputError(f"Cannot add images to deleted document {document_id}")

        files = self.upload_handler.validate(files)
        normalized = [self._normalize(upload) for upload in files]
        descriptors = self._store_all(normalized)

        try:
            self.db.append_images(document_id, descriptors)
        except PersistenceError:
            for descriptor in descriptors:
                self.store.remove(descriptor)
            raise
        document = self.db.require_document(document_id)

        logger.info(f"Added {len(descriptors)} images to document {document_id} (now {document.image_count})")
        self._notify(DocumentEvent.UPDATED, document)
        return document

    @staticmethod
    def _check_strategy(strategy: Optional[str]) -> None:
        if strategy is not None and strategy not in STRATEGIES:
            raise InputError(f"Unknown strategy '{strategy}', expected one of {STRATEGIES}")

    def _normalize(self, upload: UploadedFile) -> NormalizedImage:
        timeout = self.settings.normalization_timeout_seconds
        try:
            return run_with_deadline(self.normalizer.normalize, timeout, upload.content, upload.filename)
        except FuturesTimeoutError:
            logger.error(f"Normalization of {upload.filename} exceeded {timeout}s")
            raise ProcessingError(upload.filename, f"normalization timed out after {timeout}s")

    def _store_all(self, normalized: Sequence[NormalizedImage]) -> List[ImageDescriptor]:
        """Store every image or none of them."""
        descriptors: List[ImageDescriptor] = []
        try:
            for item in normalized:
                descriptors.append(self.store.save(item))
        except ProcessingError:
            for descriptor in descriptors:
                self.store.remove(descriptor)
            raise
        return descriptors

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def _extract_text(self, document: Document) -> str:
        """OCR the primary image's OCR variant; failures give empty text."""
        primary = document.primary_image
        source = primary.ocr_path or primary.path
        try:
            result = self.ocr_engine.extract(source)
        except ExtractionError as e:
            logger.warning(f"OCR failed for document {document.id}, continuing without text: {e}")
            return ""

        logger.info(
            f"OCR for document {document.id}: {len(result.text)} chars, "
            f"{result.word_count} words, confidence {result.confidence:.1f}%"
        )
        return result.text

    def _classify_document(
        self,
        document: Document,
        strategy: Optional[str],
        started: float,
        run_ocr: bool
    ) -> Document:
        with document_context(document.id):
            return self._run_classification(document, strategy, started, run_ocr)

    def _run_classification(
        self,
        document: Document,
        strategy: Optional[str],
        started: float,
        run_ocr: bool
    ) -> Document:
        """Run OCR (optionally) and classification, recording any failure on the document."""
        try:
            self.db.update_document(document.id, status=DocumentStatus.PROCESSING)

            if run_ocr or document.ocr_text is None:
                text = self._extract_text(document)
            else:
                text = document.ocr_text

            outcome = self.classifier.classify(
                text,
                document.primary_image.path,
                strategy=strategy or "auto",
                document_ref=document.id,
            )
            self._apply_outcome(document.id, text, outcome, started)
        except Exception as e:
            logger.exception(f"Pipeline failed for document {document.id}: {e}")
            self.db.update_document(
                document.id,
                status=DocumentStatus.FAILED,
                classification_method=ClassificationMethod.ERROR,
                confidence_score=0.0,
                reasoning=f"Pipeline error: {e}",
                processing_time_ms=elapsed_ms(started),
            )
            document = self.db.require_document(document.id)
            self._notify(DocumentEvent.FAILED, document)
            return document

        document = self.db.require_document(document.id)
        event = DocumentEvent.FAILED if document.status == DocumentStatus.FAILED else DocumentEvent.CLASSIFIED
        self._notify(event, document, outcome.entity.name if outcome.entity else None)
        return document

    def _apply_outcome(
        self,
        document_id: int,
        text: str,
        outcome: ClassificationOutcome,
        started: float
    ) -> None:
        final = outcome.final
        fields = dict(
            ocr_text=text,
            client_id=outcome.client_id,
            classification_method=outcome.method,
            confidence_score=outcome.confidence,
            reasoning=outcome.reasoning,
            status=outcome.status,
            processing_time_ms=elapsed_ms(started),
        )
        if final.work_date:
            fields['work_date'] = final.work_date
        if final.work_type:
            fields['work_type'] = final.work_type

        self.db.update_document(document_id, **fields)
        if outcome.cost_usd:
            self.db.add_api_cost(document_id, outcome.cost_usd)

    def rerun_classification(self, document_id: int, strategy: Optional[str] = None) -> Document:
        """
        Classify an existing document again from its stored text and image.

        OCR only runs if the document has never been OCR'd. Any API cost is
        added to the document's accumulated cost.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            InputError: If the document is deleted.
        """
        document = self.db.require_document(document_id)
        if document.status == DocumentStatus.DELETED:
            raise InputError(f"Cannot reclassify deleted document {document_id}")

        self._check_strategy(strategy)
        logger.info(f"Re-running classification for document {document_id} (strategy={strategy or 'auto'})")
        return self._classify_document(document, strategy, time.monotonic(), run_ocr=False)

    def reclassify(
        self,
        document_id: int,
        entity_id: int,
        reason: Optional[str] = None,
        corrected_by: Optional[str] = None
    ) -> Document:
        """
        Manually assign a document to an entity.

        Stores feedback when the document carried an automatic guess, so
        accuracy reports compare the guess with the operator's choice.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            EntityNotFoundError: If the entity does not exist.
            InputError: If the document is deleted.
        """
        document = self.db.require_document(document_id)
        if document.status == DocumentStatus.DELETED:
            raise InputError(f"Cannot reclassify deleted document {document_id}")

        attempt = self.classifier.manual_classify(document_id, entity_id, reason)

        self.db.update_document(
            document_id,
            client_id=attempt.client_id,
            classification_method=ClassificationMethod.MANUAL,
            confidence_score=attempt.confidence,
            reasoning=attempt.reasoning,
            status=DocumentStatus.CLASSIFIED,
        )

        if document.classification_method in AUTOMATIC_METHODS:
            self.classifier.record_feedback(
                document_id, document.client_id, entity_id, corrected_by
            )

        document = self.db.require_document(document_id)
        self._notify(DocumentEvent.UPDATED, document, attempt.entity.name)
        return document

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def get(self, document_id: int) -> Document:
        return self.db.require_document(document_id)

    def delete(self, document_id: int) -> Document:
        """Soft delete (status 'deleted'); files are kept."""
        if not self.db.soft_delete_document(document_id):
            raise DocumentNotFoundError(document_id)
        document = self.db.require_document(document_id)
        logger.info(f"Document {document_id} moved to trash")
        self._notify(DocumentEvent.DELETED, document)
        return document

    def restore(self, document_id: int) -> Document:
        """Bring a soft-deleted document back with a status derived from its classification."""
        if not self.db.restore_document(document_id):
            raise DocumentNotFoundError(f"{document_id} (not in trash)")
        logger.info(f"Document {document_id} restored")
        return self.db.require_document(document_id)

    def purge(self, document_id: int, remove_files: bool = True) -> None:
        """
        Permanently remove a soft-deleted document and, optionally, its files.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            PersistenceError: If the document is not soft-deleted.
        """
        document = self.db.require_document(document_id)
        if document.status != DocumentStatus.DELETED:
            raise PersistenceError("purge", f"document {document_id} must be deleted before purge")

        self.db.purge_document(document_id)
        if remove_files:
            for descriptor in document.images:
                self.store.remove(descriptor)

    def stats(self) -> PipelineStats:
        return PipelineStats.from_database(
            self.db.get_document_statistics(),
            self.db.get_entity_statistics(),
            self.db.list_feedback(),
        )

    def _notify(self, event: DocumentEvent, document: Document, client_name: Optional[str] = None) -> None:
        try:
            self.notifier.notify(event, document, client_name)
        except Exception as e:
            logger.error(f"Notifier failed for {event.value} event of document {document.id}: {e}")
