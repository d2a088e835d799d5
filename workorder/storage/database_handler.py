"""
Database Handler Module.

This module provides SQLite persistence for clients/suppliers, documents
and classification feedback. It is the persistence interface the
pipeline consumes; the schema is deliberately small.

Features:
    - Automatic schema creation
    - Typed records in, typed records out (JSON columns decoded here)
    - Soft delete / restore / purge for documents
    - Aggregate statistics for reporting

Author: ML Engineering Team
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from workorder.utils.logger import get_logger
from workorder.utils.helpers import ensure_directory
from workorder.utils.exceptions import PersistenceError, DocumentNotFoundError
from .models import (
    ClassificationMethod,
    ContactInfo,
    Document,
    DocumentStatus,
    Entity,
    FeedbackRecord,
    ImageDescriptor,
)

# Initialize module logger
logger = get_logger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS clients (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    keywords TEXT NOT NULL,
    aliases TEXT NOT NULL,
    contact_info TEXT,
    priority INTEGER NOT NULL DEFAULT 100,
    is_active INTEGER NOT NULL DEFAULT 1,
    notes TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS documents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid TEXT NOT NULL UNIQUE,
    images TEXT NOT NULL,
    image_count INTEGER NOT NULL DEFAULT 0,
    client_id INTEGER REFERENCES clients(id),
    client_name TEXT,
    site_name TEXT,
    ocr_text TEXT,
    classification_method TEXT NOT NULL DEFAULT 'pending',
    confidence_score REAL,
    reasoning TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    api_cost_usd REAL NOT NULL DEFAULT 0,
    processing_time_ms INTEGER NOT NULL DEFAULT 0,
    uploaded_by TEXT,
    work_date TEXT,
    work_type TEXT,
    created_at TEXT,
    updated_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_documents_status ON documents (status);
CREATE INDEX IF NOT EXISTS idx_documents_client ON documents (client_id);

CREATE TABLE IF NOT EXISTS classification_feedback (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id INTEGER NOT NULL REFERENCES documents(id),
    predicted_client_id INTEGER,
    actual_client_id INTEGER NOT NULL,
    is_correct INTEGER NOT NULL,
    corrected_by TEXT,
    created_at TEXT
);
"""

# Columns update_document() may touch.
DOCUMENT_UPDATABLE_FIELDS = {
    'images',
    'client_id',
    'client_name',
    'site_name',
    'ocr_text',
    'classification_method',
    'confidence_score',
    'reasoning',
    'status',
    'api_cost_usd',
    'processing_time_ms',
    'work_date',
    'work_type',
}

# Columns update_entity() may touch; code is immutable.
ENTITY_UPDATABLE_FIELDS = {
    'name', 'keywords', 'aliases', 'contact_info', 'priority', 'is_active', 'notes'
}


def _now() -> str:
    return datetime.now().isoformat(timespec='seconds')


class DatabaseHandler:
    """
    SQLite-backed store for entities, documents and feedback.

    A new connection is opened per operation so the handler can be shared
    across pipeline threads; writes are additionally serialized by a lock.

    Attributes:
        db_path: Path to the SQLite database file

    Example:
        >>> db = DatabaseHandler("storage/work_orders.db")
        >>> entity = db.insert_entity(Entity(code="ABC", name="ABC Corp", keywords=["ABC"]))
        >>> db.list_entities()
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        """
        Initialize the database handler.

        Args:
            db_path: Path to database file. If None, uses configuration.
        """
        if db_path is None:
            from config import get_config
            db_path = get_config("paths.database", "storage/work_orders.db")

        self.db_path = Path(db_path)
        self._write_lock = threading.Lock()

        ensure_directory(self.db_path.parent)
        self._create_tables()

        logger.info(f"DatabaseHandler initialized (db: {self.db_path})")

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _create_tables(self) -> None:
        """Create the required database tables."""
        try:
            with self._connect() as conn:
                conn.executescript(SCHEMA)
            logger.debug("Database tables created/verified")
        except sqlite3.Error as e:
            raise PersistenceError("create tables", str(e))

    # =========================================================================
    # ENTITIES
    # =========================================================================

    @staticmethod
    def _row_to_entity(row: sqlite3.Row) -> Entity:
        contact = json.loads(row['contact_info']) if row['contact_info'] else None
        return Entity(
            id=row['id'],
            code=row['code'],
            name=row['name'],
            keywords=json.loads(row['keywords']),
            aliases=json.loads(row['aliases']),
            contact_info=ContactInfo.from_dict(contact),
            priority=row['priority'],
            is_active=bool(row['is_active']),
            notes=row['notes'],
        )

    @staticmethod
    def _entity_params(entity: Entity) -> Dict[str, Any]:
        return {
            'code': entity.code.strip(),
            'name': entity.name.strip(),
            'keywords': json.dumps(entity.keywords, ensure_ascii=False),
            'aliases': json.dumps(entity.aliases, ensure_ascii=False),
            'contact_info': (
                json.dumps(entity.contact_info.to_dict(), ensure_ascii=False)
                if entity.contact_info else None
            ),
            'priority': entity.priority,
            'is_active': 1 if entity.is_active else 0,
            'notes': entity.notes,
        }

    def insert_entity(self, entity: Entity) -> Entity:
        """
        Insert a new client/supplier.

        Args:
            entity: Entity to insert (its id is ignored).

        Returns:
            The stored entity with its id.

        Raises:
            ValueError: If the entity violates its invariants.
            PersistenceError: If the insert fails (e.g. duplicate code).
        """
        entity.validate()
        params = self._entity_params(entity)
        params['created_at'] = params['updated_at'] = _now()

        sql = """
        INSERT INTO clients (code, name, keywords, aliases, contact_info,
                             priority, is_active, notes, created_at, updated_at)
        VALUES (:code, :name, :keywords, :aliases, :contact_info,
                :priority, :is_active, :notes, :created_at, :updated_at)
        """
        try:
            with self._write_lock, self._connect() as conn:
                cursor = conn.execute(sql, params)
                entity_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceError("insert entity", str(e))

        logger.info(f"Entity created: id={entity_id} code={entity.code} name={entity.name}")
        return self.get_entity_by_id(entity_id)

    def update_entity(self, entity_id: int, **fields: Any) -> int:
        """
        Update mutable entity fields.

        Args:
            entity_id: Entity to update.
            **fields: Any of name, keywords, aliases, contact_info,
                priority, is_active, notes.

        Returns:
            Number of affected rows.

        Raises:
            ValueError: If 'code' or an unknown field is passed, or the
                resulting entity would violate its invariants.
        """
        unknown = set(fields) - ENTITY_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update entity fields: {sorted(unknown)}")
        if not fields:
            logger.warning(f"No entity fields to update (id={entity_id})")
            return 0

        current = self.get_entity_by_id(entity_id)
        if current is None:
            return 0

        for key, value in fields.items():
            if key == 'contact_info' and isinstance(value, dict):
                value = ContactInfo.from_dict(value)
            setattr(current, key, value)
        current.validate()

        params = self._entity_params(current)
        assignments = ", ".join(f"{key} = :{key}" for key in fields)
        params.update({'id': entity_id, 'updated_at': _now()})

        try:
            with self._write_lock, self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE clients SET {assignments}, updated_at = :updated_at WHERE id = :id",
                    params,
                )
                affected = cursor.rowcount
        except sqlite3.Error as e:
            raise PersistenceError("update entity", str(e))

        logger.info(f"Entity updated: id={entity_id} fields={sorted(fields)}")
        return affected

    def deactivate_entity(self, entity_id: int) -> int:
        """Soft-delete an entity (is_active = 0)."""
        try:
            with self._write_lock, self._connect() as conn:
                cursor = conn.execute(
                    "UPDATE clients SET is_active = 0, updated_at = ? WHERE id = ?",
                    (_now(), entity_id),
                )
                affected = cursor.rowcount
        except sqlite3.Error as e:
            raise PersistenceError("deactivate entity", str(e))

        logger.info(f"Entity deactivated: id={entity_id} affected={affected}")
        return affected

    def list_entities(self, active_only: bool = True) -> List[Entity]:
        """
        Retrieve entities ordered by priority, then name.

        Args:
            active_only: Only return entities with is_active = 1.
        """
        sql = "SELECT * FROM clients"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY priority ASC, name ASC, id ASC"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("list entities", str(e))

        return [self._row_to_entity(row) for row in rows]

    def get_entity_by_id(self, entity_id: int) -> Optional[Entity]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM clients WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("get entity by id", str(e))
        return self._row_to_entity(row) if row else None

    def get_entity_by_code(self, code: str) -> Optional[Entity]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM clients WHERE code = ?", (code,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("get entity by code", str(e))
        return self._row_to_entity(row) if row else None

    def search_entities(self, term: str, limit: int = 20) -> List[Entity]:
        """
        Case-insensitive substring search on active entity names and codes.

        Args:
            term: Search term.
            limit: Maximum number of results.
        """
        escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        sql = """
        SELECT * FROM clients
        WHERE is_active = 1
          AND (LOWER(name) LIKE ? ESCAPE '\\' OR LOWER(code) LIKE ? ESCAPE '\\')
        ORDER BY priority ASC, name ASC, id ASC
        LIMIT ?
        """
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, (pattern, pattern, limit)).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("search entities", str(e))

        return [self._row_to_entity(row) for row in rows]

    def get_entity_statistics(self) -> Dict[str, int]:
        """Counts of total, active and inactive entities."""
        sql = """
        SELECT COUNT(*) AS total_clients,
               COALESCE(SUM(CASE WHEN is_active = 1 THEN 1 ELSE 0 END), 0) AS active_clients,
               COALESCE(SUM(CASE WHEN is_active = 0 THEN 1 ELSE 0 END), 0) AS inactive_clients
        FROM clients
        """
        try:
            with self._connect() as conn:
                row = conn.execute(sql).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("entity statistics", str(e))
        return dict(row)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row['id'],
            uuid=row['uuid'],
            images=[ImageDescriptor.from_dict(d) for d in json.loads(row['images'])],
            client_id=row['client_id'],
            client_name=row['client_name'],
            site_name=row['site_name'],
            ocr_text=row['ocr_text'],
            classification_method=ClassificationMethod(row['classification_method']),
            confidence_score=row['confidence_score'],
            reasoning=row['reasoning'],
            status=DocumentStatus(row['status']),
            api_cost_usd=row['api_cost_usd'] or 0.0,
            processing_time_ms=row['processing_time_ms'] or 0,
            uploaded_by=row['uploaded_by'],
            work_date=row['work_date'],
            work_type=row['work_type'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @staticmethod
    def _encode_document_value(key: str, value: Any) -> Any:
        if key == 'images':
            return json.dumps(
                [img.to_dict() if isinstance(img, ImageDescriptor) else img for img in value],
                ensure_ascii=False,
            )
        if isinstance(value, (ClassificationMethod, DocumentStatus)):
            return value.value
        return value

    def create_document(self, document: Document) -> Document:
        """
        Insert a new document row.

        Returns:
            The stored document with id and timestamps.
        """
        now = _now()
        params = {
            'uuid': document.uuid,
            'images': self._encode_document_value('images', document.images),
            'image_count': document.image_count,
            'client_id': document.client_id,
            'client_name': document.client_name,
            'site_name': document.site_name,
            'ocr_text': document.ocr_text,
            'classification_method': document.classification_method.value,
            'confidence_score': document.confidence_score,
            'reasoning': document.reasoning,
            'status': document.status.value,
            'api_cost_usd': document.api_cost_usd,
            'processing_time_ms': document.processing_time_ms,
            'uploaded_by': document.uploaded_by,
            'work_date': document.work_date,
            'work_type': document.work_type,
            'created_at': now,
            'updated_at': now,
        }
        columns = ", ".join(params)
        placeholders = ", ".join(f":{key}" for key in params)

        try:
            with self._write_lock, self._connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO documents ({columns}) VALUES ({placeholders})", params
                )
                document_id = cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceError("create document", str(e))

        logger.debug(f"Document created: id={document_id} uuid={document.uuid}")
        return self.get_document_by_id(document_id)

    def update_document(self, document_id: int, **fields: Any) -> int:
        """
        Update document columns.

        Args:
            document_id: Document to update.
            **fields: Columns from DOCUMENT_UPDATABLE_FIELDS.

        Returns:
            Number of affected rows.
        """
        unknown = set(fields) - DOCUMENT_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update document fields: {sorted(unknown)}")
        if not fields:
            return 0

        params = {key: self._encode_document_value(key, value) for key, value in fields.items()}
        assignments = [f"{key} = :{key}" for key in params]
        if 'images' in fields:
            params['image_count'] = len(fields['images'])
            assignments.append("image_count = :image_count")
        params.update({'id': document_id, 'updated_at': _now()})

        sql = f"UPDATE documents SET {', '.join(assignments)}, updated_at = :updated_at WHERE id = :id"
        try:
            with self._write_lock, self._connect() as conn:
                affected = conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            raise PersistenceError("update document", str(e))

        logger.debug(f"Document updated: id={document_id} fields={sorted(fields)}")
        return affected

    def add_api_cost(self, document_id: int, cost_usd: float) -> None:
        """Add to a document's accumulated API cost."""
        try:
            with self._write_lock, self._connect() as conn:
                conn.execute(
                    "UPDATE documents SET api_cost_usd = api_cost_usd + ?, updated_at = ? WHERE id = ?",
                    (cost_usd, _now(), document_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError("add api cost", str(e))

    def append_images(self, document_id: int, descriptors: List[ImageDescriptor]) -> int:
        """
        Append image descriptors to a document in one locked read-modify-write.

        Returns:
            The document's new image count.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            PersistenceError: If the document is soft-deleted.
        """
        try:
            with self._write_lock, self._connect() as conn:
                row = conn.execute(
                    "SELECT images, status FROM documents WHERE id = ?", (document_id,)
                ).fetchone()
                if row is None:
                    raise DocumentNotFoundError(document_id)
                if row['status'] == DocumentStatus.DELETED.value:
                    raise PersistenceError("append images", f"document {document_id} is deleted")

                images = json.loads(row['images']) + [d.to_dict() for d in descriptors]
                conn.execute(
                    "UPDATE documents SET images = ?, image_count = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(images, ensure_ascii=False), len(images), _now(), document_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError("append images", str(e))

        logger.debug(f"Appended {len(descriptors)} images to document {document_id}")
        return len(images)

    def get_document_by_id(self, document_id: int) -> Optional[Document]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("get document by id", str(e))
        return self._row_to_document(row) if row else None

    def get_document_by_uuid(self, uuid: str) -> Optional[Document]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM documents WHERE uuid = ?", (uuid,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("get document by uuid", str(e))
        return self._row_to_document(row) if row else None

    def require_document(self, document_id: int) -> Document:
        """Like get_document_by_id but raises DocumentNotFoundError."""
        document = self.get_document_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(
        self,
        status: Optional[DocumentStatus] = None,
        client_id: Optional[int] = None,
        limit: Optional[int] = None
    ) -> List[Document]:
        """
        List documents, newest first.

        Deleted documents are only returned when status=DELETED is asked for.
        """
        conditions = []
        params: List[Any] = []

        if status is None:
            conditions.append("status != ?")
            params.append(DocumentStatus.DELETED.value)
        else:
            conditions.append("status = ?")
            params.append(DocumentStatus(status).value)

        if client_id is not None:
            conditions.append("client_id = ?")
            params.append(client_id)

        sql = "SELECT * FROM documents WHERE " + " AND ".join(conditions)
        sql += " ORDER BY id DESC"
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("list documents", str(e))

        return [self._row_to_document(row) for row in rows]

    def soft_delete_document(self, document_id: int) -> int:
        """Move a document to the deleted state."""
        return self.update_document(document_id, status=DocumentStatus.DELETED)

    def restore_document(self, document_id: int) -> int:
        """
        Bring a soft-deleted document back.

        The status is derived from the stored classification: classified
        when a client is assigned, failed after an error, otherwise
        unclassified.
        """
        try:
            with self._write_lock, self._connect() as conn:
                affected = conn.execute(
                    """
                    UPDATE documents SET
                        status = CASE
                            WHEN client_id IS NOT NULL THEN ?
                            WHEN classification_method = ? THEN ?
                            ELSE ?
                        END,
                        updated_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (DocumentStatus.CLASSIFIED.value,
                     ClassificationMethod.ERROR.value, DocumentStatus.FAILED.value,
                     DocumentStatus.UNCLASSIFIED.value,
                     _now(), document_id, DocumentStatus.DELETED.value),
                ).rowcount
        except sqlite3.Error as e:
            raise PersistenceError("restore document", str(e))
        return affected

    def purge_document(self, document_id: int) -> int:
        """
        Physically remove a soft-deleted document and its feedback rows.

        Documents that are not in the deleted state are left untouched.
        """
        try:
            with self._write_lock, self._connect() as conn:
                row = conn.execute(
                    "SELECT id FROM documents WHERE id = ? AND status = ?",
                    (document_id, DocumentStatus.DELETED.value),
                ).fetchone()
                if row is None:
                    return 0
                conn.execute(
                    "DELETE FROM classification_feedback WHERE document_id = ?", (document_id,)
                )
                affected = conn.execute(
                    "DELETE FROM documents WHERE id = ?", (document_id,)
                ).rowcount
        except sqlite3.Error as e:
            raise PersistenceError("purge document", str(e))

        logger.warning(f"Document permanently deleted: id={document_id}")
        return affected

    def get_document_statistics(self) -> Dict[str, Any]:
        """
        Aggregate counts, confidence, latency and cost over live documents.

        Returns:
            Dictionary with total, by_status, by_method, avg_confidence,
            avg_processing_time_ms and total_api_cost_usd.
        """
        live = "status != 'deleted'"
        try:
            with self._connect() as conn:
                totals = conn.execute(f"""
                    SELECT COUNT(*) AS total,
                           AVG(confidence_score) AS avg_confidence,
                           AVG(processing_time_ms) AS avg_processing_time_ms,
                           COALESCE(SUM(api_cost_usd), 0) AS total_api_cost_usd
                    FROM documents WHERE {live}
                """).fetchone()
                by_status = conn.execute(f"""
                    SELECT status, COUNT(*) AS n FROM documents
                    WHERE {live} GROUP BY status
                """).fetchall()
                by_method = conn.execute(f"""
                    SELECT classification_method, COUNT(*) AS n FROM documents
                    WHERE {live} GROUP BY classification_method
                """).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("document statistics", str(e))

        return {
            'total': totals['total'],
            'avg_confidence': totals['avg_confidence'],
            'avg_processing_time_ms': totals['avg_processing_time_ms'],
            'total_api_cost_usd': totals['total_api_cost_usd'],
            'by_status': {row['status']: row['n'] for row in by_status},
            'by_method': {row['classification_method']: row['n'] for row in by_method},
        }

    # =========================================================================
    # FEEDBACK
    # =========================================================================

    def insert_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        """Store one predicted-vs-actual comparison."""
        created_at = record.created_at or _now()
        try:
            with self._write_lock, self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO classification_feedback
                        (document_id, predicted_client_id, actual_client_id,
                         is_correct, corrected_by, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (record.document_id, record.predicted_client_id, record.actual_client_id,
                     1 if record.is_correct else 0, record.corrected_by, created_at),
                )
                record.id = cursor.lastrowid
        except sqlite3.Error as e:
            raise PersistenceError("insert feedback", str(e))

        record.created_at = created_at
        return record

    def list_feedback(self, document_id: Optional[int] = None) -> List[FeedbackRecord]:
        sql = "SELECT * FROM classification_feedback"
        params: List[Any] = []
        if document_id is not None:
            sql += " WHERE document_id = ?"
            params.append(document_id)
        sql += " ORDER BY id ASC"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("list feedback", str(e))

        return [
            FeedbackRecord(
                id=row['id'],
                document_id=row['document_id'],
                predicted_client_id=row['predicted_client_id'],
                actual_client_id=row['actual_client_id'],
                is_correct=bool(row['is_correct']),
                corrected_by=row['corrected_by'],
                created_at=row['created_at'],
            )
            for row in rows
        ]

    def close(self) -> None:
        """Close any open database connections."""
        # Connections are opened and closed per operation.
        pass
