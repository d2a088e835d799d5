"""
Domain Records.

Typed records for clients/suppliers, documents and feedback. Keyword,
alias and contact fields are decoded once when a row is read from the
database and validated once before a row is written; callers never see
the serialized JSON columns.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


class ClassificationMethod(str, Enum):
    """Which stage produced a document's entity attribution."""
    PENDING = "pending"
    KEYWORD = "keyword"
    AI_TEXT = "ai_text"
    AI_VISION = "ai_vision"
    MANUAL = "manual"
    ERROR = "error"


class DocumentStatus(str, Enum):
    """
    Document lifecycle states.

    UNCLASSIFIED marks a pipeline that completed but whose terminal stage
    matched no entity; CLASSIFIED always carries a client_id.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    CLASSIFIED = "classified"
    UNCLASSIFIED = "unclassified"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


@dataclass
class ContactInfo:
    """Optional structured contact record of an entity."""
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["ContactInfo"]:
        if not data:
            return None
        known = {k: data.get(k) for k in ("phone", "email", "address", "contact_person")}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Entity:
    """
    A client or supplier that documents are attributed to.

    Attributes:
        id: Database identifier (None before insert).
        code: Unique code, immutable after creation.
        name: Display name.
        keywords: Ordered keywords; keyword confidence is
            matched / len(keywords), so active entities need at least one.
        aliases: Alternative spellings.
        contact_info: Optional structured contact record.
        priority: Lower sorts first.
        is_active: Soft-delete flag.
        notes: Free text.
    """
    code: str
    name: str
    keywords: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)
    contact_info: Optional[ContactInfo] = None
    priority: int = 100
    is_active: bool = True
    notes: Optional[str] = None
    id: Optional[int] = None

    def validate(self) -> None:
        """
        Check the invariants required before the entity is stored.

        Raises:
            ValueError: If code/name are blank, or an active entity has no
                keywords, or keyword/alias lists hold non-strings.
        """
        if not self.code or not self.code.strip():
            raise ValueError("Entity code must not be empty")
        if not self.name or not self.name.strip():
            raise ValueError("Entity name must not be empty")
        for label, values in (("keywords", self.keywords), ("aliases", self.aliases)):
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ValueError(f"Entity {label} must be a list of strings")
        if self.is_active and not [k for k in self.keywords if k.strip()]:
            raise ValueError(f"Active entity '{self.code}' needs at least one keyword")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'code': self.code,
            'name': self.name,
            'keywords': list(self.keywords),
            'aliases': list(self.aliases),
            'contact_info': self.contact_info.to_dict() if self.contact_info else None,
            'priority': self.priority,
            'is_active': self.is_active,
            'notes': self.notes,
        }


@dataclass
class ImageDescriptor:
    """One stored image of a document (main artifact plus derivatives)."""
    path: str
    uuid: str
    filename: str
    file_size: int
    mime_type: str
    width: int
    height: int
    thumbnail_path: Optional[str] = None
    ocr_path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageDescriptor":
        return cls(
            path=data['path'],
            uuid=data.get('uuid', ''),
            filename=data.get('filename', ''),
            file_size=int(data.get('file_size', 0)),
            mime_type=data.get('mime_type', ''),
            width=int(data.get('width', 0)),
            height=int(data.get('height', 0)),
            thumbnail_path=data.get('thumbnail_path'),
            ocr_path=data.get('ocr_path'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Document:
    """
    A photographed work order / purchase order.

    The first entry of `images` is the primary representation; OCR and
    vision classification only look at it.
    """
    uuid: str
    images: List[ImageDescriptor] = field(default_factory=list)
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    site_name: Optional[str] = None
    ocr_text: Optional[str] = None
    classification_method: ClassificationMethod = ClassificationMethod.PENDING
    confidence_score: Optional[float] = None
    reasoning: Optional[str] = None
    status: DocumentStatus = DocumentStatus.PENDING
    api_cost_usd: float = 0.0
    processing_time_ms: int = 0
    uploaded_by: Optional[str] = None
    work_date: Optional[str] = None
    work_type: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    id: Optional[int] = None

    @property
    def primary_image(self) -> Optional[ImageDescriptor]:
        return self.images[0] if self.images else None

    @property
    def image_count(self) -> int:
        return len(self.images)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'uuid': self.uuid,
            'images': [img.to_dict() for img in self.images],
            'image_count': self.image_count,
            'client_id': self.client_id,
            'client_name': self.client_name,
            'site_name': self.site_name,
            'ocr_text': self.ocr_text,
            'classification_method': self.classification_method.value,
            'confidence_score': self.confidence_score,
            'reasoning': self.reasoning,
            'status': self.status.value,
            'api_cost_usd': self.api_cost_usd,
            'processing_time_ms': self.processing_time_ms,
            'uploaded_by': self.uploaded_by,
            'work_date': self.work_date,
            'work_type': self.work_type,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@dataclass
class FeedbackRecord:
    """Predicted vs. operator-corrected entity for one document."""
    document_id: int
    predicted_client_id: Optional[int]
    actual_client_id: int
    is_correct: bool
    corrected_by: Optional[str] = None
    created_at: Optional[str] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
