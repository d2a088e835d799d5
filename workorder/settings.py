"""
Typed Settings Module.

Each pipeline component receives one of these settings objects in its
constructor. `from_config()` reads the values from settings.yaml through
the configuration manager; tests and embedders can build them directly.

Defaults below are the documented defaults of the system and match
config/settings.yaml.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from config import get_config


@dataclass
class UploadSettings:
    """Limits applied to incoming uploads before any image work."""
    allowed_mime_types: List[str] = field(
        default_factory=lambda: ["image/jpeg", "image/jpg", "image/png", "image/webp"]
    )
    allowed_extensions: List[str] = field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".webp"]
    )
    max_file_size_mb: float = 10
    max_files_per_request: int = 5

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @classmethod
    def from_config(cls) -> "UploadSettings":
        defaults = cls()
        return cls(
            allowed_mime_types=get_config("upload.allowed_mime_types", defaults.allowed_mime_types),
            allowed_extensions=get_config("upload.allowed_extensions", defaults.allowed_extensions),
            max_file_size_mb=get_config("upload.max_file_size_mb", defaults.max_file_size_mb),
            max_files_per_request=get_config(
                "upload.max_files_per_request", defaults.max_files_per_request
            ),
        )


@dataclass
class ImageSettings:
    """
    Sizes and encodings for the three normalized artifacts.

    Attributes:
        max_width: Main image bounding box width (never upscaled).
        max_height: Main image bounding box height (never upscaled).
        quality: Encoder quality for the main image (1-100).
        format: Main image format: jpeg, png or webp.
        thumbnail_width: Square thumbnail width (cover-fit).
        thumbnail_height: Square thumbnail height (cover-fit).
        thumbnail_quality: JPEG quality for thumbnails.
        ocr_height: Target height of the OCR variant.
        storage_root: Directory the artifacts are written under.
    """
    max_width: int = 2048
    max_height: int = 2048
    quality: int = 85
    format: str = "jpeg"
    thumbnail_width: int = 400
    thumbnail_height: int = 400
    thumbnail_quality: int = 80
    ocr_height: int = 2000
    storage_root: str = "storage/work_orders"

    @classmethod
    def from_config(cls) -> "ImageSettings":
        defaults = cls()
        return cls(
            max_width=get_config("image.main.max_width", defaults.max_width),
            max_height=get_config("image.main.max_height", defaults.max_height),
            quality=get_config("image.main.quality", defaults.quality),
            format=get_config("image.main.format", defaults.format),
            thumbnail_width=get_config("image.thumbnail.width", defaults.thumbnail_width),
            thumbnail_height=get_config("image.thumbnail.height", defaults.thumbnail_height),
            thumbnail_quality=get_config("image.thumbnail.quality", defaults.thumbnail_quality),
            ocr_height=get_config("image.ocr.height", defaults.ocr_height),
            storage_root=get_config("paths.storage_root", defaults.storage_root),
        )


@dataclass
class OCRSettings:
    """
    Tesseract parameters and the extraction deadline.

    `timeout_seconds` bounds both the wait for the shared recognition
    context and the recognition call. None disables the deadline.
    """
    language: str = "kor+eng"
    psm: int = 3
    oem: int = 3
    extra_config: str = ""
    timeout_seconds: Optional[float] = 30.0
    debug: bool = False

    @classmethod
    def from_config(cls) -> "OCRSettings":
        defaults = cls()
        return cls(
            language=get_config("ocr.tesseract.lang", defaults.language),
            psm=get_config("ocr.tesseract.psm", defaults.psm),
            oem=get_config("ocr.tesseract.oem", defaults.oem),
            extra_config=get_config("ocr.tesseract.config", defaults.extra_config),
            timeout_seconds=get_config("ocr.timeout_seconds", defaults.timeout_seconds),
            debug=get_config("ocr.debug", defaults.debug),
        )


@dataclass
class ClassificationSettings:
    """
    Thresholds of the staged classifier.

    Attributes:
        auto_accept_threshold: A stage result at or above this confidence
            is accepted without escalating (inclusive comparison).
        candidate_threshold: Minimum confidence for best-candidate
            suggestions shown to operators.
        max_candidates: Number of scored alternatives kept per attempt.
    """
    auto_accept_threshold: float = 0.8
    candidate_threshold: float = 0.7
    max_candidates: int = 5

    @classmethod
    def from_config(cls) -> "ClassificationSettings":
        defaults = cls()
        return cls(
            auto_accept_threshold=get_config(
                "classification.auto_accept_threshold", defaults.auto_accept_threshold
            ),
            candidate_threshold=get_config(
                "classification.candidate_threshold", defaults.candidate_threshold
            ),
            max_candidates=get_config("classification.max_candidates", defaults.max_candidates),
        )


@dataclass
class AISettings:
    """OpenAI-compatible provider settings and token pricing (USD per token)."""
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    text_model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o"
    max_tokens: int = 1000
    temperature: float = 0.3
    timeout_seconds: float = 60.0
    # SDK retries multiply the per-request deadline; 0 keeps timeout_seconds the stage limit
    max_retries: int = 0
    input_cost_per_token: float = 0.000005
    output_cost_per_token: float = 0.000015

    @classmethod
    def from_config(cls) -> "AISettings":
        defaults = cls()
        key_env = get_config("ai.api_key_env", "OPENAI_API_KEY")
        url_env = get_config("ai.base_url_env", "OPENAI_BASE_URL")
        return cls(
            api_key=os.environ.get(key_env),
            base_url=os.environ.get(url_env) or None,
            text_model=get_config("ai.text_model", defaults.text_model),
            vision_model=get_config("ai.vision_model", defaults.vision_model),
            max_tokens=get_config("ai.max_tokens", defaults.max_tokens),
            temperature=get_config("ai.temperature", defaults.temperature),
            timeout_seconds=get_config("ai.timeout_seconds", defaults.timeout_seconds),
            max_retries=get_config("ai.max_retries", defaults.max_retries),
            input_cost_per_token=get_config(
                "ai.pricing.input_per_token", defaults.input_cost_per_token
            ),
            output_cost_per_token=get_config(
                "ai.pricing.output_per_token", defaults.output_cost_per_token
            ),
        )


@dataclass
class PipelineSettings:
    """Orchestrator deadlines and concurrency."""
    normalization_timeout_seconds: Optional[float] = 10.0
    max_workers: int = 4
    database_path: str = "storage/work_orders.db"

    @classmethod
    def from_config(cls) -> "PipelineSettings":
        defaults = cls()
        return cls(
            normalization_timeout_seconds=get_config(
                "pipeline.normalization_timeout_seconds",
                defaults.normalization_timeout_seconds,
            ),
            max_workers=get_config("pipeline.max_workers", defaults.max_workers),
            database_path=get_config("paths.database", defaults.database_path),
        )


__all__ = [
    'UploadSettings',
    'ImageSettings',
    'OCRSettings',
    'ClassificationSettings',
    'AISettings',
    'PipelineSettings',
]
