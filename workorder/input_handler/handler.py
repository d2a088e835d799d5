"""
Main Input Handler Module.

This module provides the UploadHandler class that checks incoming
uploads against the configured type, size and count limits before any
image work is done.

Usage:
    from workorder.input_handler import UploadHandler, UploadedFile

    handler = UploadHandler()
    files = handler.validate([UploadedFile("order.jpg", data, "image/jpeg")])

Classes:
    UploadedFile: One binary payload of an upload request
    UploadMetadata: Uploader identity and optional free-text fields
    UploadHandler: Validation of upload requests
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from workorder.settings import UploadSettings
from workorder.utils.logger import get_logger
from workorder.utils.helpers import format_file_size, get_file_extension
from workorder.utils.exceptions import UploadValidationError


# Initialize module logger
logger = get_logger(__name__)


# Extension guess used by from_path() when the caller gives no MIME type
MIME_BY_EXTENSION = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.webp': 'image/webp',
}


@dataclass
class UploadedFile:
    """
    One uploaded image payload.

    Attributes:
        filename: Declared filename
        content: Raw bytes
        mime_type: Declared MIME type
    """
    filename: str
    content: bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, filepath: Union[str, Path], mime_type: Optional[str] = None) -> "UploadedFile":
        """Read a local file as an upload (CLI and tests)."""
        path = Path(filepath)
        if mime_type is None:
            mime_type = MIME_BY_EXTENSION.get(get_file_extension(path), 'application/octet-stream')
        return cls(filename=path.name, content=path.read_bytes(), mime_type=mime_type)

    def __repr__(self) -> str:
        return f"UploadedFile(filename='{self.filename}', mime='{self.mime_type}', size={self.size})"


@dataclass
class UploadMetadata:
    """
    Non-image fields of an upload request.

    Attributes:
        uploaded_by: Uploader identity
        client_name: Optional free-text client/vendor name (manual path)
        site_name: Optional free-text site name
    """
    uploaded_by: Optional[str] = None
    client_name: Optional[str] = None
    site_name: Optional[str] = None


class UploadHandler:
    """
    Validates upload requests.

    Attributes:
        settings: UploadSettings with allowed types and limits

    Example:
        >>> handler = UploadHandler()
        >>> handler.validate(files)
    """

    def __init__(self, settings: Optional[UploadSettings] = None) -> None:
        """
        Initialize the UploadHandler.

        Args:
            settings: Explicit limits. If not provided, settings are
                     loaded from settings.yaml.
        """
        self.settings = settings or UploadSettings.from_config()
        self.allowed_mime_types = {m.lower() for m in self.settings.allowed_mime_types}
        self.allowed_extensions = {e.lower() for e in self.settings.allowed_extensions}

        logger.debug(
            f"UploadHandler initialized (types={sorted(self.allowed_mime_types)}, "
            f"max_size={self.settings.max_file_size_mb}MB, "
            f"max_files={self.settings.max_files_per_request})"
        )

    def validate_file(self, upload: UploadedFile) -> UploadedFile:
        """
        Validate a single uploaded file.

        Raises:
            UploadValidationError: If type, extension or size is not allowed.
        """
        mime_type = (upload.mime_type or '').lower()
        if mime_type not in self.allowed_mime_types:
            raise UploadValidationError(upload.filename, f"Unsupported MIME type: {upload.mime_type}")

        extension = get_file_extension(upload.filename)
        if extension not in self.allowed_extensions:
            raise UploadValidationError(upload.filename, f"Unsupported file extension: {extension or '(none)'}")

        if upload.size == 0:
            raise UploadValidationError(upload.filename, "File is empty")

        if upload.size > self.settings.max_file_size_bytes:
            raise UploadValidationError(
                upload.filename,
                f"File too large: {format_file_size(upload.size)} "
                f"(limit {self.settings.max_file_size_mb}MB)"
            )

        logger.debug(f"Upload validated: {upload}")
        return upload

    def validate(self, files: Sequence[UploadedFile]) -> List[UploadedFile]:
        """
        Validate all files of one request.

        Args:
            files: Uploaded files, primary image first.

        Returns:
            The same files as a list.

        Raises:
            UploadValidationError: If the request is empty, has too many
                files, or any file is rejected.
        """
        files = list(files)

        if not files:
            raise UploadValidationError("(request)", "No files uploaded")

        if len(files) > self.settings.max_files_per_request:
            raise UploadValidationError(
                "(request)",
                f"Too many files: {len(files)} (limit {self.settings.max_files_per_request})"
            )

        for upload in files:
            self.validate_file(upload)

        return files
