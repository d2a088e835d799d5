"""
Image Processor Module.

This module turns a raw photo upload into three artifacts:
    - Main image (orientation fixed, bounded size, re-encoded)
    - Thumbnail (fixed square, cover-fit)
    - OCR variant (fixed height, grayscale, contrast-normalized, sharpened)

and writes them to disk append-only by a freshly generated key.

Supports: JPG, JPEG, PNG, WEBP

Author: ML Engineering Team
"""

import io
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from PIL import Image, ImageFilter, ImageOps

from workorder.settings import ImageSettings
from workorder.storage.models import ImageDescriptor
from workorder.utils.logger import get_logger
from workorder.utils.helpers import ensure_directory, safe_filename
from workorder.utils.exceptions import ProcessingError

# Initialize module logger
logger = get_logger(__name__)


# Pillow format name, MIME type and file extension per configured format
FORMATS = {
    'jpeg': ('JPEG', 'image/jpeg', '.jpg'),
    'jpg': ('JPEG', 'image/jpeg', '.jpg'),
    'png': ('PNG', 'image/png', '.png'),
    'webp': ('WEBP', 'image/webp', '.webp'),
}


@dataclass
class ImageMetadata:
    """
    Content metadata of a normalized upload.

    Attributes:
        original_width: Width after orientation fix, before resizing
        original_height: Height after orientation fix, before resizing
        width: Main image width
        height: Main image height
        file_size: Main image size in bytes
        mime_type: MIME type of the main image encoding
        original_format: Format Pillow detected in the upload
    """
    original_width: int
    original_height: int
    width: int
    height: int
    file_size: int
    mime_type: str
    original_format: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'original_width': self.original_width,
            'original_height': self.original_height,
            'width': self.width,
            'height': self.height,
            'file_size': self.file_size,
            'mime_type': self.mime_type,
            'original_format': self.original_format,
        }


@dataclass
class NormalizedImage:
    """The three encoded artifacts of one upload plus its storage key."""
    filename: str
    storage_key: str
    main_image: bytes
    thumbnail: bytes
    ocr_variant: bytes
    metadata: ImageMetadata

    def __repr__(self) -> str:
        return (
            f"NormalizedImage(filename='{self.filename}', key='{self.storage_key}', "
            f"size={self.metadata.width}x{self.metadata.height})"
        )


class ImageNormalizer:
    """
    Normalizer for uploaded photos.

    Output is deterministic for a given input and settings except for the
    storage key, which is a new random UUID on every call (two uploads of
    the same picture never share a key).

    Attributes:
        settings: ImageSettings with sizes, qualities and format

    Example:
        >>> normalizer = ImageNormalizer()
        >>> normalized = normalizer.normalize(raw_bytes, "order.jpg")
        >>> normalized.metadata.width <= 2048
        True
    """

    def __init__(self, settings: Optional[ImageSettings] = None) -> None:
        """Initialize the normalizer with explicit or configured settings."""
        self.settings = settings or ImageSettings.from_config()

        fmt = self.settings.format.lower()
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported main image format: {self.settings.format}")
        self._pil_format, self._mime_type, self._extension = FORMATS[fmt]

        logger.debug(
            f"ImageNormalizer initialized (max_size={self.settings.max_width}x"
            f"{self.settings.max_height}, format={self._pil_format})"
        )

    @property
    def extension(self) -> str:
        return self._extension

    def normalize(self, raw_bytes: bytes, filename: str) -> NormalizedImage:
        """
        Produce main image, thumbnail and OCR variant for one upload.

        Args:
            raw_bytes: Uploaded file content.
            filename: Declared filename (kept for display only).

        Returns:
            NormalizedImage with encoded artifacts, metadata and storage key.

        Raises:
            ProcessingError: If the bytes are not a readable image.
        """
        image = self._open(raw_bytes, filename)

        try:
            original_format = image.format

            # Step 1: Fix orientation from EXIF before any resize
            image = ImageOps.exif_transpose(image)
            original_width, original_height = image.size

            # Step 2: Main image
            main = self._resize_to_fit(self._convert_to_rgb(image))
            main_bytes = self._encode(main, self._pil_format, self.settings.quality)

            # Step 3: Thumbnail
            thumb = ImageOps.fit(
                self._convert_to_rgb(image),
                (self.settings.thumbnail_width, self.settings.thumbnail_height),
                Image.LANCZOS,
                centering=(0.5, 0.5),
            )
            thumb_bytes = self._encode(thumb, 'JPEG', self.settings.thumbnail_quality)

            # Step 4: OCR variant
            ocr_bytes = self._encode(self._prepare_for_ocr(image), 'PNG')
        except Exception as e:
            logger.error(f"Failed to normalize image {filename}: {e}")
            raise ProcessingError(filename, str(e)) from e

        metadata = ImageMetadata(
            original_width=original_width,
            original_height=original_height,
            width=main.width,
            height=main.height,
            file_size=len(main_bytes),
            mime_type=self._mime_type,
            original_format=original_format,
        )

        logger.info(
            f"Normalized image {filename}: {main.width}x{main.height} "
            f"(original: {original_width}x{original_height})"
        )

        return NormalizedImage(
            filename=filename,
            storage_key=uuid.uuid4().hex,
            main_image=main_bytes,
            thumbnail=thumb_bytes,
            ocr_variant=ocr_bytes,
            metadata=metadata,
        )

    def make_ocr_variant(self, image_bytes: bytes, filename: str = "image") -> bytes:
        """
        Build an OCR variant from already-encoded image bytes.

        Used when re-running OCR from a stored main image.

        Raises:
            ProcessingError: If the bytes are not a readable image.
        """
        image = self._open(image_bytes, filename)
        try:
            image = ImageOps.exif_transpose(image)
            return self._encode(self._prepare_for_ocr(image), 'PNG')
        except Exception as e:
            raise ProcessingError(filename, str(e)) from e

    def _open(self, raw_bytes: bytes, filename: str) -> Image.Image:
        """Decode bytes fully so truncated files fail here, not later."""
        if not raw_bytes:
            raise ProcessingError(filename, "File is empty")
        try:
            image = Image.open(io.BytesIO(raw_bytes))
            image.load()
        except Exception as e:
            logger.error(f"Failed to read image {filename}: {e}")
            raise ProcessingError(filename, str(e)) from e
        return image

    def _convert_to_rgb(self, image: Image.Image) -> Image.Image:
        """
        Convert image to RGB mode.

        Transparent pixels are composited on white rather than black.
        """
        if image.mode == 'RGB':
            return image

        if image.mode in ('RGBA', 'LA') or (image.mode == 'P' and 'transparency' in image.info):
            rgba = image.convert('RGBA')
            background = Image.new('RGB', rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[3])
            return background

        return image.convert('RGB')

    def _resize_to_fit(self, image: Image.Image) -> Image.Image:
        """Downscale into the max bounding box, keeping aspect ratio."""
        width, height = image.size

        if width <= self.settings.max_width and height <= self.settings.max_height:
            return image

        ratio = min(self.settings.max_width / width, self.settings.max_height / height)
        new_size = (max(1, int(width * ratio)), max(1, int(height * ratio)))

        logger.debug(f"Resized image from {width}x{height} to {new_size[0]}x{new_size[1]}")
        return image.resize(new_size, Image.LANCZOS)

    def _prepare_for_ocr(self, image: Image.Image) -> Image.Image:
        """Grayscale, scale to ocr_height (never up), autocontrast, sharpen."""
        gray = self._convert_to_rgb(image).convert('L')

        width, height = gray.size
        if height > self.settings.ocr_height:
            new_width = max(1, int(width * self.settings.ocr_height / height))
            gray = gray.resize((new_width, self.settings.ocr_height), Image.LANCZOS)

        gray = ImageOps.autocontrast(gray)
        return gray.filter(ImageFilter.SHARPEN)

    @staticmethod
    def _encode(image: Image.Image, pil_format: str, quality: Optional[int] = None) -> bytes:
        buffer = io.BytesIO()
        options: Dict[str, Any] = {'optimize': True}
        if quality is not None and pil_format in ('JPEG', 'WEBP'):
            options['quality'] = quality
        image.save(buffer, format=pil_format, **options)
        return buffer.getvalue()


class ImageStore:
    """
    Writes normalized artifacts under `<root>/<YYYY>/<MM>/`.

    Files are named by storage key and created exclusively, so an existing
    artifact is never overwritten.

    Example:
        >>> store = ImageStore("storage/work_orders")
        >>> descriptor = store.save(normalized)
    """

    def __init__(self, root: Optional[str] = None, extension: str = '.jpg') -> None:
        if root is None:
            root = ImageSettings.from_config().storage_root
        self.root = Path(root)
        self.extension = extension

    def target_paths(self, storage_key: str, when: Optional[datetime] = None) -> Tuple[Path, Path, Path]:
        """Main, thumbnail and OCR variant paths for a key."""
        when = when or datetime.now()
        folder = self.root / f"{when:%Y}" / f"{when:%m}"
        return (
            folder / f"{storage_key}{self.extension}",
            folder / f"{storage_key}_thumb.jpg",
            folder / f"{storage_key}_ocr.png",
        )

    def save(self, normalized: NormalizedImage, when: Optional[datetime] = None) -> ImageDescriptor:
        """
        Write all three artifacts of one normalized image.

        Either every file is written or none is left behind.

        Raises:
            ProcessingError: If any file cannot be written.
        """
        paths = self.target_paths(normalized.storage_key, when)
        payloads = (normalized.main_image, normalized.thumbnail, normalized.ocr_variant)

        written: List[Path] = []
        try:
            ensure_directory(paths[0].parent)
            for path, payload in zip(paths, payloads):
                with open(path, 'xb') as f:
                    written.append(path)
                    f.write(payload)
        except OSError as e:
            for path in written:
                path.unlink(missing_ok=True)
            logger.error(f"Failed to store {normalized.filename}: {e}")
            raise ProcessingError(normalized.filename, f"storage write failed: {e}") from e

        main_path, thumb_path, ocr_path = paths
        logger.debug(f"Stored image {normalized.storage_key} at {main_path.parent}")

        return ImageDescriptor(
            path=str(main_path),
            uuid=normalized.storage_key,
            filename=safe_filename(normalized.filename),
            file_size=normalized.metadata.file_size,
            mime_type=normalized.metadata.mime_type,
            width=normalized.metadata.width,
            height=normalized.metadata.height,
            thumbnail_path=str(thumb_path),
            ocr_path=str(ocr_path),
        )

    def remove(self, descriptor: ImageDescriptor) -> None:
        """Delete the files of a descriptor (used by purge)."""
        for path in (descriptor.path, descriptor.thumbnail_path, descriptor.ocr_path):
            if path:
                Path(path).unlink(missing_ok=True)
