"""
Input Handler Module.

Upload validation and image normalization/storage.
"""

from .handler import UploadHandler, UploadedFile, UploadMetadata
from .image_processor import ImageNormalizer, ImageStore, NormalizedImage, ImageMetadata

__all__ = [
    'UploadHandler',
    'UploadedFile',
    'UploadMetadata',
    'ImageNormalizer',
    'ImageStore',
    'NormalizedImage',
    'ImageMetadata',
]
