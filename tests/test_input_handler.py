"""
Tests for upload validation, image normalization and artifact storage.
"""

import io
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from conftest import make_image_bytes, make_upload
from workorder.input_handler import ImageNormalizer, UploadedFile, UploadHandler
from workorder.settings import ImageSettings, UploadSettings
from workorder.utils.exceptions import ProcessingError, UploadValidationError


class TestUploadHandler:
    """Test upload limits"""

    def setup_method(self):
        self.handler = UploadHandler(UploadSettings())

    def test_accepts_supported_images(self):
        files = [make_upload("a.jpg"), make_upload("b.png")]
        assert self.handler.validate(files) == files

    def test_rejects_unsupported_mime_type(self):
        upload = UploadedFile("scan.gif", b"GIF89a", "image/gif")
        with pytest.raises(UploadValidationError) as exc:
            self.handler.validate([upload])
        assert "image/gif" in exc.value.details["reason"]

    def test_rejects_extension_mismatch(self):
        upload = UploadedFile("scan.bmp", make_image_bytes(), "image/jpeg")
        with pytest.raises(UploadValidationError):
            self.handler.validate_file(upload)

    def test_rejects_empty_file(self):
        with pytest.raises(UploadValidationError):
            self.handler.validate_file(UploadedFile("empty.jpg", b"", "image/jpeg"))

    def test_rejects_oversized_file(self):
        handler = UploadHandler(UploadSettings(max_file_size_mb=0.001))
        upload = UploadedFile("big.jpg", b"x" * 2048, "image/jpeg")
        with pytest.raises(UploadValidationError) as exc:
            handler.validate_file(upload)
        assert "too large" in exc.value.details["reason"]

    def test_rejects_empty_request(self):
        with pytest.raises(UploadValidationError):
            self.handler.validate([])

    def test_rejects_too_many_files(self):
        files = [make_upload(f"p{i}.jpg", width=32, height=32) for i in range(6)]
        with pytest.raises(UploadValidationError) as exc:
            self.handler.validate(files)
        assert "Too many files" in exc.value.details["reason"]

    def test_from_path_guesses_mime_type(self, tmp_path):
        path = tmp_path / "order.png"
        path.write_bytes(make_image_bytes(fmt="PNG"))
        upload = UploadedFile.from_path(path)
        assert upload.mime_type == "image/png"
        assert upload.filename == "order.png"
        assert upload.size == path.stat().st_size


class TestImageNormalizer:
    """Test main image, thumbnail and OCR variant generation"""

    def test_large_image_is_bounded(self, normalizer):
        result = normalizer.normalize(make_image_bytes(4000, 3000), "big.jpg")

        main = Image.open(io.BytesIO(result.main_image))
        assert main.size == (2048, 1536)
        assert main.format == "JPEG"
        assert result.metadata.original_width == 4000
        assert result.metadata.file_size == len(result.main_image)
        assert result.metadata.mime_type == "image/jpeg"

    def test_small_image_is_not_upscaled(self, normalizer):
        result = normalizer.normalize(make_image_bytes(300, 200), "small.jpg")
        assert Image.open(io.BytesIO(result.main_image)).size == (300, 200)

    def test_thumbnail_is_fixed_square(self, normalizer):
        result = normalizer.normalize(make_image_bytes(1200, 500), "wide.jpg")
        thumb = Image.open(io.BytesIO(result.thumbnail))
        assert thumb.size == (400, 400)
        assert thumb.format == "JPEG"

    def test_ocr_variant_is_grayscale_png_at_target_height(self, normalizer):
        result = normalizer.normalize(make_image_bytes(3000, 4000), "tall.jpg")
        ocr = Image.open(io.BytesIO(result.ocr_variant))
        assert ocr.format == "PNG"
        assert ocr.mode == "L"
        assert ocr.height == 2000
        assert ocr.width == 1500

    def test_exif_orientation_is_applied(self, normalizer):
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 CW
        raw = make_image_bytes(600, 400, exif=exif.tobytes())

        result = normalizer.normalize(raw, "rotated.jpg")

        assert Image.open(io.BytesIO(result.main_image)).size == (400, 600)
        assert result.metadata.original_width == 400

    def test_transparency_is_composited_on_white(self, normalizer):
        raw = make_image_bytes(50, 50, fmt="PNG", color=(0, 0, 0, 0), mode="RGBA")
        main = Image.open(io.BytesIO(normalizer.normalize(raw, "alpha.png").main_image))
        assert main.mode == "RGB"
        assert all(channel > 240 for channel in main.getpixel((25, 25)))

    def test_storage_key_is_new_for_every_call(self, normalizer):
        raw = make_image_bytes(100, 100)
        first = normalizer.normalize(raw, "same.jpg")
        second = normalizer.normalize(raw, "same.jpg")
        assert first.storage_key != second.storage_key
        assert first.main_image == second.main_image

    def test_png_main_format(self, tmp_path):
        normalizer = ImageNormalizer(ImageSettings(format="png", storage_root=str(tmp_path)))
        result = normalizer.normalize(make_image_bytes(100, 100), "order.jpg")
        assert normalizer.extension == ".png"
        assert Image.open(io.BytesIO(result.main_image)).format == "PNG"

    def test_unknown_main_format_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            ImageNormalizer(ImageSettings(format="tiff", storage_root=str(tmp_path)))

    def test_corrupt_bytes_raise_processing_error(self, normalizer):
        with pytest.raises(ProcessingError) as exc:
            normalizer.normalize(b"\xff\xd8\xff\xe0 definitely not a jpeg", "broken.jpg")
        assert exc.value.details["filename"] == "broken.jpg"

    def test_empty_bytes_raise_processing_error(self, normalizer):
        with pytest.raises(ProcessingError):
            normalizer.normalize(b"", "empty.jpg")

    def test_ocr_variant_from_main_image(self, normalizer):
        result = normalizer.normalize(make_image_bytes(2500, 3500), "order.jpg")

        variant = normalizer.make_ocr_variant(result.main_image, "order.jpg")

        image = Image.open(io.BytesIO(variant))
        image.load()
        assert image.mode == "L"
        assert image.format == "PNG"


class TestImageStore:
    """Test append-only artifact storage"""

    def test_save_writes_three_artifacts(self, normalizer, store, image_settings):
        normalized = normalizer.normalize(make_image_bytes(), "order 1.jpg")

        descriptor = store.save(normalized, when=datetime(2026, 10, 8))

        folder = Path(image_settings.storage_root) / "2026" / "10"
        assert Path(descriptor.path) == folder / f"{normalized.storage_key}.jpg"
        assert Path(descriptor.thumbnail_path).name == f"{normalized.storage_key}_thumb.jpg"
        assert Path(descriptor.ocr_path).name == f"{normalized.storage_key}_ocr.png"
        for path in (descriptor.path, descriptor.thumbnail_path, descriptor.ocr_path):
            assert Path(path).is_file()
        assert descriptor.uuid == normalized.storage_key
        assert descriptor.width == normalized.metadata.width
        assert descriptor.file_size == len(normalized.main_image)

    def test_existing_artifact_is_never_overwritten(self, normalizer, store):
        normalized = normalizer.normalize(make_image_bytes(), "order.jpg")
        descriptor = store.save(normalized)
        before = Path(descriptor.path).read_bytes()

        normalized.main_image = b"replacement"
        with pytest.raises(ProcessingError):
            store.save(normalized)

        assert Path(descriptor.path).read_bytes() == before

    def test_remove_deletes_files(self, normalizer, store):
        descriptor = store.save(normalizer.normalize(make_image_bytes(), "order.jpg"))
        store.remove(descriptor)
        assert not Path(descriptor.path).exists()
        assert not Path(descriptor.thumbnail_path).exists()
        assert not Path(descriptor.ocr_path).exists()
