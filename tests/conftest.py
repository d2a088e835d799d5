"""
Shared fixtures: Pillow-made images, a fake OCR backend, a fake OpenAI
client and a temporary SQLite database.
"""

import io
import json
import threading
import time
from types import SimpleNamespace

import pytest
from PIL import Image

from workorder.classification import ClassificationEngine
from workorder.input_handler import ImageNormalizer, ImageStore, UploadedFile, UploadHandler
from workorder.model_inference import AIClassifier
from workorder.ocr_engine import OCREngine, OCRResult
from workorder.pipeline import IngestionOrchestrator, Notifier
from workorder.settings import (
    AISettings,
    ClassificationSettings,
    ImageSettings,
    OCRSettings,
    PipelineSettings,
    UploadSettings,
)
from workorder.storage import DatabaseHandler, Entity, EntityDirectory


def make_image_bytes(width=800, height=600, fmt="JPEG", color=(220, 220, 220), mode="RGB", **save_options):
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_options)
    return buffer.getvalue()


def make_upload(filename="order.jpg", **kwargs):
    mime = "image/png" if filename.endswith(".png") else "image/jpeg"
    fmt = "PNG" if filename.endswith(".png") else "JPEG"
    return UploadedFile(filename=filename, content=make_image_bytes(fmt=fmt, **kwargs), mime_type=mime)


def ai_reply(client_code=None, client_name=None, confidence=0.9, reasoning="Company name on header",
             work_date=None, work_type=None):
    return json.dumps({
        "clientName": client_name,
        "clientCode": client_code,
        "workDate": work_date,
        "workType": work_type,
        "notes": None,
        "confidence": confidence,
        "reasoning": reasoning,
    })


class FakeOCRBackend:
    """Records call intervals so tests can check the engine serializes calls."""

    name = "fake"

    def __init__(self, text="", delay=0.0, error=None):
        self.text = text
        self.delay = delay
        self.error = error
        self.intervals = []
        self.active = 0
        self.max_active = 0
        self.closed = False
        self._guard = threading.Lock()

    def extract(self, image, timeout=None):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        started = time.monotonic()
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return OCRResult(
                raw_text=self.text,
                confidence=91.5,
                word_count=len(self.text.split()),
                line_count=len(self.text.splitlines()),
                engine=self.name,
            )
        finally:
            with self._guard:
                self.active -= 1
                self.intervals.append((started, time.monotonic()))

    def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self):
        self.responses = []
        self.calls = []

    def queue(self, content, prompt_tokens=1000, completion_tokens=200):
        self.responses.append(SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
        ))

    def queue_error(self, error):
        self.responses.append(error)

    def queue_response(self, response):
        self.responses.append(response)

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise RuntimeError("no fake response queued")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeOpenAI:
    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def notify(self, event, document, client_name=None):
        self.events.append((event, document.id, client_name))


@pytest.fixture
def db(tmp_path):
    return DatabaseHandler(str(tmp_path / "test.db"))


@pytest.fixture
def directory(db):
    return EntityDirectory(db)


@pytest.fixture
def entities(directory):
    abc = directory.create(Entity(code="ABC", name="ABC Corp", keywords=["ABC", "ABC Corp"], priority=10))
    xyz = directory.create(Entity(
        code="XYZ",
        name="XYZ Industrial",
        keywords=["XYZ", "엑스와이지", "XYZ Industrial"],
        priority=20,
    ))
    return {"ABC": abc, "XYZ": xyz}


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def ai_classifier(fake_openai):
    return AIClassifier(AISettings(api_key="test-key"), client=fake_openai)


@pytest.fixture
def classification_engine(directory, ai_classifier):
    return ClassificationEngine(directory, ai_classifier, ClassificationSettings())


@pytest.fixture
def ocr_backend():
    return FakeOCRBackend()


@pytest.fixture
def ocr_engine(ocr_backend):
    return OCREngine(OCRSettings(timeout_seconds=5), backend_factory=lambda: ocr_backend)


@pytest.fixture
def image_settings(tmp_path):
    return ImageSettings(storage_root=str(tmp_path / "images"))


@pytest.fixture
def normalizer(image_settings):
    return ImageNormalizer(image_settings)


@pytest.fixture
def store(image_settings, normalizer):
    return ImageStore(image_settings.storage_root, normalizer.extension)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(tmp_path, db, normalizer, store, ocr_engine, classification_engine, notifier):
    return IngestionOrchestrator(
        db=db,
        upload_handler=UploadHandler(UploadSettings()),
        normalizer=normalizer,
        store=store,
        ocr_engine=ocr_engine,
        classifier=classification_engine,
        notifier=notifier,
        settings=PipelineSettings(database_path=str(tmp_path / "test.db")),
    )
