"""
Pytest configuration and shared fakes.

Environment is set before any project import so `config.settings` picks it up.
"""
import os
import sys
from io import BytesIO
from pathlib import Path

os.environ.setdefault("API_KEY", "test-key")
os.environ.setdefault("PUBLIC_BASE_URL", "https://bot.test")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
for _name in ("OPENAI_API_KEY", "AZURE_OPENAI_API_KEY", "TWILIO_STYLE_TEMPLATE_SID", "OVERLAY_MASK_URL", "NGROK_URL"):
    os.environ[_name] = ""

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from PIL import Image

from errors import ConfigurationError, StoreError, StoreErrorKind
from image_generation import GeneratedImage
from storage import LocalBlobStorage
from ttl_store import TTLStore


def make_png(size=(4, 4), color=(200, 30, 30, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryDocumentStore:
    """Same contract as db.MongoDocumentStore, backed by dicts."""

    def __init__(self):
        self.containers = {}
        self.calls = []
        self.fail_deletes = False

    async def resolve_or_create_container(self, name):
        self.calls.append(("container", name))
        return self.containers.setdefault(name, {})

    async def resolve_or_create_collection(self, container, name):
        self.calls.append(("collection", name))
        return container.setdefault(name, {})

    async def get_item(self, collection, key):
        self.calls.append(("get", key))
        if key not in collection:
            raise StoreError(StoreErrorKind.NOT_FOUND)
        return dict(collection[key])

    async def update_item(self, collection, key, data):
        self.calls.append(("update", key))
        if key not in collection:
            raise StoreError(StoreErrorKind.NOT_FOUND)
        collection[key] = dict(data)

    async def create_item(self, collection, key, data):
        self.calls.append(("create", key))
        if key in collection:
            raise StoreError(StoreErrorKind.CONFLICT)
        collection[key] = dict(data)

    async def delete_item(self, collection, key):
        self.calls.append(("delete", key))
        if self.fail_deletes:
            raise StoreError(StoreErrorKind.TRANSIENT, "store unreachable")
        if key not in collection:
            raise StoreError(StoreErrorKind.NOT_FOUND)
        del collection[key]

    def raw(self, key, container="aivr", collection="aivr_storage"):
        return self.containers.get(container, {}).get(collection, {}).get(key)


class FakeMessenger:
    def __init__(self, media_bytes: bytes = b"", media_type: str = "image/jpeg"):
        self.sent = []
        self.templates = []
        self.downloads = []
        self.media_bytes = media_bytes or make_png()
        self.media_type = media_type
        self.error = None
        self._n = 0

    def _next_sid(self) -> str:
        self._n += 1
        return f"SM{self._n:04d}"

    async def send_message(self, to, body, media_urls=None, status_callback=None):
        if self.error:
            raise self.error
        sid = self._next_sid()
        self.sent.append({"sid": sid, "to": to, "body": body, "media_urls": list(media_urls or []), "status_callback": status_callback})
        return sid

    async def send_template(self, to, content_sid, variables=None, status_callback=None):
        sid = self._next_sid()
        self.templates.append({"sid": sid, "to": to, "content_sid": content_sid})
        return sid

    async def download_media(self, media_url):
        self.downloads.append(media_url)
        return self.media_bytes, self.media_type

    def bodies(self):
        return [m["body"] for m in self.sent]

    def media_messages(self):
        return [m for m in self.sent if m["media_urls"]]


class FakeGenerator:
    def __init__(self):
        self.generate_calls = []
        self.transform_calls = []
        self.error = None

    async def generate(self, prompt):
        self.generate_calls.append(prompt)
        if self.error:
            raise self.error
        return GeneratedImage(data=make_png())

    async def transform(self, image, instruction, content_type="image/png"):
        self.transform_calls.append({"image": image, "instruction": instruction, "content_type": content_type})
        if self.error:
            raise self.error
        return GeneratedImage(data=make_png(color=(10, 200, 10, 255)))

    async def finalize(self, result):
        return result.data, result.content_type


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def doc_store():
    return InMemoryDocumentStore()


@pytest.fixture
def ttl_store(doc_store, clock):
    return TTLStore(doc_store, "aivr", "aivr_storage", clock=clock)


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStorage(str(tmp_path / "media"), "https://bot.test")


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def bot(doc_store, blobs, messenger, generator, clock):
    from main import build_context

    return build_context(
        document_store=doc_store,
        blobs=blobs,
        messenger=messenger,
        generator=generator,
        clock=clock,
        api_key="test-key",
    )


@pytest.fixture
def unconfigured():
    return ConfigurationError("No API key configured")
