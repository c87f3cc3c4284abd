import asyncio
from io import BytesIO

import pytest
from PIL import Image

from gallery_media.config import Settings
from gallery_media.models.asset import DerivedKind
from gallery_media.models.derive import TransformRequest, TransformResponse
from gallery_media.services.readiness import InMemoryReadinessStore
from gallery_media.services.storage import LocalObjectStorage


def make_image(width: int, height: int, color=(200, 30, 30), fmt: str = "JPEG") -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = (*color, 255) if mode == "RGBA" else color
    buffer = BytesIO()
    Image.new(mode, (width, height), fill).save(buffer, format=fmt)
    return buffer.getvalue()


def image_size(data: bytes) -> tuple[int, int]:
    with Image.open(BytesIO(data)) as img:
        return img.size


class FakeInvoker:
    """Records calls and lets each unit succeed, raise or stall."""

    def __init__(self, failures: dict | None = None, delays: dict | None = None):
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[tuple[DerivedKind, TransformRequest]] = []
        self.completed: list[DerivedKind] = []

    async def invoke(self, kind: DerivedKind, request: TransformRequest) -> TransformResponse:
        self.calls.append((kind, request))
        if kind in self.delays:
            await asyncio.sleep(self.delays[kind])
        if kind in self.failures:
            raise self.failures[kind]
        self.completed.append(kind)
        return TransformResponse(success=True)


@pytest.fixture
def app_settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        storage_dir=str(tmp_path / "objects"),
        cdn_domain="https://cdn.example.test",
        unit_timeout_seconds=5.0,
        join_timeout_seconds=10.0,
        readiness_interval_ms=0,
    )


@pytest.fixture
def storage(app_settings) -> LocalObjectStorage:
    return LocalObjectStorage(app_settings.storage_path)


@pytest.fixture
def readiness() -> InMemoryReadinessStore:
    return InMemoryReadinessStore()
