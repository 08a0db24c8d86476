"""Pytest configuration and shared fixtures for ytgenius tests."""

import io
import os
import tempfile
from pathlib import Path

import pytest
from PIL import Image

# Keep the module-level store of the API away from the working tree.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="ytgenius-test-"))

from ytgenius.providers.base import GeneratedImage  # noqa: E402
from ytgenius.storage import ProjectStore  # noqa: E402


def make_image_bytes(color=(200, 30, 30), size=(16, 9), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeProvider:
    """Records requests and answers with a solid-color image."""

    name = "fake"

    def __init__(self, fail: Exception | None = None) -> None:
        self.requests = []
        self.fail = fail

    async def generate(self, request):
        self.requests.append(request)
        if self.fail is not None:
            raise self.fail
        return GeneratedImage(
            image=Image.new("RGB", (32, 18), (10, 120, 200)),
            prompt_used=request.prompt_text(),
            provider=self.name,
            model="fake-image-model",
            seed=None,
            raw_metadata={"mime_type": "image/png"},
        )


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes(color=(0, 200, 0), fmt="JPEG")


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    return ProjectStore(root_dir=tmp_path / "data")


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def mpo_bytes() -> bytes:
    # Two-frame multi-picture JPEG, as written by many phone cameras.
    frames = [Image.new("RGB", (16, 9), color) for color in ((90, 90, 90), (30, 60, 90))]
    buf = io.BytesIO()
    frames[0].save(buf, format="MPO", save_all=True, append_images=frames[1:])
    return buf.getvalue()
