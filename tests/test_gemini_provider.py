"""Tests for the Gemini provider with a stubbed SDK client."""

import asyncio
import time
from types import SimpleNamespace

import pytest
from PIL import Image

from ytgenius.errors import GenerationFailedError
from ytgenius.prompts import ImageInput, build_thumbnail_request
from ytgenius.providers.gemini_provider import GeminiProvider


def _response(*parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def _text_part(text):
    return SimpleNamespace(text=text, inline_data=None)


def _image_part(data, mime="image/png"):
    return SimpleNamespace(text=None, inline_data=SimpleNamespace(mime_type=mime, data=data))


class StubModels:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def _provider(response):
    models = StubModels(response)
    client = SimpleNamespace(models=models)
    return GeminiProvider(api_key="test-key", model="test-image-model", client=client), models


@pytest.mark.asyncio
async def test_generate_returns_first_image(png_bytes):
    provider, models = _provider(_response(_text_part("Here you go"), _image_part(png_bytes)))
    request = build_thumbnail_request("a red car", aspect_ratio="9:16")

    result = await provider.generate(request)

    assert isinstance(result.image, Image.Image)
    assert result.provider == "gemini"
    assert result.model == "test-image-model"
    assert result.raw_metadata["text"] == "Here you go"
    assert result.raw_metadata["aspect_ratio"] == "9:16"
    assert "a red car" in result.prompt_used

    (call,) = models.calls
    assert call["model"] == "test-image-model"
    assert call["config"].response_modalities == ["TEXT", "IMAGE"]
    assert call["config"].image_config.aspect_ratio == "9:16"


@pytest.mark.asyncio
async def test_image_parts_become_pil_images(png_bytes, jpeg_bytes):
    provider, models = _provider(_response(_image_part(png_bytes)))
    request = build_thumbnail_request("", images=[ImageInput(jpeg_bytes, "image/jpeg")])

    await provider.generate(request)

    contents = models.calls[0]["contents"]
    assert sum(isinstance(c, Image.Image) for c in contents) == 1
    assert all(isinstance(c, (str, Image.Image)) for c in contents)


@pytest.mark.asyncio
async def test_text_only_response_fails(png_bytes):
    provider, _ = _provider(_response(_text_part("I cannot draw that")))

    with pytest.raises(GenerationFailedError):
        await provider.generate(build_thumbnail_request("anything"))


@pytest.mark.asyncio
async def test_non_image_and_corrupt_parts_are_skipped(png_bytes):
    provider, _ = _provider(
        _response(_image_part(b"{}", mime="application/json"), _image_part(b"garbage"), _image_part(png_bytes))
    )

    result = await provider.generate(build_thumbnail_request("anything"))

    assert result.image.size == (16, 9)
    assert result.raw_metadata["part_index"] == 2
    assert result.raw_metadata["candidate_index"] == 0


@pytest.mark.asyncio
async def test_image_metadata_records_position_and_finish_reason(png_bytes):
    response = _response(_text_part("intro"), _image_part(png_bytes))
    response.candidates[0].finish_reason = "STOP"
    provider, _ = _provider(response)

    result = await provider.generate(build_thumbnail_request("anything"))

    assert result.raw_metadata["mime_type"] == "image/png"
    assert result.raw_metadata["candidate_index"] == 0
    assert result.raw_metadata["part_index"] == 1
    assert result.raw_metadata["finish_reason"] == "STOP"


class SlowModels(StubModels):
    def generate_content(self, **kwargs):
        time.sleep(0.3)
        return super().generate_content(**kwargs)


@pytest.mark.asyncio
async def test_slow_sdk_call_does_not_block_event_loop(png_bytes):
    models = SlowModels(_response(_image_part(png_bytes)))
    provider = GeminiProvider(api_key="test-key", model="test-image-model", client=SimpleNamespace(models=models))
    ticks = 0

    async def ticker():
        nonlocal ticks
        while True:
            await asyncio.sleep(0.02)
            ticks += 1

    task = asyncio.create_task(ticker())
    try:
        await provider.generate(build_thumbnail_request("anything"))
    finally:
        task.cancel()

    assert len(models.calls) == 1
    assert ticks >= 3
