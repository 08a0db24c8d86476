from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from PIL import Image

from ytgenius.prompts import GenerationRequest


@dataclass(frozen=True)
class GeneratedImage:
    image: Image.Image
    prompt_used: str
    provider: str
    model: str
    seed: int | None
    raw_metadata: dict[str, Any]


class ImageProvider(Protocol):
    name: str

    async def generate(self, request: GenerationRequest) -> GeneratedImage: ...
