from __future__ import annotations

import asyncio
import logging
from typing import Any

from PIL import Image

from ytgenius.config import settings
from ytgenius.errors import GenerationFailedError, InvalidInputError
from ytgenius.images import load_image
from ytgenius.prompts import GenerationRequest, ImagePart, TextPart
from ytgenius.providers.base import GeneratedImage

logger = logging.getLogger(__name__)


class GeminiProvider:
    name = "gemini"

    def __init__(self, api_key: str, model: str | None = None, client: Any = None) -> None:
        # Imported lazily so the app can start without the dependency installed.
        from google import genai  # type: ignore

        self._genai = genai
        self.model = model or settings.gemini_image_model
        self.client = client if client is not None else genai.Client(api_key=api_key)

    async def generate(self, request: GenerationRequest) -> GeneratedImage:
        """
        One `generate_content` call per request; the model answers with text and
        image parts and the first inline image wins.
        """
        from google.genai import types  # type: ignore

        contents = _to_contents(request)
        logger.info(
            "Generating %s with %s (%d image part(s), aspect %s)",
            request.kind,
            self.model,
            request.image_count,
            request.aspect_ratio,
        )

        # The SDK call is blocking; keep it off the event loop.
        resp = await asyncio.to_thread(
            self.client.models.generate_content,
            model=self.model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["TEXT", "IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=request.aspect_ratio),
            ),
        )

        extracted = _extract_images_from_generate_content(resp)
        if not extracted:
            raise GenerationFailedError(f"Failed to generate {request.kind} image.")

        img, meta = extracted[0]
        text = _extract_text(resp)
        if text:
            meta = meta | {"text": text}
        return GeneratedImage(
            image=img,
            prompt_used=request.prompt_text(),
            provider=self.name,
            model=self.model,
            seed=None,
            raw_metadata=meta | {"aspect_ratio": request.aspect_ratio},
        )


def _to_contents(request: GenerationRequest) -> list[Any]:
    # The google-genai SDK accepts plain strings and PIL Images in contents.
    contents: list[Any] = []
    for part in request.parts:
        if isinstance(part, TextPart):
            contents.append(part.text)
        elif isinstance(part, ImagePart):
            contents.append(load_image(part.content))
    return contents


def _extract_text(resp: Any) -> str:
    chunks: list[str] = []
    for cand in getattr(resp, "candidates", []) or []:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                chunks.append(text)
    return "\n".join(chunks).strip()


def _extract_images_from_generate_content(resp: Any) -> list[tuple[Image.Image, dict[str, Any]]]:
    """Inline image parts in response order, tagged with where they came from."""
    out: list[tuple[Image.Image, dict[str, Any]]] = []
    for cand_idx, cand in enumerate(getattr(resp, "candidates", None) or []):
        finish_reason = getattr(cand, "finish_reason", None)
        parts = getattr(getattr(cand, "content", None), "parts", None) or []
        for part_idx, part in enumerate(parts):
            inline = getattr(part, "inline_data", None)
            data = getattr(inline, "data", None) if inline else None
            if not data:
                continue
            mime = getattr(inline, "mime_type", None) or ""
            if mime and not mime.startswith("image/"):
                continue
            try:
                img = load_image(data)
            except InvalidInputError:
                logger.warning(
                    "Skipping undecodable image in candidate %d part %d (%s)",
                    cand_idx,
                    part_idx,
                    mime or "unknown mime",
                )
                continue
            meta: dict[str, Any] = {"mime_type": mime, "candidate_index": cand_idx, "part_index": part_idx}
            if finish_reason is not None:
                meta["finish_reason"] = str(finish_reason)
            out.append((img, meta))
    return out
