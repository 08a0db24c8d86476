from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from ytgenius.config import settings
from ytgenius.errors import GenerationFailedError, InvalidInputError, NotFoundError
from ytgenius.images import parse_data_url, pil_to_png_bytes, sniff_mime_type
from ytgenius.prompts import (
    GenerationRequest,
    ImageInput,
    build_background_request,
    build_thumbnail_request,
)
from ytgenius.providers.base import ImageProvider
from ytgenius.providers.gemini_provider import GeminiProvider
from ytgenius.storage import Asset, Character, Project, ProjectStore

logger = logging.getLogger(__name__)

app = FastAPI(title="ytgenius")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = ProjectStore()


@app.exception_handler(NotFoundError)
async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInputError)
async def _invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def _get_gemini() -> ImageProvider:
    if not settings.gemini_api_key:
        raise HTTPException(status_code=400, detail="GEMINI_API_KEY is not set")
    return GeminiProvider(api_key=settings.gemini_api_key)


def _asset_payload(project_id: str, asset: Asset, include_data: bool = False) -> dict[str, Any]:
    out = asdict(asset)
    out["url"] = f"/projects/{project_id}/assets/{asset.asset_id}"
    if include_data:
        out["data_url"] = store.asset_data_url(project_id, asset)
    return out


def _character_payload(project_id: str, character: Character, include_data: bool = False) -> dict[str, Any]:
    out = asdict(character)
    out["url"] = f"/projects/{project_id}/characters/{character.character_id}/image"
    if include_data:
        out["reference_image_url"] = store.character_data_url(project_id, character)
    return out


def _project_payload(proj: Project, include_data: bool = False) -> dict[str, Any]:
    return {
        "project_id": proj.project_id,
        "name": proj.name,
        "created_at": proj.created_at,
        "assets": [_asset_payload(proj.project_id, a, include_data) for a in proj.assets],
        "characters": [_character_payload(proj.project_id, c, include_data) for c in proj.characters],
        "preference_count": len(store.preference_assets(proj)),
    }


async def _read_upload(upload: UploadFile | None) -> ImageInput | None:
    if upload is None:
        return None
    content = await upload.read()
    if not content:
        return None
    return ImageInput(content=content, mime_type=sniff_mime_type(content), label=upload.filename)


def _from_data_url(url: str) -> ImageInput:
    _, content = parse_data_url(url)
    # Trust the bytes, not the declared mime type.
    return ImageInput(content=content, mime_type=sniff_mime_type(content))


def _resolve_preferences(proj: Project, preference_ids: list[str]) -> list[ImageInput]:
    out: list[ImageInput] = []
    for asset_id in _unique(preference_ids):
        asset = store.get_asset(proj.project_id, asset_id)
        if not asset.is_preference:
            raise InvalidInputError(f"asset {asset_id} is not marked as a preference")
        out.append(ImageInput(store.asset_bytes(proj.project_id, asset), asset.mime_type))
    return out


def _resolve_characters(proj: Project, character_ids: list[str]) -> list[ImageInput]:
    out: list[ImageInput] = []
    for character_id in _unique(character_ids):
        c = store.get_character(proj.project_id, character_id)
        out.append(ImageInput(store.character_bytes(proj.project_id, c), c.mime_type, label=c.name))
    return out


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        v = v.strip()
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


async def _run_generation(
    project_id: str,
    request: GenerationRequest,
    provider: ImageProvider,
    failure_detail: str,
    inputs: dict[str, Any],
) -> Asset:
    try:
        generated = await provider.generate(request)
    except GenerationFailedError:
        logger.warning("Provider returned no image for %s in project %s", request.kind, project_id)
        raise HTTPException(status_code=502, detail=failure_detail)
    except Exception:
        logger.exception("Generation of %s failed for project %s", request.kind, project_id)
        raise HTTPException(status_code=502, detail=failure_detail)

    asset = store.add_asset(
        project_id=project_id,
        kind=request.kind,
        content=pil_to_png_bytes(generated.image),
        mime_type="image/png",
        prompt=request.user_prompt,
        aspect_ratio=request.aspect_ratio,
    )
    store.write_run_manifest(
        project_id,
        {
            "type": f"{request.kind}_generate",
            "provider": generated.provider,
            "model": generated.model,
            "inputs": inputs | {"aspect_ratio": request.aspect_ratio, "n_images": request.image_count},
            "outputs": {"asset_id": asset.asset_id},
            "raw_metadata": {k: v for k, v in generated.raw_metadata.items() if isinstance(v, (str, int, float))},
        },
    )
    return asset


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/projects")
def list_projects():
    projects = store.list_projects()
    return {
        "projects": [_project_payload(p) for p in projects],
        "active_project_id": store.get_active_project_id(),
    }


@app.post("/projects", status_code=201)
def create_project(name: str = Form(...)):
    proj = store.create_project(name=name)
    return _project_payload(proj)


@app.get("/projects/{project_id}")
def get_project(project_id: str, inline: bool = False):
    return _project_payload(store.read_project(project_id), include_data=inline)


@app.post("/projects/{project_id}/rename")
def rename_project(project_id: str, name: str = Form(...)):
    return _project_payload(store.rename_project(project_id, name))


@app.post("/projects/{project_id}/delete")
def delete_project(project_id: str):
    store.delete_project(project_id)
    return {"deleted": project_id, "active_project_id": store.get_active_project_id()}


@app.get("/active")
def get_active_project():
    return {"active_project_id": store.get_active_project_id()}


@app.post("/active")
def set_active_project(project_id: str = Form(...)):
    store.set_active_project_id(project_id)
    return {"active_project_id": project_id}


@app.post("/projects/{project_id}/backgrounds/generate", status_code=201)
async def generate_background(
    project_id: str,
    prompt: str = Form(""),
    aspect_ratio: str = Form(settings.default_aspect_ratio),
    image: UploadFile | None = File(None),
    image_url: str = Form(""),
    preference_ids: list[str] = Form(default=[]),
    character_ids: list[str] = Form(default=[]),
):
    proj = store.read_project(project_id)
    base = await _read_upload(image)
    if base is None and image_url.strip():
        base = _from_data_url(image_url)
    request = build_background_request(
        prompt=prompt,
        image=base,
        aspect_ratio=aspect_ratio,
        references=_resolve_preferences(proj, preference_ids),
        characters=_resolve_characters(proj, character_ids),
    )

    gemini = _get_gemini()
    asset = await _run_generation(
        project_id,
        request,
        gemini,
        failure_detail="Failed to generate background image.",
        inputs={
            "prompt": request.user_prompt,
            "has_image": base is not None,
            "preference_ids": _unique(preference_ids),
            "character_ids": _unique(character_ids),
        },
    )
    return {"message": "Background image generated.", "asset": _asset_payload(project_id, asset, include_data=True)}


@app.post("/projects/{project_id}/thumbnails/generate", status_code=201)
async def generate_thumbnail(
    project_id: str,
    prompt: str = Form(""),
    aspect_ratio: str = Form(settings.default_aspect_ratio),
    images: list[UploadFile] = File(default=[]),
    image_urls: list[str] = Form(default=[]),
    preference_ids: list[str] = Form(default=[]),
    character_ids: list[str] = Form(default=[]),
):
    proj = store.read_project(project_id)
    uploaded: list[ImageInput] = []
    for f in images:
        item = await _read_upload(f)
        if item is not None:
            uploaded.append(item)
    uploaded.extend(_from_data_url(u) for u in image_urls if u.strip())

    # Uploads first, then selected preference assets; the first image is the base.
    request = build_thumbnail_request(
        prompt=prompt,
        images=uploaded + _resolve_preferences(proj, preference_ids),
        aspect_ratio=aspect_ratio,
        characters=_resolve_characters(proj, character_ids),
    )

    gemini = _get_gemini()
    asset = await _run_generation(
        project_id,
        request,
        gemini,
        failure_detail="Failed to generate thumbnail.",
        inputs={
            "prompt": request.user_prompt,
            "n_uploaded": len(uploaded),
            "preference_ids": _unique(preference_ids),
            "character_ids": _unique(character_ids),
        },
    )
    return {"message": "Thumbnail generated.", "asset": _asset_payload(project_id, asset, include_data=True)}


@app.get("/projects/{project_id}/assets/{asset_id}")
def get_asset(project_id: str, asset_id: str):
    asset = store.get_asset(project_id, asset_id)
    path = store.asset_path(project_id, asset)
    if not path.exists():
        raise HTTPException(status_code=404, detail="asset file missing")
    download_name = f"{asset.kind}_{asset.asset_id[:8]}{Path(asset.filename).suffix}"
    return FileResponse(path, media_type=asset.mime_type, filename=download_name)


@app.post("/projects/{project_id}/assets/{asset_id}/delete")
def delete_asset(project_id: str, asset_id: str):
    store.delete_asset(project_id, asset_id)
    return {"deleted": asset_id}


@app.post("/projects/{project_id}/assets/{asset_id}/preference")
def toggle_preference(project_id: str, asset_id: str):
    asset = store.toggle_preference(project_id, asset_id)
    proj = store.read_project(project_id)
    return {
        "asset": _asset_payload(project_id, asset),
        "preference_count": len(store.preference_assets(proj)),
    }


@app.post("/projects/{project_id}/characters", status_code=201)
async def add_character(project_id: str, name: str = Form(...), image: UploadFile = File(...)):
    ref = await _read_upload(image)
    if ref is None:
        raise HTTPException(status_code=400, detail="character reference image is required")
    character = store.add_character(project_id, name=name, content=ref.content, mime_type=ref.mime_type)
    return _character_payload(project_id, character)


@app.get("/projects/{project_id}/characters/{character_id}/image")
def get_character_image(project_id: str, character_id: str):
    character = store.get_character(project_id, character_id)
    path = store.character_path(project_id, character)
    if not path.exists():
        raise HTTPException(status_code=404, detail="character image missing")
    return FileResponse(path, media_type=character.mime_type)


@app.post("/projects/{project_id}/characters/{character_id}/delete")
def delete_character(project_id: str, character_id: str):
    store.delete_character(project_id, character_id)
    return {"deleted": character_id}


@app.get("/projects/{project_id}/runs")
def list_runs(project_id: str):
    store.read_project(project_id)
    return {"runs": store.list_run_manifests(project_id)}


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
