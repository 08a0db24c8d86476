from __future__ import annotations

import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ytgenius.config import settings
from ytgenius.errors import (
    AssetNotFoundError,
    CharacterNotFoundError,
    InvalidInputError,
    PreferenceLimitError,
    ProjectNotFoundError,
)
from ytgenius.images import extension_for, to_data_url

logger = logging.getLogger(__name__)

ASSET_KINDS = ("background", "thumbnail")
MAX_PREFERENCES = 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sha256_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def _new_id(taken: set[str]) -> str:
    while True:
        candidate = uuid.uuid4().hex[:12]
        if candidate not in taken:
            return candidate


def _atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


@dataclass(frozen=True)
class Asset:
    asset_id: str
    kind: str  # background|thumbnail
    filename: str
    rel_path: str
    mime_type: str
    sha256: str
    prompt: str
    aspect_ratio: str
    created_at: str
    is_preference: bool = False


@dataclass(frozen=True)
class Character:
    character_id: str
    name: str
    filename: str
    rel_path: str
    mime_type: str
    sha256: str
    created_at: str


@dataclass
class Project:
    project_id: str
    name: str
    created_at: str
    assets: list[Asset] = field(default_factory=list)
    characters: list[Character] = field(default_factory=list)

    def find_asset(self, asset_id: str) -> Asset | None:
        for a in self.assets:
            if a.asset_id == asset_id:
                return a
        return None

    def find_character(self, character_id: str) -> Character | None:
        for c in self.characters:
            if c.character_id == character_id:
                return c
        return None


class ProjectStore:
    """
    Projects live under `<root>/projects/<project_id>/` as a `project.json`
    manifest next to `assets/` and `characters/` image folders. The active
    project id is kept in `<root>/state.json`.
    """

    def __init__(self, root_dir: Path | None = None) -> None:
        self.root_dir = Path(root_dir or settings.data_dir).resolve()
        self.projects_dir = self.root_dir / "projects"
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.root_dir / "state.json"
        self._lock = threading.RLock()

    # Projects

    def create_project(self, name: str) -> Project:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("project name is required")

        with self._lock:
            taken = {p.name for p in self.projects_dir.iterdir() if p.is_dir()}
            project_id = _new_id(taken)
            proj_dir = self.projects_dir / project_id
            (proj_dir / "assets").mkdir(parents=True, exist_ok=True)
            (proj_dir / "characters").mkdir(parents=True, exist_ok=True)
            (proj_dir / "runs").mkdir(parents=True, exist_ok=True)

            proj = Project(project_id=project_id, name=name, created_at=_now_iso())
            self._write_project(proj)
            self.set_active_project_id(project_id)

        logger.info("Created project %s (%s)", project_id, name)
        return proj

    def list_projects(self) -> list[Project]:
        out: list[Project] = []
        for proj_dir in sorted(self.projects_dir.glob("*")):
            if not proj_dir.is_dir():
                continue
            try:
                out.append(self.read_project(proj_dir.name))
            except (ProjectNotFoundError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping unreadable project %s: %s", proj_dir.name, exc)
        out.sort(key=lambda p: (p.created_at, p.project_id))
        return out

    def read_project(self, project_id: str) -> Project:
        proj_path = self._project_dir(project_id) / "project.json"
        if not proj_path.is_file():
            raise ProjectNotFoundError(project_id)
        data = json.loads(proj_path.read_text("utf-8"))
        return Project(
            project_id=data["project_id"],
            name=data["name"],
            created_at=data["created_at"],
            assets=[Asset(**a) for a in data.get("assets", [])],
            characters=[Character(**c) for c in data.get("characters", [])],
        )

    def rename_project(self, project_id: str, name: str) -> Project:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("project name is required")
        with self._lock:
            proj = self.read_project(project_id)
            proj.name = name
            self._write_project(proj)
        return proj

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            proj_dir = self._project_dir(project_id).resolve()
            # A symlinked entry may resolve outside the store; never rmtree that.
            if not str(proj_dir).startswith(str(self.projects_dir) + os.sep):
                raise ProjectNotFoundError(project_id)
            if not proj_dir.exists():
                raise ProjectNotFoundError(project_id)
            shutil.rmtree(proj_dir)

            if self._read_state().get("active_project_id") == project_id:
                remaining = self.list_projects()
                self.set_active_project_id(remaining[0].project_id if remaining else None)

        logger.info("Deleted project %s", project_id)

    # Active project

    def get_active_project_id(self) -> str | None:
        active = self._read_state().get("active_project_id")
        projects = self.list_projects()
        if active and any(p.project_id == active for p in projects):
            return active
        # Stale or unset: fall back to the first project.
        return projects[0].project_id if projects else None

    def set_active_project_id(self, project_id: str | None) -> None:
        with self._lock:
            if project_id is not None:
                self.read_project(project_id)
            state = self._read_state()
            state["active_project_id"] = project_id
            _atomic_write_json(self.state_path, state)

    # Assets

    def add_asset(
        self,
        project_id: str,
        kind: str,
        content: bytes,
        mime_type: str,
        prompt: str,
        aspect_ratio: str,
    ) -> Asset:
        if kind not in ASSET_KINDS:
            raise InvalidInputError(f"asset kind must be one of {', '.join(ASSET_KINDS)}")
        if not content:
            raise InvalidInputError("asset content is empty")

        with self._lock:
            proj = self.read_project(project_id)
            asset_id = _new_id({a.asset_id for a in proj.assets})
            filename = f"{kind}{extension_for(mime_type)}"
            rel_path = str(Path("assets") / f"{asset_id}_{filename}")
            abs_path = self._project_dir(project_id) / rel_path
            abs_path.parent.mkdir(parents=True, exist_ok=True)
            abs_path.write_bytes(content)

            asset = Asset(
                asset_id=asset_id,
                kind=kind,
                filename=filename,
                rel_path=rel_path,
                mime_type=mime_type,
                sha256=_sha256_bytes(content),
                prompt=prompt or "",
                aspect_ratio=aspect_ratio,
                created_at=_now_iso(),
            )
            # Newest first.
            proj.assets.insert(0, asset)
            self._write_project(proj)

        logger.info("Added %s asset %s to project %s", kind, asset_id, project_id)
        return asset

    def get_asset(self, project_id: str, asset_id: str) -> Asset:
        asset = self.read_project(project_id).find_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError(project_id, asset_id)
        return asset

    def delete_asset(self, project_id: str, asset_id: str) -> None:
        with self._lock:
            proj = self.read_project(project_id)
            asset = proj.find_asset(asset_id)
            if asset is None:
                raise AssetNotFoundError(project_id, asset_id)
            proj.assets = [a for a in proj.assets if a.asset_id != asset_id]
            self._write_project(proj)

        try:
            self.asset_path(project_id, asset).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove file for asset %s: %s", asset_id, exc)
        logger.info("Deleted asset %s from project %s", asset_id, project_id)

    def set_preference(self, project_id: str, asset_id: str, value: bool) -> Asset:
        with self._lock:
            proj = self.read_project(project_id)
            asset = proj.find_asset(asset_id)
            if asset is None:
                raise AssetNotFoundError(project_id, asset_id)
            if asset.is_preference == value:
                return asset
            if value and len(self.preference_assets(proj)) >= MAX_PREFERENCES:
                raise PreferenceLimitError(MAX_PREFERENCES)

            updated = replace(asset, is_preference=value)
            proj.assets = [updated if a.asset_id == asset_id else a for a in proj.assets]
            self._write_project(proj)
        return updated

    def toggle_preference(self, project_id: str, asset_id: str) -> Asset:
        with self._lock:
            asset = self.get_asset(project_id, asset_id)
            return self.set_preference(project_id, asset_id, not asset.is_preference)

    @staticmethod
    def preference_assets(proj: Project) -> list[Asset]:
        return [a for a in proj.assets if a.is_preference]

    def asset_path(self, project_id: str, asset: Asset) -> Path:
        return self._project_dir(project_id) / asset.rel_path

    def asset_bytes(self, project_id: str, asset: Asset) -> bytes:
        return self.asset_path(project_id, asset).read_bytes()

    def asset_data_url(self, project_id: str, asset: Asset) -> str:
        return to_data_url(self.asset_bytes(project_id, asset), asset.mime_type)

    # Characters

    def add_character(self, project_id: str, name: str, content: bytes, mime_type: str) -> Character:
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("character name is required")
        if not content:
            raise InvalidInputError("character reference image is required")

        with self._lock:
            proj = self.read_project(project_id)
            character_id = _new_id({c.character_id for c in proj.characters})
            filename = f"reference{extension_for(mime_type)}"
            rel_path = str(Path("characters") / f"{character_id}_{filename}")
            abs_path = self._project_dir(project_id) / rel_path
            abs_path.parent.mkdir(parents=True, exist_ok=True)
            abs_path.write_bytes(content)

            character = Character(
                character_id=character_id,
                name=name,
                filename=filename,
                rel_path=rel_path,
                mime_type=mime_type,
                sha256=_sha256_bytes(content),
                created_at=_now_iso(),
            )
            proj.characters.append(character)
            self._write_project(proj)

        logger.info("Added character %s (%s) to project %s", character_id, name, project_id)
        return character

    def get_character(self, project_id: str, character_id: str) -> Character:
        character = self.read_project(project_id).find_character(character_id)
        if character is None:
            raise CharacterNotFoundError(project_id, character_id)
        return character

    def delete_character(self, project_id: str, character_id: str) -> None:
        with self._lock:
            proj = self.read_project(project_id)
            character = proj.find_character(character_id)
            if character is None:
                raise CharacterNotFoundError(project_id, character_id)
            proj.characters = [c for c in proj.characters if c.character_id != character_id]
            self._write_project(proj)

        try:
            self.character_path(project_id, character).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not remove file for character %s: %s", character_id, exc)
        logger.info("Deleted character %s from project %s", character_id, project_id)

    def character_path(self, project_id: str, character: Character) -> Path:
        return self._project_dir(project_id) / character.rel_path

    def character_bytes(self, project_id: str, character: Character) -> bytes:
        return self.character_path(project_id, character).read_bytes()

    def character_data_url(self, project_id: str, character: Character) -> str:
        return to_data_url(self.character_bytes(project_id, character), character.mime_type)

    # Runs

    def write_run_manifest(self, project_id: str, manifest: dict[str, Any]) -> Path:
        proj_dir = self._project_dir(project_id)
        run_id = uuid.uuid4().hex[:12]
        path = proj_dir / "runs" / f"run_{run_id}.json"
        manifest = dict(manifest)
        manifest.setdefault("run_id", run_id)
        manifest.setdefault("created_at", _now_iso())
        _atomic_write_json(path, manifest)
        return path

    def list_run_manifests(self, project_id: str) -> list[dict[str, Any]]:
        runs_dir = self._project_dir(project_id) / "runs"
        out: list[dict[str, Any]] = []
        for path in runs_dir.glob("run_*.json"):
            try:
                out.append(json.loads(path.read_text("utf-8")))
            except ValueError:
                logger.warning("Skipping unreadable run manifest %s", path)
        out.sort(key=lambda m: m.get("created_at", ""))
        return out

    # Internals

    def _project_dir(self, project_id: str) -> Path:
        # Ids are generated hex; anything with a separator is never a project.
        if not project_id or os.sep in project_id or "/" in project_id or project_id in {".", ".."}:
            raise ProjectNotFoundError(project_id)
        return self.projects_dir / project_id

    def _read_state(self) -> dict[str, Any]:
        if not self.state_path.is_file():
            return {}
        try:
            data = json.loads(self.state_path.read_text("utf-8"))
        except ValueError:
            logger.warning("Ignoring unreadable state file %s", self.state_path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_project(self, proj: Project) -> None:
        data = asdict(proj)
        _atomic_write_json(self._project_dir(proj.project_id) / "project.json", data)
