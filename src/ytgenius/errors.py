"""
Domain errors.

Storage and the request builders raise these; the API layer turns them into
HTTP responses.
"""

from __future__ import annotations


class YTGeniusError(Exception):
    """Base class for every error raised by ytgenius."""


class NotFoundError(YTGeniusError):
    pass


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"project not found: {project_id}")


class AssetNotFoundError(NotFoundError):
    def __init__(self, project_id: str, asset_id: str) -> None:
        self.project_id = project_id
        self.asset_id = asset_id
        super().__init__(f"asset not found: {asset_id}")


class CharacterNotFoundError(NotFoundError):
    def __init__(self, project_id: str, character_id: str) -> None:
        self.project_id = project_id
        self.character_id = character_id
        super().__init__(f"character not found: {character_id}")


class InvalidInputError(YTGeniusError):
    pass


class GenerationInputError(InvalidInputError):
    pass


class PreferenceLimitError(InvalidInputError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"at most {limit} preference assets are allowed per project")


class GenerationFailedError(YTGeniusError):
    pass
