from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .search_links import validate_url_template


class LibrarySettings(BaseModel):
    root: Path

    @field_validator("root", mode="before")
    @classmethod
    def _expand_root(cls, value: str | Path) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            raise ValueError("library root must be an absolute path")
        return path


class MatchingSettings(BaseModel):
    similarity_threshold: float = Field(0.80, ge=0.0, le=1.0)
    year_tolerance: int = Field(1, ge=0)
    inclusion_threshold: float = Field(0.60, ge=0.0, le=1.0)


class ProviderSettings(BaseModel):
    musicbrainz_useragent: str = "album-tracker/0.1 (unknown@example.com)"
    api_rate_limit_ms: int = Field(1000, ge=500)
    max_api_retries: int = Field(3, ge=1)


class SearchProviderSettings(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    url_template: str = Field(min_length=1, max_length=500)

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if value != value.strip():
            raise ValueError("Provider name cannot have leading or trailing whitespace")
        return value

    @field_validator("url_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        error = validate_url_template(value)
        if error:
            raise ValueError(error)
        return value


class StorageSettings(BaseModel):
    database_path: Path = Path("./album-tracker.sqlite3")

    @field_validator("database_path", mode="before")
    @classmethod
    def _expand_database(cls, value: str | Path) -> Path:
        return Path(value).expanduser().resolve()


class Settings(BaseModel):
    library: LibrarySettings
    matching: MatchingSettings = MatchingSettings()
    providers: ProviderSettings = ProviderSettings()
    storage: StorageSettings = StorageSettings()
    search_providers: list[SearchProviderSettings] = []

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})


def find_config(explicit_path: Optional[Path]) -> Path:
    if explicit_path:
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    raise FileNotFoundError("Could not find config.yaml - pass --config explicitly.")
