"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (INKPRESS__ARTICLE__ACCESS_TTL=PT12H)
  2. inkpress.yaml          (searched in cwd, then the user config dir)
  3. Hardcoded defaults

The config file is optional; all fields have sensible defaults.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("inkpress")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "inkpress.db")
_DEFAULT_UPLOAD_DIR = str(Path(_DEFAULT_DATA_DIR) / "uploads")


def _find_config_file() -> str | None:
    """Return the path of the first inkpress.yaml found, or None."""
    candidates = [
        Path("inkpress.yaml"),
        Path(platformdirs.user_config_dir("inkpress")) / "inkpress.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class DatabaseSettings(_Section):
    db_path: str = _DEFAULT_DB_PATH
    busy_timeout_ms: int = 5000


class ArticleSettings(_Section):
    access_ttl: timedelta = timedelta(hours=24)
    excerpt_max_size: int = 200
    full_text_search_limit: int = 200

    @field_validator("access_ttl")
    @classmethod
    def validate_access_ttl(cls, v: timedelta) -> timedelta:
        if v.total_seconds() <= 0:
            raise ValueError("access_ttl must be positive")
        return v


class ResourceSettings(_Section):
    upload_dir: str = _DEFAULT_UPLOAD_DIR
    upload_file_max_size: int = 100 * 1024 * 1024
    temp_dir: str | None = None  # Falls back to the system temp dir


class PaginationSettings(_Section):
    default_page: int = 1
    default_size: int = 20
    page_min: int = 1
    page_max: int = 1000  # Exclusive
    allowed_sizes: frozenset[int] = frozenset({10, 20, 30, 40, 50})

    @model_validator(mode="after")
    def validate_bounds(self) -> PaginationSettings:
        if self.page_min < 1 or self.page_max <= self.page_min:
            raise ValueError("page range must satisfy 1 <= page_min < page_max")
        if not self.allowed_sizes:
            raise ValueError("allowed_sizes must not be empty")
        return self


class CacheSettings(_Section):
    cleanup_interval: timedelta = timedelta(minutes=10)
    cleanup_batch_limit: int = 100


class SecuritySettings(_Section):
    cookie_secure: bool = False


class LoggingSettings(_Section):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: INKPRESS__DATABASE__DB_PATH=/tmp/x.db
        env_prefix="INKPRESS__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
        extra="forbid",
    )

    database: DatabaseSettings = DatabaseSettings()
    article: ArticleSettings = ArticleSettings()
    resource: ResourceSettings = ResourceSettings()
    pagination: PaginationSettings = PaginationSettings()
    cache: CacheSettings = CacheSettings()
    security: SecuritySettings = SecuritySettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
