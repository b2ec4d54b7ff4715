"""
Engine configuration models.

Parses fieldtree.toml and provides typed configuration for
localization, default resolution, querying and logging.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_CONFIG_FILE = "fieldtree.toml"


class LocalizationConfig(BaseModel):
    """Locales every localized field fans out to."""

    model_config = ConfigDict(frozen=True)

    locales: list[str] = Field(default_factory=list)
    default_locale: str | None = None
    fallback: bool = True
    # Tried in order when the requested slot is empty; defaults to [default_locale]
    fallback_locales: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fill_default_locale(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("locales") and not data.get("default_locale"):
            return {**data, "default_locale": data["locales"][0]}
        return data

    @model_validator(mode="after")
    def check_locales(self) -> LocalizationConfig:
        if self.default_locale and self.locales and self.default_locale not in self.locales:
            raise ValueError(f"default_locale '{self.default_locale}' is not in locales")
        unknown = [c for c in self.fallback_locales if c not in self.locales]
        if unknown:
            raise ValueError(f"fallback_locales not in locales: {unknown}")
        return self

    @property
    def enabled(self) -> bool:
        return bool(self.locales)

    def fallback_chain(self, requested: str | None = None) -> list[str]:
        """Locales to try, in order, after the requested one."""
        if not self.fallback:
            return []
        chain = self.fallback_locales or ([self.default_locale] if self.default_locale else [])
        return [code for code in chain if code != requested]


class DefaultsConfig(BaseModel):
    """Computed default resolution settings."""

    model_config = ConfigDict(frozen=True)

    timeout_seconds: float = 10.0


class QueryConfig(BaseModel):
    """Query translation settings."""

    model_config = ConfigDict(frozen=True)

    max_join_depth: int = 4
    default_limit: int = 10


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_dir: str | None = None


class FieldtreeConfig(BaseModel):
    """Complete engine configuration."""

    model_config = ConfigDict(frozen=True)

    localization: LocalizationConfig = Field(default_factory=LocalizationConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldtreeConfig:
        return cls.model_validate(data)


def load_config(path: Path | str | None = None) -> FieldtreeConfig:
    """
    Load configuration from a TOML file.

    Args:
        path: Path to fieldtree.toml, or a directory containing it

    Returns:
        Parsed configuration; defaults if the file does not exist
    """
    if path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
    else:
        config_path = Path(path)
        if config_path.is_dir():
            config_path = config_path / DEFAULT_CONFIG_FILE

    if not config_path.exists():
        return FieldtreeConfig()

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    return FieldtreeConfig.from_dict(data)
