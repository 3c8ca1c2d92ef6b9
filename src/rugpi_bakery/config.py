"""Process settings and the bakery project configuration contract."""

from __future__ import annotations

import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, TypeVar, get_args

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rugpi_bakery.errors import ConfigError

DEFAULT_CONFIG_FILE = "rugpi-bakery.toml"

Architecture = Literal["amd64", "arm64", "armv7", "armhf", "arm"]
ARCHITECTURES: tuple[str, ...] = get_args(Architecture)

ModelT = TypeVar("ModelT", bound=BaseModel)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = Field(alias="APP_ENV", default="dev")
    log_level: str = Field(alias="LOG_LEVEL", default="INFO")
    core_repository_dir: str = Field(
        alias="RUGPI_CORE_REPOSITORY", default="/usr/share/rugpi/repositories/core"
    )
    config_file: str = Field(alias="RUGPI_BAKERY_CONFIG", default=DEFAULT_CONFIG_FILE)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def parse_architecture(token: str) -> Architecture:
    if token not in ARCHITECTURES:
        raise ConfigError(
            f"unknown architecture `{token}` (expected one of {', '.join(ARCHITECTURES)})"
        )
    return token  # type: ignore[return-value]


def load_toml(path: Path) -> dict[str, Any]:
    """Read a TOML file, turning I/O and syntax problems into ConfigError."""
    try:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    except OSError as exc:
        raise ConfigError(f"unable to read {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"malformed TOML in {path}: {exc}") from exc


def validate_model(model: type[ModelT], data: dict[str, Any], source: Path) -> ModelT:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration in {source}: {exc}") from exc


def _as_text(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RepositorySource(BaseModel):
    """Where a repository dependency lives. Only local paths are supported."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    path: str | None = None
    git: str | None = None
    rev: str | None = None
    branch: str | None = None
    tag: str | None = None


class RecipeSelection(BaseModel):
    """Which recipes to apply and with which parameter values."""

    model_config = ConfigDict(extra="forbid")

    recipes: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    parameters: dict[str, dict[str, str]] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _stringify_parameters(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        return {
            recipe: (
                {name: _as_text(raw) for name, raw in params.items()}
                if isinstance(params, dict)
                else params
            )
            for recipe, params in value.items()
        }


class BakeryConfig(RecipeSelection):
    """Contents of `rugpi-bakery.toml`."""

    architecture: Architecture = "arm64"
    repositories: dict[str, RepositorySource] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> BakeryConfig:
        return validate_model(cls, load_toml(path), path)
