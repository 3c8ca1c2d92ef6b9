"""Recipe data models and the on-disk recipe loader.

A recipe is a directory holding a `recipe.toml` and an optional `steps/`
directory. Step files are named `<position>-<kind>[.<ext>]` and run in
filename order, where kind is one of `packages`, `install`, or `run`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rugpi_bakery.config import load_toml, validate_model
from rugpi_bakery.errors import ConfigError
from rugpi_bakery.project.repositories import RepositoryIdx

RECIPE_CONFIG_FILE = "recipe.toml"
STEPS_DIR = "steps"

_STEP_RE = re.compile(r"^(?P<position>[0-9]+)-(?P<kind>[a-z]+)(\.[^/]*)?$")


class ParameterDef(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    default: str | None = None

    @field_validator("default", mode="before")
    @classmethod
    def _stringify(cls, value: object) -> object:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int | float):
            return str(value)
        return value


class RecipeInfo(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    description: str | None = None
    default: bool | None = None
    priority: int = 0
    dependencies: tuple[str, ...] = ()
    parameters: dict[str, ParameterDef] = Field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class PackagesStep:
    """Install packages with the target's package manager, inside the chroot."""

    filename: str
    packages: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class InstallStep:
    """Run a script from the mounted recipe directory, inside the chroot."""

    filename: str


@dataclass(frozen=True, slots=True)
class RunStep:
    """Run a script on the host with the target tree passed in the environment."""

    filename: str


Step = PackagesStep | InstallStep | RunStep


@dataclass(frozen=True, slots=True)
class Recipe:
    name: str
    repository: RepositoryIdx
    path: Path
    info: RecipeInfo
    steps: tuple[Step, ...] = ()

    @property
    def is_default(self) -> bool:
        return bool(self.info.default)

    @property
    def title(self) -> str:
        return self.info.description or self.name


def _parse_packages(text: str) -> tuple[str, ...]:
    packages: list[str] = []
    for line in text.splitlines():
        line = line.split("#", 1)[0]
        packages.extend(line.split())
    return tuple(packages)


def load_step(path: Path) -> Step:
    match = _STEP_RE.match(path.name)
    if match is None:
        raise ConfigError(f"invalid step filename {path}")
    kind = match.group("kind")
    if kind == "packages":
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"unable to read step {path}: {exc}") from exc
        return PackagesStep(filename=path.name, packages=_parse_packages(text))
    if kind == "install":
        return InstallStep(filename=path.name)
    if kind == "run":
        return RunStep(filename=path.name)
    raise ConfigError(f"unknown step kind `{kind}` in {path}")


class RecipeLoader:
    """Loads recipes belonging to one repository."""

    def __init__(self, repository: RepositoryIdx, default: bool = False) -> None:
        self.repository = repository
        self.default = default

    def with_default(self, default: bool) -> RecipeLoader:
        """Recipes that do not declare `default` themselves get *default*."""
        return RecipeLoader(self.repository, default=default)

    def load(self, path: Path) -> Recipe:
        if not path.is_dir():
            raise ConfigError(f"recipe {path} is not a directory")
        config_path = path / RECIPE_CONFIG_FILE
        info = validate_model(RecipeInfo, load_toml(config_path), config_path)
        if info.default is None:
            info = info.model_copy(update={"default": self.default})
        steps_dir = path / STEPS_DIR
        steps: tuple[Step, ...] = ()
        if steps_dir.is_dir():
            steps = tuple(
                load_step(step)
                for step in sorted(steps_dir.iterdir(), key=lambda item: item.name)
                if step.is_file()
            )
        return Recipe(
            name=path.name,
            repository=self.repository,
            path=path.resolve(),
            info=info,
            steps=steps,
        )
