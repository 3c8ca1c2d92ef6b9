import logging
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from rugpi_bakery.config import get_settings
from rugpi_bakery.errors import ExecutionError


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return '"' + str(value) + '"'


def write_recipe(
    repo_dir: Path,
    name: str,
    *,
    default: bool | None = None,
    priority: int | None = None,
    dependencies: tuple[str, ...] = (),
    parameters: Mapping[str, str | None] | None = None,
    description: str | None = None,
    steps: Mapping[str, str] | None = None,
) -> Path:
    recipe_dir = repo_dir / "recipes" / name
    recipe_dir.mkdir(parents=True, exist_ok=True)
    lines: list[str] = []
    if description is not None:
        lines.append(f"description = {_toml_value(description)}")
    if default is not None:
        lines.append(f"default = {_toml_value(default)}")
    if priority is not None:
        lines.append(f"priority = {priority}")
    if dependencies:
        lines.append(f"dependencies = {_toml_value(dependencies)}")
    for param, param_default in (parameters or {}).items():
        lines.append(f"[parameters.{param}]")
        if param_default is not None:
            lines.append(f"default = {_toml_value(param_default)}")
    (recipe_dir / "recipe.toml").write_text("\n".join(lines) + "\n", encoding="utf-8")
    if steps:
        steps_dir = recipe_dir / "steps"
        steps_dir.mkdir(exist_ok=True)
        for filename, content in steps.items():
            (steps_dir / filename).write_text(content, encoding="utf-8")
    return recipe_dir


def write_repository(path: Path, dependencies: Mapping[str, str] | None = None) -> Path:
    (path / "recipes").mkdir(parents=True, exist_ok=True)
    if dependencies:
        lines = ["[repositories]"]
        lines.extend(f'{name} = {{ path = "{dep}" }}' for name, dep in dependencies.items())
        (path / "rugpi-repository.toml").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class CommandRecorder:
    """Stands in for `run_command`, recording calls instead of running them."""

    def __init__(self) -> None:
        self.calls: list[tuple[tuple[str, ...], dict[str, str] | None]] = []
        self.fail_on: Callable[[tuple[str, ...]], bool] | None = None

    def __call__(self, args, *, env=None, cwd=None) -> None:
        command = tuple(str(arg) for arg in args)
        self.calls.append((command, dict(env) if env is not None else None))
        if self.fail_on is not None and self.fail_on(command):
            raise ExecutionError(
                f"`{' '.join(command)}` exited with status 1", command=command, returncode=1
            )

    @property
    def commands(self) -> list[tuple[str, ...]]:
        return [command for command, _ in self.calls]

    def unmounted(self) -> list[str]:
        return [command[1] for command in self.commands if command[0] == "umount"]

    def mounted(self) -> list[str]:
        return [command[-1] for command in self.commands if command[0] == "mount"]


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    core_dir = write_repository(tmp_path / "core")
    monkeypatch.setenv("RUGPI_CORE_REPOSITORY", str(core_dir))
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.delenv("RUGPI_BAKERY_CONFIG", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    logging.getLogger().handlers.clear()


@pytest.fixture
def core_dir(tmp_path: Path) -> Path:
    return tmp_path / "core"


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    return write_repository(tmp_path / "project")


@pytest.fixture
def commands(monkeypatch: pytest.MonkeyPatch) -> CommandRecorder:
    recorder = CommandRecorder()
    monkeypatch.setattr("rugpi_bakery.mounts.run_command", recorder)
    monkeypatch.setattr("rugpi_bakery.tasks.customize.run_command", recorder)
    return recorder


@pytest.fixture
def recipe_writer() -> Callable[..., Path]:
    return write_recipe


@pytest.fixture
def repository_writer() -> Callable[..., Path]:
    return write_repository
