"""Repositories of recipes and layers used by a project."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, NewType

from rugpi_bakery.config import RepositorySource, get_settings, load_toml, validate_model
from rugpi_bakery.errors import ConfigError

if TYPE_CHECKING:
    from rugpi_bakery.project import Project

logger = logging.getLogger(__name__)

RepositoryIdx = NewType("RepositoryIdx", int)
"""Uniquely identifies a repository in `ProjectRepositories`."""

REPOSITORY_CONFIG_FILE = "rugpi-repository.toml"
CORE_NAME = "core"


@dataclass(slots=True)
class Repository:
    name: str
    source_dir: Path
    repositories: dict[str, RepositoryIdx] = field(default_factory=dict)


@dataclass(slots=True)
class ProjectRepositories:
    repositories: list[Repository]
    root_repository: RepositoryIdx
    core_repository: RepositoryIdx

    def __getitem__(self, idx: RepositoryIdx) -> Repository:
        return self.repositories[idx]

    def __len__(self) -> int:
        return len(self.repositories)

    def indices(self) -> list[RepositoryIdx]:
        return [RepositoryIdx(idx) for idx in range(len(self.repositories))]

    def resolve_dependency(self, repository: RepositoryIdx, name: str) -> RepositoryIdx | None:
        """Map a dependency name, as seen from *repository*, to a repository.

        `core` always names the project's core repository; every other name
        must be declared by *repository* itself.
        """
        if name == CORE_NAME:
            return self.core_repository
        return self.repositories[repository].repositories.get(name)

    @classmethod
    def load(cls, project: Project) -> ProjectRepositories:
        core_dir = Path(get_settings().core_repository_dir).expanduser()
        return cls.from_sources(core_dir, project.dir, project.config.repositories)

    @classmethod
    def from_sources(
        cls,
        core_dir: Path,
        root_dir: Path,
        root_sources: dict[str, RepositorySource],
    ) -> ProjectRepositories:
        repositories: list[Repository] = []
        by_dir: dict[Path, RepositoryIdx] = {}

        def register(name: str, source_dir: Path) -> tuple[RepositoryIdx, bool]:
            resolved = source_dir.resolve()
            existing = by_dir.get(resolved)
            if existing is not None:
                return existing, False
            idx = RepositoryIdx(len(repositories))
            repositories.append(Repository(name=name, source_dir=resolved))
            by_dir[resolved] = idx
            return idx, True

        core_idx, _ = register(CORE_NAME, core_dir)
        root_idx, _ = register("root", root_dir)

        pending: deque[tuple[RepositoryIdx, dict[str, RepositorySource]]] = deque()
        pending.append((root_idx, root_sources))
        if core_idx != root_idx:
            pending.append((core_idx, _declared_sources(repositories[core_idx].source_dir)))
        while pending:
            idx, sources = pending.popleft()
            base_dir = repositories[idx].source_dir
            for dep_name, source in sources.items():
                dep_dir = _source_dir(base_dir, dep_name, source)
                dep_idx, is_new = register(dep_name, dep_dir)
                repositories[idx].repositories[dep_name] = dep_idx
                if is_new:
                    logger.debug("registered repository %s at %s", dep_name, dep_dir)
                    pending.append((dep_idx, _declared_sources(dep_dir)))

        return cls(
            repositories=repositories,
            root_repository=root_idx,
            core_repository=core_idx,
        )


def _source_dir(base_dir: Path, name: str, source: RepositorySource) -> Path:
    if source.path is None:
        raise ConfigError(
            f"repository `{name}` must be given as a local `path`; "
            "fetching remote repositories is not supported"
        )
    source_dir = base_dir / source.path
    if not source_dir.is_dir():
        raise ConfigError(f"repository `{name}` does not exist at {source_dir}")
    return source_dir


def _declared_sources(repository_dir: Path) -> dict[str, RepositorySource]:
    config_path = repository_dir / REPOSITORY_CONFIG_FILE
    if not config_path.exists():
        return {}
    raw = load_toml(config_path).get("repositories", {})
    if not isinstance(raw, dict):
        raise ConfigError(f"invalid `repositories` table in {config_path}")
    return {
        name: validate_model(RepositorySource, value, config_path)
        for name, value in raw.items()
    }
