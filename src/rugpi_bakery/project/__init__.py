"""In-memory representation of bakery projects."""

from __future__ import annotations

from pathlib import Path

from rugpi_bakery.config import DEFAULT_CONFIG_FILE, BakeryConfig
from rugpi_bakery.project.library import Library
from rugpi_bakery.project.repositories import ProjectRepositories


class Project:
    """A project directory together with its configuration.

    The repositories and the library are built on first use and then reused
    for the rest of the process. A failed construction is not remembered, so
    the next call tries again. First use is expected to happen on a single
    thread; concurrent first calls may each build their own copy.
    """

    def __init__(self, config: BakeryConfig, project_dir: Path) -> None:
        self.config = config
        self.dir = project_dir
        self._repositories: ProjectRepositories | None = None
        self._library: Library | None = None

    def repositories(self) -> ProjectRepositories:
        if self._repositories is None:
            self._repositories = ProjectRepositories.load(self)
        return self._repositories

    def library(self) -> Library:
        if self._library is None:
            self._library = Library.load(self.repositories())
        return self._library


class ProjectLoader:
    def __init__(self, project_dir: Path) -> None:
        self.project_dir = project_dir
        self.config_file: Path | None = None

    @classmethod
    def current_dir(cls) -> ProjectLoader:
        return cls(Path.cwd())

    def with_config_file(self, config_file: Path | None) -> ProjectLoader:
        """Set the configuration file path relative to the project directory."""
        self.config_file = config_file
        return self

    def config_path(self) -> Path:
        return self.project_dir / (self.config_file or Path(DEFAULT_CONFIG_FILE))

    def load(self) -> Project:
        config = BakeryConfig.load(self.config_path())
        return Project(config=config, project_dir=self.project_dir.resolve())
