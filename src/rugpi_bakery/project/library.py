"""Index of all recipes and layers available to a project.

Recipes and layers live in append-only lists and are addressed by index.
Each repository gets its own name tables, so names only need to be unique
within one repository; other repositories are reached with qualified names
of the form `<dependency>/<name>`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import NewType

from rugpi_bakery.config import Architecture, parse_architecture
from rugpi_bakery.errors import ConfigError
from rugpi_bakery.project.layers import Layer, LayerConfig
from rugpi_bakery.project.recipes import Recipe, RecipeLoader
from rugpi_bakery.project.repositories import ProjectRepositories, RepositoryIdx

logger = logging.getLogger(__name__)

RecipeIdx = NewType("RecipeIdx", int)
"""Uniquely identifies a recipe in `Library`."""

LayerIdx = NewType("LayerIdx", int)
"""Uniquely identifies a layer in `Library`."""

RECIPES_DIR = "recipes"
LAYERS_DIR = "layers"
LAYER_SUFFIX = ".toml"


def _list_dir(path: Path) -> list[Path]:
    try:
        return sorted(path.iterdir(), key=lambda item: item.name)
    except OSError as exc:
        raise ConfigError(f"unable to read directory {path}: {exc}") from exc


def _split_layer_name(path: Path) -> tuple[str, Architecture | None]:
    stem = path.name.removesuffix(LAYER_SUFFIX)
    name, sep, arch = stem.partition(".")
    if not sep:
        return name, None
    return name, parse_architecture(arch)


@dataclass(slots=True)
class Library:
    repositories: ProjectRepositories
    recipes: list[Recipe]
    layers: list[Layer]
    recipe_tables: list[dict[str, RecipeIdx]]
    layer_tables: list[dict[str, LayerIdx]]

    @classmethod
    def load(cls, repositories: ProjectRepositories) -> Library:
        recipes: list[Recipe] = []
        recipe_tables: list[dict[str, RecipeIdx]] = []
        for idx in repositories.indices():
            repository = repositories[idx]
            loader = RecipeLoader(idx).with_default(idx == repositories.root_repository)
            table: dict[str, RecipeIdx] = {}
            for entry in _list_dir(repository.source_dir / RECIPES_DIR):
                recipe = loader.load(entry)
                recipe_idx = RecipeIdx(len(recipes))
                recipes.append(recipe)
                table[recipe.name] = recipe_idx
            logger.debug("loaded %d recipes from %s", len(table), repository.name)
            recipe_tables.append(table)

        layers: list[Layer] = []
        layer_tables: list[dict[str, LayerIdx]] = []
        for idx in repositories.indices():
            layers_dir = repositories[idx].source_dir / LAYERS_DIR
            layer_table: dict[str, LayerIdx] = {}
            if layers_dir.exists():
                for entry in _list_dir(layers_dir):
                    name, arch = _split_layer_name(entry)
                    try:
                        modified = entry.stat().st_mtime
                    except OSError as exc:
                        raise ConfigError(f"unable to stat layer {entry}: {exc}") from exc
                    layer_config = LayerConfig.load(entry)
                    layer_idx = layer_table.get(name)
                    if layer_idx is None:
                        layer_idx = LayerIdx(len(layers))
                        layers.append(Layer(modified=modified))
                        layer_table[name] = layer_idx
                    layer = layers[layer_idx]
                    layer.modified = max(layer.modified, modified)
                    if arch is None:
                        layer.default_config = layer_config
                    else:
                        layer.arch_configs[arch] = layer_config
            layer_tables.append(layer_table)

        return cls(
            repositories=repositories,
            recipes=recipes,
            layers=layers,
            recipe_tables=recipe_tables,
            layer_tables=layer_tables,
        )

    def _resolve(self, repository: RepositoryIdx, name: str) -> tuple[RepositoryIdx, str] | None:
        dependency, sep, item = name.partition("/")
        if not sep:
            return repository, name
        target = self.repositories.resolve_dependency(repository, dependency)
        if target is None:
            return None
        return target, item

    def lookup(self, repository: RepositoryIdx, name: str) -> RecipeIdx | None:
        resolved = self._resolve(repository, name)
        if resolved is None:
            return None
        target, recipe_name = resolved
        return self.recipe_tables[target].get(recipe_name)

    def lookup_layer(self, repository: RepositoryIdx, name: str) -> LayerIdx | None:
        resolved = self._resolve(repository, name)
        if resolved is None:
            return None
        target, layer_name = resolved
        return self.layer_tables[target].get(layer_name)

    def recipe(self, idx: RecipeIdx) -> Recipe:
        return self.recipes[idx]

    def layer(self, idx: LayerIdx) -> Layer:
        return self.layers[idx]

    def iter_recipes(self) -> Iterator[tuple[RecipeIdx, Recipe]]:
        for idx, recipe in enumerate(self.recipes):
            yield RecipeIdx(idx), recipe
