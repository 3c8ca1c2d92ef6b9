"""Layer data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rugpi_bakery.config import Architecture, RecipeSelection, load_toml, validate_model


class LayerConfig(RecipeSelection):
    """Contents of one layer file: a recipe selection plus an optional parent."""

    parent: str | None = None

    @classmethod
    def load(cls, path: Path) -> LayerConfig:
        return validate_model(cls, load_toml(path), path)


@dataclass(slots=True)
class Layer:
    modified: float
    default_config: LayerConfig | None = None
    arch_configs: dict[Architecture, LayerConfig] = field(default_factory=dict)

    def config_for(self, arch: Architecture) -> LayerConfig | None:
        """Architecture-specific configuration, falling back to the default one."""
        return self.arch_configs.get(arch, self.default_config)
