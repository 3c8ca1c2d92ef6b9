"""Click CLI group: customize, schedule, recipes, and layers commands."""

from __future__ import annotations

import json
from pathlib import Path

import click

from rugpi_bakery.config import get_settings
from rugpi_bakery.errors import BakeryError
from rugpi_bakery.logging import configure_logging
from rugpi_bakery.project import Project, ProjectLoader
from rugpi_bakery.tasks.customize import customize, recipe_schedule, resolve_selection


def _project(ctx: click.Context) -> Project:
    project = ctx.obj.get("project")
    if project is None:
        loader = ProjectLoader(ctx.obj["project_dir"]).with_config_file(ctx.obj["config_file"])
        try:
            project = loader.load()
        except BakeryError as exc:
            raise click.ClickException(str(exc)) from exc
        ctx.obj["project"] = project
    return project


@click.group()
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory containing the project.",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file relative to the project directory (default: RUGPI_BAKERY_CONFIG).",
)
@click.option("--log-level", type=str, default=None, help="Override LOG_LEVEL.")
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON.")
@click.pass_context
def cli(
    ctx: click.Context,
    project_dir: Path,
    config_file: Path | None,
    log_level: str | None,
    json_logs: bool,
) -> None:
    """Rugpi Bakery: customize root filesystems from recipes."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level, json_output=True if json_logs else None)
    ctx.ensure_object(dict)
    ctx.obj["project_dir"] = project_dir
    ctx.obj["config_file"] = config_file or Path(settings.config_file)


@cli.command("customize")
@click.argument("src", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("dest", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--layer", type=str, default=None, help="Take the recipe selection from a layer.")
@click.pass_context
def customize_cmd(ctx: click.Context, src: Path, dest: Path, layer: str | None) -> None:
    """Apply the selected recipes to the system archive SRC and write DEST."""
    project = _project(ctx)
    try:
        selection = resolve_selection(project, layer)
        jobs = recipe_schedule(project.library(), selection)
        customize(jobs, src.resolve(), dest.resolve(), architecture=project.config.architecture)
    except BakeryError as exc:
        raise click.ClickException(str(exc)) from exc


@cli.command()
@click.option("--layer", type=str, default=None, help="Take the recipe selection from a layer.")
@click.option("--json", "json_output", is_flag=True, help="Print the schedule as JSON.")
@click.pass_context
def schedule(ctx: click.Context, layer: str | None, json_output: bool) -> None:
    """Print the recipes that would be applied, in order, without applying them."""
    project = _project(ctx)
    try:
        jobs = recipe_schedule(project.library(), resolve_selection(project, layer))
    except BakeryError as exc:
        raise click.ClickException(str(exc)) from exc
    repositories = project.library().repositories
    if json_output:
        payload = [
            {
                "recipe": job.recipe.name,
                "repository": repositories[job.recipe.repository].name,
                "priority": job.recipe.info.priority,
                "parameters": job.parameters,
            }
            for job in jobs
        ]
        click.echo(json.dumps(payload, indent=2, sort_keys=True))
        return
    for position, job in enumerate(jobs, start=1):
        params = " ".join(f"{key}={value}" for key, value in sorted(job.parameters.items()))
        repository = repositories[job.recipe.repository].name
        click.echo(f"[{position:>2}/{len(jobs)}] {repository}/{job.recipe.name} {params}".rstrip())


@cli.command()
@click.pass_context
def recipes(ctx: click.Context) -> None:
    """List every recipe known to the project."""
    project = _project(ctx)
    try:
        library = project.library()
    except BakeryError as exc:
        raise click.ClickException(str(exc)) from exc
    for _, recipe in library.iter_recipes():
        repository = library.repositories[recipe.repository].name
        marker = "*" if recipe.is_default else " "
        description = recipe.info.description or ""
        click.echo(f"{marker} {repository}/{recipe.name}  {description}".rstrip())


@cli.command()
@click.pass_context
def layers(ctx: click.Context) -> None:
    """List every layer known to the project with its architectures."""
    project = _project(ctx)
    try:
        library = project.library()
    except BakeryError as exc:
        raise click.ClickException(str(exc)) from exc
    for idx in library.repositories.indices():
        repository = library.repositories[idx].name
        for name, layer_idx in sorted(library.layer_tables[idx].items()):
            layer = library.layer(layer_idx)
            archs = ", ".join(sorted(layer.arch_configs))
            default = "default" if layer.default_config is not None else ""
            variants = ", ".join(item for item in (default, archs) if item)
            click.echo(f"{repository}/{name} ({variants})")
