"""Applies a set of recipes to a system."""

from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from rugpi_bakery.commands import run_command
from rugpi_bakery.config import Architecture, RecipeSelection
from rugpi_bakery.errors import ExecutionError, ResolutionError
from rugpi_bakery.logging import bind_recipe, clear_recipe
from rugpi_bakery.mounts import Mounted, MountStack, make_mount_point
from rugpi_bakery.project import Project
from rugpi_bakery.project.library import Library, RecipeIdx
from rugpi_bakery.project.recipes import InstallStep, PackagesStep, Recipe, RunStep, Step
from rugpi_bakery.project.repositories import RepositoryIdx

logger = logging.getLogger(__name__)

# Where the current recipe's directory is visible inside the chroot.
RECIPE_MOUNT_POINT = PurePosixPath("/run/rugpi/bakery/recipe")


@dataclass(frozen=True, slots=True)
class RecipeJob:
    recipe: Recipe
    parameters: dict[str, str]


def resolve_selection(project: Project, layer: str | None = None) -> RecipeSelection:
    """The recipe selection of *layer*, or of the project itself when None."""
    if layer is None:
        return project.config
    library = project.library()
    layer_idx = library.lookup_layer(library.repositories.root_repository, layer)
    if layer_idx is None:
        raise ResolutionError(f"unable to find layer `{layer}`")
    config = library.layer(layer_idx).config_for(project.config.architecture)
    if config is None:
        raise ResolutionError(
            f"layer `{layer}` has no configuration for `{project.config.architecture}`"
        )
    return config


def _lookup(library: Library, repository: RepositoryIdx, name: str, what: str) -> RecipeIdx:
    idx = library.lookup(repository, name)
    if idx is None:
        raise ResolutionError(f"unable to find {what} `{name}`")
    return idx


def _job_parameters(recipe: Recipe, configured: dict[str, str]) -> dict[str, str]:
    for name in configured:
        if name not in recipe.info.parameters:
            raise ResolutionError(f"unknown parameter `{name}` of recipe `{recipe.name}`")
    parameters: dict[str, str] = {}
    for name, definition in recipe.info.parameters.items():
        if name in configured:
            parameters[name] = configured[name]
        elif definition.default is not None:
            parameters[name] = definition.default
        else:
            raise ResolutionError(
                f"missing value for parameter `{name}` of recipe `{recipe.name}`"
            )
    return parameters


def recipe_schedule(library: Library, selection: RecipeSelection) -> list[RecipeJob]:
    """Collect the recipes to apply, with resolved parameters, in application order.

    Default recipes that are not excluded and explicitly selected recipes seed
    the schedule, which is then closed over dependencies. Dependencies are
    resolved relative to the repository of the recipe declaring them. Recipes
    with a higher priority are applied first.
    """
    root = library.repositories.root_repository
    excluded = {_lookup(library, root, name, "excluded recipe") for name in selection.exclude}

    stack: list[RecipeIdx] = [
        idx for idx, recipe in library.iter_recipes() if recipe.is_default and idx not in excluded
    ]
    stack.extend(_lookup(library, root, name, "recipe") for name in selection.recipes)
    visited: dict[RecipeIdx, None] = dict.fromkeys(stack)
    while stack:
        recipe = library.recipe(stack.pop())
        for dependency in recipe.info.dependencies:
            dependency_idx = library.lookup(recipe.repository, dependency)
            if dependency_idx is None:
                raise ResolutionError(
                    f"unable to find dependency `{dependency}` of recipe `{recipe.name}`"
                )
            if dependency_idx not in visited:
                visited[dependency_idx] = None
                stack.append(dependency_idx)

    configured: dict[RecipeIdx, dict[str, str]] = {}
    for name, params in selection.parameters.items():
        configured.setdefault(_lookup(library, root, name, "recipe"), {}).update(params)

    jobs = [
        RecipeJob(
            recipe=library.recipe(idx),
            parameters=_job_parameters(library.recipe(idx), configured.get(idx, {})),
        )
        for idx in visited
    ]
    jobs.sort(key=lambda job: -job.recipe.info.priority)
    return jobs


def step_environment(
    job: RecipeJob,
    *,
    architecture: Architecture,
    root_dir: str,
    recipe_dir: str,
    step_path: str,
) -> dict[str, str]:
    env = {
        "DEBIAN_FRONTEND": "noninteractive",
        "RUGPI_ROOT_DIR": root_dir,
        "RUGIX_ROOT_DIR": root_dir,
        "RUGPI_ARCH": architecture,
        "RUGIX_ARCH": architecture,
        "RECIPE_DIR": recipe_dir,
        "RECIPE_STEP_PATH": step_path,
    }
    for name, value in job.parameters.items():
        env[f"RECIPE_PARAM_{name.upper()}"] = value
    return env


def run_step(step: Step, job: RecipeJob, root_dir: Path, architecture: Architecture) -> None:
    if isinstance(step, RunStep):
        script = job.recipe.path / "steps" / step.filename
        env = step_environment(
            job,
            architecture=architecture,
            root_dir=str(root_dir),
            recipe_dir=str(job.recipe.path),
            step_path=str(script),
        )
        run_command([script], env=env)
        return

    script_path = str(RECIPE_MOUNT_POINT / "steps" / step.filename)
    env = step_environment(
        job,
        architecture=architecture,
        root_dir="/",
        recipe_dir=f"{RECIPE_MOUNT_POINT}/",
        step_path=script_path,
    )
    if isinstance(step, PackagesStep):
        if not step.packages:
            logger.debug("no packages listed in %s", step.filename)
            return
        run_command(["chroot", root_dir, "apt-get", "install", "-y", *step.packages], env=env)
    elif isinstance(step, InstallStep):
        run_command(["chroot", root_dir, script_path], env=env)
    else:
        raise TypeError(f"unsupported step {step!r}")


def apply_recipes(
    jobs: list[RecipeJob],
    root_dir: Path,
    *,
    architecture: Architecture,
    mounts: MountStack | None = None,
) -> None:
    """Apply *jobs* in order to the system tree extracted at *root_dir*.

    Everything mounted here is unmounted again before this returns or raises.
    Pass *mounts* to inspect afterwards whether any unmount failed.
    """
    with (mounts or MountStack()) as mounts:
        mounts.bind("/dev", root_dir / "dev")
        mounts.bind("/dev/pts", root_dir / "dev/pts")
        mounts.bind("/sys", root_dir / "sys")
        mounts.mount_fs("proc", "proc", root_dir / "proc")
        mounts.mount_fs("tmpfs", "tmpfs", root_dir / "run")
        mounts.mount_fs("tmpfs", "tmpfs", root_dir / "tmp")

        recipe_dir = root_dir / RECIPE_MOUNT_POINT.relative_to("/")
        make_mount_point(recipe_dir)

        for position, job in enumerate(jobs, start=1):
            recipe = job.recipe
            logger.info("[%2d/%d] %s %s", position, len(jobs), recipe.title, job.parameters)
            bind_recipe(recipe.name)
            try:
                with mounts.track(Mounted.bind(recipe.path, recipe_dir)):
                    for step in recipe.steps:
                        bind_recipe(recipe.name, step.filename)
                        logger.info("    - %s", step.filename)
                        try:
                            run_step(step, job, root_dir, architecture)
                        except ExecutionError as exc:
                            raise ExecutionError(
                                f"step `{step.filename}` of recipe `{recipe.name}` failed: {exc}",
                                command=exc.command,
                                returncode=exc.returncode,
                            ) from exc
            finally:
                clear_recipe()


def customize(
    jobs: list[RecipeJob], src: Path, dest: Path, *, architecture: Architecture
) -> None:
    """Extract the system archive *src*, apply *jobs*, and pack it into *dest*.

    The scratch tree is removed afterwards unless a mount below it could not
    be released, in which case it is kept and its path is logged.
    """
    root_dir = Path(tempfile.mkdtemp(prefix="rugpi-"))
    mounts = MountStack()
    try:
        logger.info("extracting system files from %s", src)
        run_command(["tar", "-x", "-f", src, "-C", root_dir])
        apply_recipes(jobs, root_dir, architecture=architecture, mounts=mounts)
        logger.info("packing system files into %s", dest)
        run_command(["tar", "-c", "-f", dest, "-C", root_dir, "."])
    finally:
        leaked = mounts.leaked
        if leaked:
            logger.error(
                "keeping %s because %s may still be mounted",
                root_dir,
                ", ".join(str(path) for path in leaked),
            )
        else:
            shutil.rmtree(root_dir)
