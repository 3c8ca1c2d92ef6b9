"""Bakery exception hierarchy.

All bakery-specific exceptions inherit from BakeryError, so the CLI can
report any build failure through a single catch clause. Nothing in the
build is retried; every error is fatal to the current build.
"""


class BakeryError(Exception):
    """Base exception for all bakery errors."""


class ConfigError(BakeryError):
    """Malformed configuration, recipe, or layer file."""


class ResolutionError(BakeryError):
    """A recipe, dependency, or parameter name could not be resolved."""


class ExecutionError(BakeryError):
    """A command exited non-zero or could not be launched."""

    def __init__(
        self,
        message: str = "",
        *,
        command: tuple[str, ...] = (),
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode


class MountError(ExecutionError):
    """Mounting or unmounting a filesystem failed."""
