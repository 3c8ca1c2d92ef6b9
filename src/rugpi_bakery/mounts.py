"""Scoped mounts that are released exactly once, in reverse order."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from pathlib import Path
from types import TracebackType

from rugpi_bakery.commands import run_command
from rugpi_bakery.errors import ExecutionError, MountError

logger = logging.getLogger(__name__)


def make_mount_point(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise MountError(f"unable to create mount point {path}: {exc}") from exc


class Mounted:
    """A mount that lives for the span of a `with` block.

    Entering performs the mount, leaving performs the unmount. When the block
    is left because of an error, a failing unmount is logged and attached to
    that error as a note instead of replacing it. Either way a mount whose
    unmount failed is flagged as `leaked`.
    """

    def __init__(self, args: tuple[str, ...], target: Path) -> None:
        self.target = target
        self.leaked = False
        self._args = args
        self._active = False

    @classmethod
    def bind(cls, source: str | Path, target: Path) -> Mounted:
        return cls(("mount", "--bind", str(source), str(target)), target)

    @classmethod
    def mount_fs(cls, fstype: str, source: str, target: Path) -> Mounted:
        return cls(("mount", "-t", fstype, source, str(target)), target)

    def __enter__(self) -> Mounted:
        make_mount_point(self.target)
        try:
            run_command(self._args)
        except ExecutionError as exc:
            raise MountError(f"unable to mount {self.target}: {exc}", command=exc.command) from exc
        self._active = True
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if not self._active:
            return False
        self._active = False
        try:
            run_command(("umount", str(self.target)))
        except ExecutionError as err:
            self.leaked = True
            if exc is None:
                raise MountError(
                    f"unable to unmount {self.target}: {err}", command=err.command
                ) from err
            logger.error("unable to unmount %s while unwinding: %s", self.target, err)
            exc.add_note(f"additionally, unmounting {self.target} failed: {err}")
        return False


class MountStack:
    """Collects mounts and releases them in reverse acquisition order.

    Mounts scoped more narrowly than the stack itself can be registered with
    `track` so that `leaked` covers them as well.
    """

    def __init__(self) -> None:
        self._stack = ExitStack()
        self._seen: list[Mounted] = []

    def track(self, mounted: Mounted) -> Mounted:
        self._seen.append(mounted)
        return mounted

    def push(self, mounted: Mounted) -> Mounted:
        self._stack.enter_context(self.track(mounted))
        return mounted

    def bind(self, source: str | Path, target: Path) -> Mounted:
        return self.push(Mounted.bind(source, target))

    def mount_fs(self, fstype: str, source: str, target: Path) -> Mounted:
        return self.push(Mounted.mount_fs(fstype, source, target))

    @property
    def leaked(self) -> list[Path]:
        """Targets that may still be mounted because unmounting them failed."""
        return [mounted.target for mounted in self._seen if mounted.leaked]

    def __enter__(self) -> MountStack:
        self._stack.__enter__()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        return self._stack.__exit__(exc_type, exc, tb)
