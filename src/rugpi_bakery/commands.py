"""Run external commands, surfacing failures as ExecutionError."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from rugpi_bakery.errors import ExecutionError

logger = logging.getLogger(__name__)


def _merged_env(env: Mapping[str, str] | None) -> dict[str, str] | None:
    if env is None:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def run_command(
    args: Sequence[str | Path],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
) -> None:
    """Run *args* to completion with output going to the parent's terminal.

    Variables in *env* are layered over the parent process environment. The
    exit code is the only success signal; nothing is captured or parsed.
    """
    command = tuple(str(arg) for arg in args)
    logger.debug("running command: %s", " ".join(command))
    try:
        proc = subprocess.run(
            command,
            cwd=str(cwd) if cwd is not None else None,
            env=_merged_env(env),
            check=False,
        )
    except OSError as exc:
        raise ExecutionError(
            f"unable to launch `{command[0]}`: {exc}", command=command
        ) from exc
    if proc.returncode != 0:
        raise ExecutionError(
            f"`{' '.join(command)}` exited with status {proc.returncode}",
            command=command,
            returncode=proc.returncode,
        )
