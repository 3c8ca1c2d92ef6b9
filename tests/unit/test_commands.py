from pathlib import Path

import pytest

from rugpi_bakery.commands import run_command
from rugpi_bakery.errors import ExecutionError


def test_success() -> None:
    run_command(["true"])


def test_nonzero_exit_fails() -> None:
    with pytest.raises(ExecutionError) as excinfo:
        run_command(["sh", "-c", "exit 3"])
    assert excinfo.value.returncode == 3
    assert excinfo.value.command == ("sh", "-c", "exit 3")


def test_launch_failure() -> None:
    with pytest.raises(ExecutionError, match="unable to launch"):
        run_command(["/nonexistent/rugpi-step"])


def test_env_is_layered_over_parent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RUGPI_TEST_PARENT", "kept")
    run_command(
        ["sh", "-c", 'test "$RECIPE_PARAM_SUITE" = bookworm && test "$RUGPI_TEST_PARENT" = kept'],
        env={"RECIPE_PARAM_SUITE": "bookworm"},
    )


def test_cwd(tmp_path: Path) -> None:
    (tmp_path / "marker").write_text("", encoding="utf-8")
    run_command(["test", "-f", "marker"], cwd=tmp_path)
