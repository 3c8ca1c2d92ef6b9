from pathlib import Path

import pytest

from rugpi_bakery.errors import ExecutionError, MountError
from rugpi_bakery.mounts import Mounted, MountStack


def test_bind_mount_and_unmount(tmp_path: Path, commands) -> None:
    target = tmp_path / "root" / "dev"
    with Mounted.bind("/dev", target):
        assert target.is_dir()
        assert commands.commands == [("mount", "--bind", "/dev", str(target))]
    assert commands.commands[-1] == ("umount", str(target))


def test_mount_fs_command(tmp_path: Path, commands) -> None:
    with Mounted.mount_fs("tmpfs", "tmpfs", tmp_path / "tmp"):
        pass
    assert commands.commands[0] == ("mount", "-t", "tmpfs", "tmpfs", str(tmp_path / "tmp"))


def test_stack_releases_in_reverse_order_on_failure(tmp_path: Path, commands) -> None:
    targets = [tmp_path / name for name in ("a", "b", "c")]
    with pytest.raises(RuntimeError, match="step failed"):
        with MountStack() as mounts:
            for target in targets:
                mounts.bind("/src", target)
            raise RuntimeError("step failed")
    assert commands.unmounted() == [str(target) for target in reversed(targets)]


def test_failed_mount_releases_earlier_mounts(tmp_path: Path, commands) -> None:
    commands.fail_on = lambda command: command[0] == "mount" and command[-1].endswith("/c")
    with pytest.raises(MountError, match="unable to mount"):
        with MountStack() as mounts:
            for name in ("a", "b", "c"):
                mounts.bind("/src", tmp_path / name)
    assert commands.unmounted() == [str(tmp_path / "b"), str(tmp_path / "a")]


def test_unmount_failure_does_not_mask_original_error(tmp_path: Path, commands) -> None:
    commands.fail_on = lambda command: command == ("umount", str(tmp_path / "b"))
    with pytest.raises(ExecutionError) as excinfo:
        with MountStack() as mounts:
            for name in ("a", "b", "c"):
                mounts.bind("/src", tmp_path / name)
            raise ExecutionError("script failed", returncode=2)
    assert not isinstance(excinfo.value, MountError)
    assert excinfo.value.returncode == 2
    assert any("unmounting" in note for note in excinfo.value.__notes__)
    assert commands.unmounted() == [str(tmp_path / name) for name in ("c", "b", "a")]


def test_unmount_failure_on_clean_exit_raises(tmp_path: Path, commands) -> None:
    commands.fail_on = lambda command: command == ("umount", str(tmp_path / "b"))
    with pytest.raises(MountError, match="unable to unmount"):
        with MountStack() as mounts:
            for name in ("a", "b", "c"):
                mounts.bind("/src", tmp_path / name)
    assert commands.unmounted() == [str(tmp_path / name) for name in ("c", "b", "a")]


def test_each_mount_is_released_once(tmp_path: Path, commands) -> None:
    mounted = Mounted.bind("/src", tmp_path / "a")
    with mounted:
        pass
    mounted.__exit__(None, None, None)
    assert commands.unmounted() == [str(tmp_path / "a")]


def test_mount_point_creation_failure_is_a_mount_error(tmp_path: Path, commands) -> None:
    (tmp_path / "root").write_text("not a directory", encoding="utf-8")
    with pytest.raises(MountError, match="unable to create mount point"):
        with Mounted.bind("/dev", tmp_path / "root" / "dev"):
            pass
    assert commands.commands == []


def test_stack_reports_leaked_mounts(tmp_path: Path, commands) -> None:
    commands.fail_on = lambda command: command[0] == "umount" and command[1] in {
        str(tmp_path / "b"),
        str(tmp_path / "inner"),
    }
    mounts = MountStack()
    with pytest.raises(RuntimeError, match="step failed"):
        with mounts:
            for name in ("a", "b"):
                mounts.bind("/src", tmp_path / name)
            with mounts.track(Mounted.bind("/src", tmp_path / "inner")):
                raise RuntimeError("step failed")
    assert mounts.leaked == [tmp_path / "b", tmp_path / "inner"]


def test_stack_without_failures_reports_nothing_leaked(tmp_path: Path, commands) -> None:
    mounts = MountStack()
    with mounts:
        mounts.bind("/src", tmp_path / "a")
        with mounts.track(Mounted.bind("/src", tmp_path / "inner")):
            pass
    assert mounts.leaked == []
