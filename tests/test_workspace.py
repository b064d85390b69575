from pathlib import Path

import pytest

from clipchain.utils.workspace import TempWorkspace, remove_file


def test_paths_live_inside_a_unique_directory(tmp_path):
    first = TempWorkspace(str(tmp_path))
    second = TempWorkspace(str(tmp_path))

    assert first.directory != second.directory
    assert Path(first.path("clip-0.mp4")).parent == first.directory
    # Names are flattened into the workspace
    assert Path(first.path("../escape.mp4")).parent == first.directory


def test_cleanup_removes_everything_and_is_repeatable(tmp_path):
    workspace = TempWorkspace(str(tmp_path)).create()
    Path(workspace.path("clip-0.mp4")).write_bytes(b"a")
    Path(workspace.path("frame.jpg")).write_bytes(b"b")
    (workspace.directory / "nested").mkdir()

    workspace.cleanup()
    workspace.cleanup()

    assert not workspace.directory.exists()
    assert workspace.files() == []


async def test_async_context_cleans_up_on_error(tmp_path):
    with pytest.raises(RuntimeError):
        async with TempWorkspace(str(tmp_path)) as workspace:
            Path(workspace.path("stitched.mp4")).write_bytes(b"x")
            raise RuntimeError("stitch failed")

    assert list(tmp_path.glob("session-*")) == []


def test_remove_file_tolerates_missing_paths(tmp_path):
    remove_file(str(tmp_path / "gone.mp4"))
    remove_file(None)
