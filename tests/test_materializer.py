"""Tests for writing snapshots to the config directory."""

import logging
from pathlib import Path

import pytest

from configmap_sync.domain import ConfigSnapshot
from configmap_sync.errors import SyncError
from configmap_sync.reload import Materializer
from helpers import snapshot


def files_under(root: Path) -> dict[str, bytes]:
    return {
        p.relative_to(root).as_posix(): p.read_bytes() for p in root.rglob("*") if p.is_file()
    }


@pytest.fixture
def materializer(tmp_path: Path) -> Materializer:
    m = Materializer(tmp_path / "config")
    m.ensure_root()
    return m


class TestMaterializerSync:
    """Tests for Materializer.sync()."""

    def test_writes_entries(self, materializer: Materializer):
        materializer.sync(snapshot(a_conf="x=1", b_conf="y=2"))
        assert files_under(materializer.root) == {"a.conf": b"x=1", "b.conf": b"y=2"}
        assert materializer.written_files == {
            materializer.root / "a.conf",
            materializer.root / "b.conf",
        }

    def test_removes_entries_no_longer_present(self, materializer: Materializer):
        """Switching from a.conf to b.conf leaves only b.conf."""
        materializer.sync(snapshot(a_conf="x=1"))
        materializer.sync(snapshot(b_conf="y=2"))
        assert files_under(materializer.root) == {"b.conf": b"y=2"}
        assert materializer.written_files == {materializer.root / "b.conf"}

    def test_overwrites_changed_content(self, materializer: Materializer):
        materializer.sync(snapshot(a_conf="a much longer value"))
        materializer.sync(snapshot(a_conf="short"))
        assert (materializer.root / "a.conf").read_bytes() == b"short"

    def test_leaves_foreign_files_alone(self, materializer: Materializer):
        """Only files we wrote are ever deleted."""
        (materializer.root / "keep.me").write_text("mine")
        materializer.sync(snapshot(a_conf="x=1"))
        materializer.sync(snapshot(b_conf="y=2"))
        assert (materializer.root / "keep.me").read_text() == "mine"
        assert not (materializer.root / "a.conf").exists()

    def test_nested_keys_create_directories(self, materializer: Materializer):
        materializer.sync(ConfigSnapshot({"conf.d/site.conf": b"listen 80;"}))
        assert (materializer.root / "conf.d" / "site.conf").read_bytes() == b"listen 80;"

    def test_binary_content_is_written_verbatim(self, materializer: Materializer):
        payload = bytes(range(256))
        materializer.sync(ConfigSnapshot({"blob.bin": payload}))
        assert (materializer.root / "blob.bin").read_bytes() == payload

    def test_empty_snapshot_clears_written_files(self, materializer: Materializer):
        materializer.sync(snapshot(a_conf="x=1"))
        materializer.sync(ConfigSnapshot({}))
        assert files_under(materializer.root) == {}
        assert materializer.written_files == frozenset()

    def test_missing_obsolete_file_is_ignored(self, materializer: Materializer, caplog):
        """A file removed behind our back only produces a warning."""
        materializer.sync(snapshot(a_conf="x=1"))
        (materializer.root / "a.conf").unlink()

        with caplog.at_level(logging.WARNING):
            materializer.sync(snapshot(b_conf="y=2"))

        assert "unexpectedly does not exist" in caplog.text
        assert files_under(materializer.root) == {"b.conf": b"y=2"}

    def test_delete_failure_raises(self, materializer: Materializer):
        materializer.sync(snapshot(a_conf="x=1"))
        target = materializer.root / "a.conf"
        target.unlink()
        target.mkdir()
        (target / "inner").write_text("blocks unlink")

        with pytest.raises(SyncError, match="Could not delete obsolete file"):
            materializer.sync(snapshot(b_conf="y=2"))
        assert not (materializer.root / "b.conf").exists()

    def test_partial_write_is_still_tracked(self, materializer: Materializer):
        """Files that landed before a write failure are removed by the next sync."""
        broken = ConfigSnapshot({"a": b"file", "a/b": b"needs a to be a directory"})
        with pytest.raises(SyncError) as exc_info:
            materializer.sync(broken)

        assert exc_info.value.path == materializer.root / "a" / "b"
        assert materializer.root / "a" in materializer.written_files

        materializer.sync(snapshot(c_conf="z=3"))
        assert files_under(materializer.root) == {"c.conf": b"z=3"}

    def test_failed_write_forgets_deleted_files(self, materializer: Materializer, caplog):
        """Files removed before a write failure are not deleted a second time."""
        materializer.sync(snapshot(a_conf="x=1"))
        with pytest.raises(SyncError):
            materializer.sync(ConfigSnapshot({"b": b"file", "b/c": b"needs b to be a directory"}))

        assert materializer.root / "a.conf" not in materializer.written_files
        with caplog.at_level(logging.WARNING):
            materializer.sync(snapshot(c_conf="z=3"))

        assert "unexpectedly does not exist" not in caplog.text
        assert files_under(materializer.root) == {"c.conf": b"z=3"}


class TestTargetPath:
    """Tests for Materializer.target_path() key validation."""

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "../escape", "a/../../b", "dir/", "."])
    def test_rejects_invalid_keys(self, materializer: Materializer, key: str):
        with pytest.raises(SyncError):
            materializer.target_path(key)

    def test_invalid_key_aborts_before_deleting(self, materializer: Materializer):
        """Validation happens before anything on disk changes."""
        materializer.sync(snapshot(a_conf="x=1"))
        with pytest.raises(SyncError):
            materializer.sync(ConfigSnapshot({"ok.conf": b"1", "../bad": b"2"}))
        assert files_under(materializer.root) == {"a.conf": b"x=1"}

    def test_resolves_under_root(self, materializer: Materializer):
        assert materializer.target_path("a/b.conf") == materializer.root / "a" / "b.conf"


class TestEnsureRoot:
    """Tests for Materializer.ensure_root()."""

    def test_creates_missing_parents(self, tmp_path: Path):
        m = Materializer(tmp_path / "deep" / "er" / "config")
        m.ensure_root()
        assert m.root.is_dir()

    def test_relative_root_is_made_absolute(self):
        assert Materializer(Path("relative")).root.is_absolute()
