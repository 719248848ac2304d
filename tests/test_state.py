"""Unit tests for the fingerprint store and the working copy lock."""

import json

import pytest

from pygrive.config import METADATA_DIR_NAME, STATE_FILE_NAME
from pygrive.exceptions import GriveConfigError, GriveLockError
from pygrive.sync.snapshot import EntryKind, PathEntry
from pygrive.sync.state import FingerprintStore, acquire_working_copy_lock


def record(path, checksum="c1"):
    return PathEntry(
        path=path,
        kind=EntryKind.FILE,
        size=2,
        mtime=100.0,
        checksum=checksum,
        remote_id=f"id-{path}",
        remote_revision="rev1",
        parent_id="root",
    )


class TestFingerprintStore:
    """Tests for FingerprintStore."""

    def test_missing_file_is_first_run(self, tmp_path):
        """Test a missing state file loads as an empty store."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        assert len(store) == 0
        assert store.root_id is None
        assert store.last_sync is None

    def test_location_in_metadata_dir(self, tmp_path):
        store = FingerprintStore.for_working_copy(tmp_path)
        assert store.state_file == tmp_path / METADATA_DIR_NAME / STATE_FILE_NAME

    def test_save_and_load(self, tmp_path):
        """Test records and the root ID persist."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        store.record(PathEntry(path="docs", kind=EntryKind.FOLDER, remote_id="d1"))
        store.set_root_id("root")
        store.save(finished=True)

        loaded = FingerprintStore.for_working_copy(tmp_path).load()
        assert loaded.get("a.txt") == record("a.txt")
        assert loaded.get("docs").is_folder
        assert loaded.root_id == "root"
        assert loaded.last_sync is not None

    def test_forget(self, tmp_path):
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        store.save()
        store.forget("a.txt")
        store.save()

        loaded = FingerprintStore.for_working_copy(tmp_path).load()
        assert "a.txt" not in loaded

    def test_snapshot_is_detached(self, tmp_path):
        """Test later mutations do not change an earlier snapshot."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        snapshot = store.snapshot()
        store.forget("a.txt")
        assert "a.txt" in snapshot

    def test_save_leaves_no_temp_files(self, tmp_path):
        """Test the atomic save cleans up after itself."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        store.save()
        names = [p.name for p in (tmp_path / METADATA_DIR_NAME).iterdir()]
        assert names == [STATE_FILE_NAME]

    def test_clean_store_not_rewritten(self, tmp_path):
        """Test saving without changes keeps the file untouched."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        store.save()
        store.state_file.write_text("sentinel", encoding="utf-8")
        store.record(record("a.txt"))
        store.save()
        assert store.state_file.read_text(encoding="utf-8") == "sentinel"

    def test_file_format(self, tmp_path):
        """Test the on-disk layout."""
        store = FingerprintStore.for_working_copy(tmp_path).load()
        store.record(record("a.txt"))
        store.save()
        data = json.loads(store.state_file.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["entries"]["a.txt"]["checksum"] == "c1"

    def test_corrupt_file_raises(self, tmp_path):
        """Test an unreadable state file is reported, not silently reset."""
        state_file = tmp_path / METADATA_DIR_NAME / STATE_FILE_NAME
        state_file.parent.mkdir()
        state_file.write_text("{broken", encoding="utf-8")
        with pytest.raises(GriveConfigError, match="unreadable"):
            FingerprintStore.for_working_copy(tmp_path).load()


class TestWorkingCopyLock:
    """Tests for the working copy lock."""

    def test_second_lock_fails(self, tmp_path):
        """Test a held lock blocks a second run."""
        lock = acquire_working_copy_lock(tmp_path)
        try:
            with pytest.raises(GriveLockError, match="already running"):
                acquire_working_copy_lock(tmp_path)
        finally:
            lock.release()

    def test_lock_released(self, tmp_path):
        lock = acquire_working_copy_lock(tmp_path)
        lock.release()
        acquire_working_copy_lock(tmp_path).release()
