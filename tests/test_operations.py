"""Unit tests for filesystem and remote operations."""

import hashlib
import os
from datetime import datetime

import pytest

from pygrive.exceptions import GriveIntegrityError, GriveStaleEntryError
from pygrive.sync.operations import SyncOperations, conflict_name
from pygrive.sync.options import ConflictNaming
from pygrive.sync.progress import SyncProgressEvent, SyncProgressTracker
from pygrive.sync.remote import RemoteLister
from pygrive.sync.scanner import LocalScanner
from pygrive.sync.throttle import TransferThrottle

from conftest import DEFAULT_MTIME, ROOT_ID


def never_taken(path):
    return False


class TestConflictName:
    """Tests for conflict_name."""

    def test_fixed_name(self):
        assert conflict_name("a.txt", ConflictNaming.FIXED, never_taken) == (
            "a.conflict.txt"
        )

    def test_keeps_folder(self):
        assert conflict_name("docs/a.txt", ConflictNaming.FIXED, never_taken) == (
            "docs/a.conflict.txt"
        )

    def test_without_extension(self):
        assert conflict_name("Makefile", ConflictNaming.FIXED, never_taken) == (
            "Makefile.conflict"
        )

    def test_timestamp_name(self):
        now = datetime(2024, 1, 2, 3, 4, 5)
        name = conflict_name("a.txt", ConflictNaming.TIMESTAMP, never_taken, now=now)
        assert name == "a.conflict-20240102-030405.txt"

    def test_counter_when_taken(self):
        """Test a numbered suffix is added until the name is free."""
        taken = {"a.conflict.txt", "a.conflict-1.txt"}
        name = conflict_name("a.txt", ConflictNaming.FIXED, taken.__contains__)
        assert name == "a.conflict-2.txt"


@pytest.fixture
def operations(fake_drive, workdir):
    return SyncOperations(fake_drive, workdir, use_local_trash=False)


def scan(root, path):
    return LocalScanner().scan(root).snapshot[path]


def remote(fake_drive, path):
    return RemoteLister(fake_drive).list_tree().snapshot[path]


class TestLocalOperations:
    """Tests for operations on the working copy."""

    def test_check_unchanged_detects_edit(self, operations, workdir):
        (workdir / "a.txt").write_bytes(b"one")
        entry = scan(workdir, "a.txt")
        operations.check_unchanged("a.txt", entry)
        (workdir / "a.txt").write_bytes(b"three")
        with pytest.raises(GriveStaleEntryError, match="modified locally"):
            operations.check_unchanged("a.txt", entry)

    def test_check_unchanged_detects_new_path(self, operations, workdir):
        (workdir / "a.txt").write_bytes(b"one")
        with pytest.raises(GriveStaleEntryError, match="appeared"):
            operations.check_unchanged("a.txt", None)

    def test_delete_local_file_and_folder(self, operations, workdir):
        (workdir / "d").mkdir()
        (workdir / "d" / "a.txt").write_bytes(b"x")
        file_entry = scan(workdir, "d/a.txt")
        folder_entry = scan(workdir, "d")

        operations.delete_local(file_entry)
        operations.delete_local(folder_entry)
        assert not (workdir / "d").exists()

    def test_delete_local_refuses_changed_file(self, operations, workdir):
        """Test a file edited after the scan is not deleted."""
        (workdir / "a.txt").write_bytes(b"x")
        entry = scan(workdir, "a.txt")
        (workdir / "a.txt").write_bytes(b"edited")
        with pytest.raises(GriveStaleEntryError):
            operations.delete_local(entry)
        assert (workdir / "a.txt").read_bytes() == b"edited"

    def test_delete_local_uses_trash(self, fake_drive, workdir, monkeypatch):
        trashed = []
        monkeypatch.setattr("pygrive.sync.operations.send2trash", trashed.append)
        (workdir / "a.txt").write_bytes(b"x")
        ops = SyncOperations(fake_drive, workdir, use_local_trash=True)
        ops.delete_local(scan(workdir, "a.txt"))
        assert trashed == [str(workdir / "a.txt")]

    def test_delete_local_keeps_folder_with_unsynced_content(
        self, fake_drive, workdir, monkeypatch
    ):
        """Test a folder still holding ignored files is not trashed."""
        trashed = []
        monkeypatch.setattr("pygrive.sync.operations.send2trash", trashed.append)
        (workdir / "d").mkdir()
        folder_entry = scan(workdir, "d")
        (workdir / "d" / "notes.tmp").write_bytes(b"ignored")
        ops = SyncOperations(fake_drive, workdir, use_local_trash=True)

        with pytest.raises(GriveStaleEntryError, match="not synced"):
            ops.delete_local(folder_entry)
        assert trashed == []
        assert (workdir / "d" / "notes.tmp").read_bytes() == b"ignored"

    def test_preserve_local(self, operations, workdir):
        (workdir / "a.txt").write_bytes(b"mine")
        kept = operations.preserve_local(scan(workdir, "a.txt"), "a.conflict.txt")
        assert kept.path == "a.conflict.txt"
        assert (workdir / "a.conflict.txt").read_bytes() == b"mine"
        assert not (workdir / "a.txt").exists()

    def test_create_local_folder(self, operations, fake_drive, workdir):
        fake_drive.add_folder("docs/sub")
        record = operations.create_local_folder(remote(fake_drive, "docs/sub"))
        assert (workdir / "docs" / "sub").is_dir()
        assert record.is_folder
        assert record.remote_id == fake_drive.find("docs/sub").id


class TestDownload:
    """Tests for SyncOperations.download."""

    def test_download_records_fingerprint(self, operations, fake_drive, workdir):
        """Test downloaded content, mtime and record."""
        fake_drive.add_file("docs/a.txt", b"remote data")
        entry = remote(fake_drive, "docs/a.txt")

        record = operations.download(entry)

        target = workdir / "docs" / "a.txt"
        assert target.read_bytes() == b"remote data"
        assert target.stat().st_mtime == DEFAULT_MTIME
        assert record.checksum == hashlib.md5(b"remote data").hexdigest()
        assert record.remote_revision == entry.remote_revision
        assert record.mtime == target.stat().st_mtime
        assert os.listdir(workdir / "docs") == ["a.txt"]

    def test_checksum_mismatch(self, operations, fake_drive, workdir):
        """Test corrupt content never replaces the target."""
        file_id = fake_drive.add_file("a.txt", b"remote data")
        fake_drive.corrupt.add(file_id)
        with pytest.raises(GriveIntegrityError, match="Checksum mismatch"):
            operations.download(remote(fake_drive, "a.txt"))
        assert os.listdir(workdir) == []

    def test_local_change_during_download(self, operations, fake_drive, workdir):
        """Test a file created locally meanwhile is not overwritten."""
        fake_drive.add_file("a.txt", b"remote data")
        entry = remote(fake_drive, "a.txt")
        (workdir / "a.txt").write_bytes(b"local data")

        with pytest.raises(GriveStaleEntryError):
            operations.download(entry)
        assert (workdir / "a.txt").read_bytes() == b"local data"
        assert os.listdir(workdir) == ["a.txt"]

    def test_download_to_other_path(self, operations, fake_drive, workdir):
        fake_drive.add_file("a.txt", b"remote data")
        record = operations.download(
            remote(fake_drive, "a.txt"), target_path="a.conflict.txt"
        )
        assert record.path == "a.conflict.txt"
        assert (workdir / "a.conflict.txt").read_bytes() == b"remote data"

    def test_progress_reported(self, fake_drive, workdir):
        events = []
        ops = SyncOperations(
            fake_drive, workdir, tracker=SyncProgressTracker(events.append)
        )
        fake_drive.add_file("a.txt", b"12345")
        ops.download(remote(fake_drive, "a.txt"))
        assert [e.event for e in events] == [
            SyncProgressEvent.TRANSFER_START,
            SyncProgressEvent.TRANSFER_PROGRESS,
            SyncProgressEvent.TRANSFER_COMPLETE,
        ]


class TestRemoteOperations:
    """Tests for operations on the remote side."""

    def test_upload_new_file(self, operations, fake_drive, workdir):
        (workdir / "a.txt").write_bytes(b"local data")
        entry = scan(workdir, "a.txt")

        record = operations.upload(entry, ROOT_ID)

        assert fake_drive.tree() == {"a.txt": b"local data"}
        assert record.checksum == entry.checksum
        assert record.remote_id == fake_drive.find("a.txt").id
        assert record.mtime == entry.mtime
        assert record.parent_id == ROOT_ID

    def test_upload_new_revision(self, fake_drive, workdir):
        """Test updating a file keeps its ID and honours --new-rev."""
        file_id = fake_drive.add_file("a.txt", b"old")
        (workdir / "a.txt").write_bytes(b"newer")
        ops = SyncOperations(fake_drive, workdir, new_revision=True)

        record = ops.upload(scan(workdir, "a.txt"), ROOT_ID, file_id=file_id)

        assert record.remote_id == file_id
        assert fake_drive.content[file_id] == b"newer"
        assert fake_drive.calls[-1] == ("upload_file", "a.txt", ROOT_ID, file_id, True)

    def test_upload_is_throttled(self, fake_drive, workdir):
        """Test uploaded bytes are paced by the upload throttle."""
        now = [0.0]
        sleeps = []

        def sleep(seconds):
            sleeps.append(seconds)
            now[0] += seconds

        throttle = TransferThrottle(1000, clock=lambda: now[0], sleep=sleep)
        ops = SyncOperations(
            fake_drive, workdir, upload_throttle=throttle, chunk_size=500
        )
        (workdir / "a.bin").write_bytes(b"x" * 3000)

        ops.upload(scan(workdir, "a.bin"), ROOT_ID)

        assert fake_drive.tree() == {"a.bin": b"x" * 3000}
        assert len(sleeps) == 6
        assert sum(sleeps) >= 3.0 - 1e-9

    def test_upload_refuses_changed_file(self, operations, workdir):
        (workdir / "a.txt").write_bytes(b"one")
        entry = scan(workdir, "a.txt")
        (workdir / "a.txt").write_bytes(b"longer")
        with pytest.raises(GriveStaleEntryError):
            operations.upload(entry, ROOT_ID)

    def test_create_remote_folder(self, operations, fake_drive):
        record = operations.create_remote_folder("docs", ROOT_ID)
        assert record.is_folder
        assert record.remote_id == fake_drive.find("docs").id

    def test_delete_remote(self, operations, fake_drive):
        fake_drive.add_file("a.txt", b"x")
        operations.delete_remote(remote(fake_drive, "a.txt"))
        assert fake_drive.tree() == {}

    def test_delete_remote_already_gone(self, operations, fake_drive):
        """Test deleting an entry that no longer exists succeeds."""
        fake_drive.add_file("a.txt", b"x")
        entry = remote(fake_drive, "a.txt")
        fake_drive.remove("a.txt")
        operations.delete_remote(entry)

    def test_preserve_remote(self, operations, fake_drive):
        fake_drive.add_file("a.txt", b"theirs")
        renamed = operations.preserve_remote(
            remote(fake_drive, "a.txt"), "a.conflict.txt"
        )
        assert renamed.path == "a.conflict.txt"
        assert fake_drive.tree() == {"a.conflict.txt": b"theirs"}
