"""Filesystem and remote operations used while reconciling.

Every method performs one side effect and returns the fingerprint that
should be recorded for the affected path; nothing here touches the
fingerprint store.
"""

import hashlib
import logging
import os
import threading
import time
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from send2trash import send2trash

from ..api import DriveClient
from ..config import PARTIAL_SUFFIX
from ..exceptions import GriveIntegrityError, GriveNotFoundError, GriveStaleEntryError
from ..utils import DEFAULT_CHUNK_SIZE, md5_file, parent_path
from .options import ConflictNaming
from .progress import SyncProgressTracker
from .remote import entry_from_remote
from .snapshot import EntryKind, PathEntry
from .throttle import TransferThrottle, throttled

logger = logging.getLogger(__name__)


def conflict_name(
    path: str,
    naming: ConflictNaming,
    taken: Callable[[str], bool],
    now: Optional[datetime] = None,
) -> str:
    """Choose the path a conflicting copy is preserved under.

    Args:
        path: Original relative path
        naming: Naming scheme
        taken: Returns True if a candidate path is already in use
        now: Time used for the timestamp scheme

    Returns:
        A free sibling path of ``path``

    Examples:
        >>> conflict_name("docs/a.txt", ConflictNaming.FIXED, lambda p: False)
        'docs/a.conflict.txt'
    """
    pure = PurePosixPath(path)
    stem, suffix = pure.stem, pure.suffix
    if naming == ConflictNaming.TIMESTAMP:
        marker = f"conflict-{(now or datetime.now()).strftime('%Y%m%d-%H%M%S')}"
    else:
        marker = "conflict"

    folder = parent_path(path)
    counter = 0
    while True:
        extra = f"-{counter}" if counter else ""
        name = f"{stem}.{marker}{extra}{suffix}"
        candidate = f"{folder}/{name}" if folder else name
        if not taken(candidate):
            return candidate
        counter += 1


class SyncOperations:
    """Side effects of the reconciler against one working copy."""

    def __init__(
        self,
        client: DriveClient,
        root: Path,
        use_local_trash: bool = True,
        upload_throttle: Optional[TransferThrottle] = None,
        download_throttle: Optional[TransferThrottle] = None,
        tracker: Optional[SyncProgressTracker] = None,
        new_revision: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize sync operations.

        Args:
            client: Drive API client
            root: Working copy root
            use_local_trash: Move deleted local entries to the OS trash
            upload_throttle: Shared upload bandwidth limiter
            download_throttle: Shared download bandwidth limiter
            tracker: Progress tracker for transfers
            new_revision: Keep every uploaded revision remotely
            chunk_size: Read size for uploads
        """
        self.client = client
        self.root = root
        self.use_local_trash = use_local_trash
        self.upload_throttle = upload_throttle
        self.download_throttle = download_throttle
        self.tracker = tracker
        self.new_revision = new_revision
        self.chunk_size = chunk_size
        self._reserved: set[str] = set()
        self._reserve_lock = threading.Lock()

    def local_path(self, path: str) -> Path:
        return self.root / path

    def reserve(self, path: str) -> bool:
        """Claim a path for a conflict copy; False if already claimed."""
        with self._reserve_lock:
            if path in self._reserved:
                return False
            self._reserved.add(path)
            return True

    # =========================
    # Local side
    # =========================

    def check_unchanged(self, path: str, expected: Optional[PathEntry]) -> None:
        """Make sure a local path still matches what the scan saw.

        Raises:
            GriveStaleEntryError: If the path appeared, vanished or changed
        """
        target = self.local_path(path)
        if expected is None:
            if target.exists() or target.is_symlink():
                raise GriveStaleEntryError(f"{path} appeared locally during sync")
            return
        if expected.is_folder:
            if not target.is_dir():
                raise GriveStaleEntryError(f"{path} is no longer a local folder")
            return
        try:
            st = target.stat()
        except FileNotFoundError:
            raise GriveStaleEntryError(f"{path} vanished locally during sync")
        if st.st_size != expected.size or st.st_mtime != expected.mtime:
            raise GriveStaleEntryError(f"{path} was modified locally during sync")

    def create_local_folder(self, remote: PathEntry) -> PathEntry:
        target = self.local_path(remote.path)
        target.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Created local folder {remote.path}")
        return PathEntry(
            path=remote.path,
            kind=EntryKind.FOLDER,
            remote_id=remote.remote_id,
            parent_id=remote.parent_id,
        )

    def delete_local(self, local: PathEntry) -> None:
        """Delete a local file or (empty) folder.

        The scanned state is checked first so edits made since the scan are
        never thrown away. A folder must already be empty: its synced
        children are deleted before it, so anything left over (ignored
        files, entries created since the scan) keeps the folder in place
        instead of going to the trash with it.
        """
        self.check_unchanged(local.path, local)
        target = self.local_path(local.path)
        if local.is_folder and any(target.iterdir()):
            raise GriveStaleEntryError(
                f"{local.path} still contains entries that are not synced; "
                "not deleting it"
            )
        if self.use_local_trash:
            send2trash(str(target))
        elif local.is_folder:
            target.rmdir()
        else:
            target.unlink()
        logger.debug(f"Deleted local {local.kind.value} {local.path}")

    def preserve_local(self, local: PathEntry, new_path: str) -> PathEntry:
        """Move a local file aside to ``new_path`` (same folder)."""
        self.check_unchanged(local.path, local)
        target = self.local_path(new_path)
        if target.exists():
            raise GriveStaleEntryError(f"{new_path} already exists locally")
        os.rename(self.local_path(local.path), target)
        logger.info(f"Preserved local copy of {local.path} as {new_path}")
        return local.evolve(path=new_path)

    def download(
        self,
        remote: PathEntry,
        target_path: Optional[str] = None,
        expected_local: Optional[PathEntry] = None,
    ) -> PathEntry:
        """Download a remote file into the working copy.

        Content goes to a hidden partial file next to the target, is checked
        against the remote checksum and then renamed into place, so the
        target is never left half-written.

        Args:
            remote: Remote entry to download
            target_path: Relative destination (defaults to ``remote.path``)
            expected_local: Local entry seen by the scan at the destination

        Returns:
            Fingerprint of the downloaded file

        Raises:
            GriveIntegrityError: If the content does not match the checksum
            GriveStaleEntryError: If the destination changed since the scan
        """
        path = target_path or remote.path
        target = self.local_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.parent / f".{target.name}{PARTIAL_SUFFIX}"

        callback = None
        if self.tracker is not None:
            callback = self.tracker.start_transfer(path, "download", remote.size or 0)

        start = time.time()
        try:
            self.client.download_file(
                remote.remote_id,
                partial,
                progress_callback=callback,
                throttle=self.download_throttle,
            )
            checksum = md5_file(partial)
            if remote.checksum and checksum != remote.checksum:
                raise GriveIntegrityError(
                    f"Checksum mismatch for {path}: expected {remote.checksum}, "
                    f"got {checksum}"
                )
            self.check_unchanged(path, expected_local)
            os.replace(partial, target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        finally:
            if self.tracker is not None:
                self.tracker.finish_transfer(path, "download")

        if remote.mtime is not None:
            os.utime(target, (remote.mtime, remote.mtime))
        st = target.stat()
        logger.debug(f"Download of {path} took {time.time() - start:.2f}s")
        return PathEntry(
            path=path,
            kind=EntryKind.FILE,
            size=st.st_size,
            mtime=st.st_mtime,
            checksum=checksum,
            remote_id=remote.remote_id,
            remote_revision=remote.remote_revision,
            parent_id=remote.parent_id,
        )

    # =========================
    # Remote side
    # =========================

    def create_remote_folder(self, path: str, parent_id: str) -> PathEntry:
        created = self.client.create_folder(PurePosixPath(path).name, parent_id)
        logger.debug(f"Created remote folder {path} ({created.id})")
        return PathEntry(
            path=path,
            kind=EntryKind.FOLDER,
            remote_id=created.id,
            parent_id=created.parent_id or parent_id,
        )

    def _read_chunks(self, source: Path, digest, callback) -> Iterator[bytes]:
        done = 0
        with open(source, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                digest.update(chunk)
                done += len(chunk)
                if callback:
                    callback(done, 0)
                yield chunk

    def upload(
        self,
        local: PathEntry,
        parent_id: str,
        file_id: Optional[str] = None,
        target_path: Optional[str] = None,
    ) -> PathEntry:
        """Upload a local file, creating it or adding a revision.

        Args:
            local: Local entry to upload (as scanned)
            parent_id: Remote folder that receives a new file
            file_id: Existing remote file to update (None creates a file)
            target_path: Relative path the file lives at (defaults to
                ``local.path``)

        Returns:
            Fingerprint of the uploaded file

        Raises:
            GriveIntegrityError: If the remote checksum differs from the
                bytes that were sent
        """
        path = target_path or local.path
        source = self.local_path(path)
        st = source.stat()
        if local.size is not None and (
            st.st_size != local.size or st.st_mtime != local.mtime
        ):
            raise GriveStaleEntryError(f"{path} was modified locally during sync")

        callback = None
        if self.tracker is not None:
            callback = self.tracker.start_transfer(path, "upload", st.st_size)

        digest = hashlib.md5()
        start = time.time()
        try:
            uploaded = self.client.upload_file(
                throttled(
                    self._read_chunks(source, digest, callback), self.upload_throttle
                ),
                st.st_size,
                PurePosixPath(path).name,
                parent_id=parent_id,
                file_id=file_id,
                modified_time=st.st_mtime,
                keep_revision=self.new_revision,
            )
        finally:
            if self.tracker is not None:
                self.tracker.finish_transfer(path, "upload")

        checksum = digest.hexdigest()
        if uploaded.md5_checksum and uploaded.md5_checksum != checksum:
            raise GriveIntegrityError(
                f"Remote checksum of {path} ({uploaded.md5_checksum}) does not "
                f"match the uploaded content ({checksum})"
            )
        logger.debug(f"Upload of {path} took {time.time() - start:.2f}s")
        remote = entry_from_remote(path, uploaded)
        return PathEntry(
            path=path,
            kind=EntryKind.FILE,
            size=st.st_size,
            mtime=st.st_mtime,
            checksum=checksum,
            remote_id=remote.remote_id,
            remote_revision=remote.remote_revision,
            parent_id=remote.parent_id or parent_id,
        )

    def delete_remote(self, remote: PathEntry) -> None:
        """Move a remote entry to the Drive trash.

        An entry that is already gone counts as deleted.
        """
        try:
            self.client.delete_file(remote.remote_id)
        except GriveNotFoundError:
            logger.debug(f"Remote {remote.path} was already deleted")
            return
        logger.debug(f"Trashed remote {remote.kind.value} {remote.path}")

    def preserve_remote(self, remote: PathEntry, new_path: str) -> PathEntry:
        """Rename a remote file to ``new_path`` (same folder)."""
        name = PurePosixPath(new_path).name
        renamed = self.client.rename_file(remote.remote_id, name)
        logger.info(f"Preserved remote copy of {remote.path} as {new_path}")
        entry = entry_from_remote(new_path, renamed)
        if entry.parent_id is None:
            entry = entry.evolve(parent_id=remote.parent_id)
        return entry
