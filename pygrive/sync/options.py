"""Resolved options of a single sync run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..exceptions import GriveConfigError
from ..utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, normalize_relative_path
from .modes import SyncMode


class ConflictNaming(str, Enum):
    """How the losing copy of a conflict is renamed."""

    TIMESTAMP = "timestamp"
    """``name.conflict-YYYYmmdd-HHMMSS.ext``"""

    FIXED = "fixed"
    """``name.conflict.ext`` (numbered if already taken)"""


@dataclass
class SyncOptions:
    """Options the engine receives from the command line (or a caller)."""

    dry_run: bool = False
    """Only detect and print changes"""

    upload_only: bool = False
    """Never write remote changes to the local side"""

    download_only: bool = False
    """Never write local changes to the remote side"""

    subdir_filter: Optional[str] = None
    """Restrict the run to this relative subdirectory"""

    force_download: bool = False
    """Resolve conflicts and local modifications in favour of the remote copy"""

    upload_rate_limit: Optional[int] = None
    """Upload ceiling in bytes/second (None = unlimited)"""

    download_rate_limit: Optional[int] = None
    """Download ceiling in bytes/second (None = unlimited)"""

    no_remote_new: bool = False
    """Only download remote changes to files that already exist locally"""

    new_revision: bool = False
    """Ask the remote side to keep every uploaded revision"""

    prefer_local: bool = False
    """Let the local copy win conflicts (remote wins by default)"""

    conflict_naming: ConflictNaming = ConflictNaming.TIMESTAMP
    """Naming scheme for preserved conflict copies"""

    ignore_patterns: list[str] = field(default_factory=list)
    """Additional ignore patterns"""

    use_local_trash: bool = True
    """Move locally deleted files to the OS trash instead of unlinking"""

    max_workers: int = 1
    """Maximum number of concurrent reconciliation operations"""

    max_retries: int = DEFAULT_MAX_RETRIES
    """Per-path retries for transient failures"""

    retry_delay: float = DEFAULT_RETRY_DELAY
    """Base delay of the exponential backoff (seconds)"""

    def validate(self) -> None:
        """Check the options and normalize the subdirectory filter.

        Raises:
            GriveConfigError: If options are contradictory or out of range
        """
        if self.upload_only and self.download_only:
            raise GriveConfigError(
                "--upload-only and --download-only cannot be combined"
            )
        for name in ("upload_rate_limit", "download_rate_limit"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise GriveConfigError(f"{name} must be positive, got {value}")
        if self.max_workers < 1:
            raise GriveConfigError("max_workers must be at least 1")
        if self.max_retries < 0:
            raise GriveConfigError("max_retries cannot be negative")
        if self.subdir_filter:
            try:
                self.subdir_filter = normalize_relative_path(self.subdir_filter) or None
            except ValueError as e:
                raise GriveConfigError(str(e)) from e
        self.conflict_naming = ConflictNaming(self.conflict_naming)

    @property
    def sync_mode(self) -> SyncMode:
        return SyncMode.from_options(self.upload_only, self.download_only)

    @property
    def subdir(self) -> str:
        return self.subdir_filter or ""
