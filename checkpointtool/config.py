import argparse
import fnmatch
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Tuple, Union


DEFAULT_IGNORE_PATTERNS = (".git", "__pycache__")
ESCAPE_SUFFIX = "~"


@dataclass(frozen=True)
class BackupConfig:
    """
    Settings shared by every component of a backup run.

    Attributes:
        backup_root (Path): Directory holding checkpoints and the pointer file
        source_root (Optional[Path]): Directory being backed up
        ignore_patterns (Tuple[str, ...]): fnmatch patterns for directories to skip
        meta_ext (str): Extension appended to a file name to name its sidecar
        archive_name (str): File name of the per-directory metadata archive
        pointer_name (str): File name of the latest-checkpoint pointer
        staging_name (str): Directory name of the staging copy
        history_name (str): File name of the committed checkpoint log
        remove_staging (bool): Delete the staging copy at the end of a run
        fail_fast (bool): Abort a walk on the first per-file error
    """

    backup_root: Path = Path("backups")
    source_root: Optional[Path] = None
    ignore_patterns: Tuple[str, ...] = DEFAULT_IGNORE_PATTERNS
    meta_ext: str = ".meta"
    archive_name: str = ".checkpoint_meta.zip"
    pointer_name: str = "latest_checkpoint"
    staging_name: str = ".staging"
    history_name: str = "checkpoint_history"
    remove_staging: bool = True
    fail_fast: bool = False

    def __post_init__(self):
        # Normalise so callers can pass plain strings
        object.__setattr__(self, "backup_root", Path(self.backup_root))
        if self.source_root is not None:
            object.__setattr__(self, "source_root", Path(self.source_root))
        object.__setattr__(self, "ignore_patterns", tuple(self.ignore_patterns))
        if not self.meta_ext.startswith("."):
            raise ValueError(f"Metadata extension must start with '.': {self.meta_ext!r}")

    @property
    def pointer_path(self) -> Path:
        return self.backup_root / self.pointer_name

    @property
    def history_path(self) -> Path:
        return self.backup_root / self.history_name

    @property
    def archive_tmp_name(self) -> str:
        return self.archive_name + ".tmp"

    @property
    def staging_path(self) -> Path:
        return self.backup_root / self.staging_name

    def sidecar_name(self, file_name: str) -> str:
        """Return the sidecar file name for a tracked file name."""
        return file_name + self.meta_ext

    def is_sidecar(self, file_name: str) -> bool:
        return file_name.endswith(self.meta_ext) and file_name != self.meta_ext

    def tracked_name(self, sidecar_name: str) -> str:
        """Inverse of sidecar_name."""
        return sidecar_name[:-len(self.meta_ext)]

    def is_reserved(self, file_name: str) -> bool:
        """True for names that would be mistaken for metadata inside a checkpoint."""
        return self.is_sidecar(file_name) or file_name in (self.archive_name, self.archive_tmp_name)

    def content_name(self, file_name: str) -> str:
        """
        Return the name a file's content copy is stored under in a checkpoint.

        Reserved names get a trailing ESCAPE_SUFFIX so that fold never takes the
        copy for metadata; names already ending in the suffix get one more so
        the mapping stays reversible.
        """
        if self.is_reserved(file_name) or file_name.endswith(ESCAPE_SUFFIX):
            return file_name + ESCAPE_SUFFIX
        return file_name

    def original_name(self, stored_name: str) -> str:
        """Inverse of content_name."""
        if stored_name.endswith(ESCAPE_SUFFIX):
            return stored_name[:-len(ESCAPE_SUFFIX)]
        return stored_name

    def is_ignored(self, relative_path: Union[str, PurePosixPath]) -> bool:
        """
        Check whether a directory should be skipped.

        A pattern matches either the directory's own name or its POSIX path
        relative to the walked root.

        Args:
            relative_path: Directory path relative to the walked root

        Returns:
            bool: True if any ignore pattern matches
        """
        rel = PurePosixPath(relative_path)
        rel_str = rel.as_posix()
        for pattern in self.ignore_patterns:
            if fnmatch.fnmatch(rel.name, pattern) or fnmatch.fnmatch(rel_str, pattern):
                return True
        return False

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "BackupConfig":
        """Build a configuration from parsed command line arguments."""
        patterns = DEFAULT_IGNORE_PATTERNS + tuple(getattr(args, "ignore", None) or ())
        source = getattr(args, "source_directory", None)
        return cls(
            backup_root=Path(args.backup_root),
            source_root=Path(source) if source else None,
            ignore_patterns=patterns,
            remove_staging=not getattr(args, "keep_staging", False),
            fail_fast=getattr(args, "fail_fast", False),
        )
