import os
import shutil
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from .archive import fold_tree, iter_directories, unfold_tree
from .config import BackupConfig
from .record import ChangeRecord
from .walker import CheckpointWriter, TreeDiffWalker, WalkSummary


logger = logging.getLogger('checkpointtool')

CHECKPOINT_NAME_FORMAT = "%Y-%m-%d_%H-%M_%S"


class CheckpointPointer:
    """
    Durable store for the name of the latest committed checkpoint.

    When a history path is given, every commit is also appended to it, so the
    order in which checkpoints were chained survives independently of their names.
    """

    def __init__(self, path: Union[str, Path], history_path: Optional[Union[str, Path]] = None):
        self.path = Path(path)
        self.history_path = Path(history_path) if history_path is not None else None

    def read(self) -> Optional[str]:
        """Return the committed checkpoint name, or None if there is none."""
        try:
            content = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        return content or None

    def history(self) -> List[str]:
        """Return every committed checkpoint name, oldest first."""
        if self.history_path is None:
            return []
        try:
            lines = self.history_path.read_text().splitlines()
        except FileNotFoundError:
            return []
        return [line.strip() for line in lines if line.strip()]

    def commit(self, name: str) -> None:
        """Atomically replace the pointer with a new checkpoint name."""
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(name + "\n")
        os.replace(tmp_path, self.path)
        if self.history_path is not None:
            with open(self.history_path, "a") as f:
                f.write(name + "\n")
        logger.info(f"Updated latest checkpoint pointer '{self.path}' -> {name}")


def validate_checkpoint_name(name: str, config: BackupConfig) -> None:
    """
    Reject names that would not create a plain directory directly under the
    backup root, or that collide with the pointer, history or staging paths.

    Raises:
        ValueError: If the name cannot be used for a checkpoint
    """
    if not name or name != name.strip():
        raise ValueError(f"Invalid checkpoint name {name!r}")
    forbidden = {"/", "\\", "\r", "\n", "\0", os.sep}
    if os.altsep:
        forbidden.add(os.altsep)
    if any(ch in name for ch in forbidden):
        raise ValueError(f"Checkpoint name must not contain path separators: {name!r}")
    if name.startswith("."):
        raise ValueError(f"Checkpoint name must not start with '.': {name!r}")
    reserved = {
        config.pointer_name, config.pointer_name + ".tmp",
        config.history_name, config.staging_name,
    }
    if name in reserved:
        raise ValueError(f"Checkpoint name {name!r} is reserved")


@dataclass(frozen=True)
class CheckpointResult:
    name: str
    path: Path
    previous: Optional[str]
    summary: WalkSummary


def _contains(parent: Path, child: Path) -> bool:
    return child == parent or parent in child.parents


class CheckpointChain:
    """Drives one backup run: stage previous, diff, fold, commit."""

    def __init__(self, config: BackupConfig):
        self.config = config
        self.pointer = CheckpointPointer(config.pointer_path, config.history_path)

    @staticmethod
    def new_checkpoint_name(now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        return now.strftime(CHECKPOINT_NAME_FORMAT)

    def resolve_previous(self) -> Optional[Path]:
        """
        Locate the comparison baseline for the next run.

        Returns:
            Optional[Path]: Directory of the latest committed checkpoint, or None
        """
        name = self.pointer.read()
        if name is None:
            logger.info("No previous checkpoint, every file will be copied")
            return None
        previous = self.config.backup_root / name
        if not previous.is_dir():
            logger.warning(f"Pointer names missing checkpoint '{previous}', ignoring it")
            return None
        return previous

    def stage_previous(self, previous: Path) -> Path:
        """
        Copy the previous checkpoint's metadata archives into the staging
        directory and unfold them there. The committed checkpoint is not touched.

        Returns:
            Path: The staging directory holding loose sidecars
        """
        staging = self.config.staging_path
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        copied = 0
        for directory in iter_directories(previous, self.config):
            archive = directory / self.config.archive_name
            if not archive.is_file():
                continue
            target_dir = staging / directory.relative_to(previous)
            target_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(archive, target_dir / self.config.archive_name)
            copied += 1

        logger.info(f"Staged {copied} metadata archives from '{previous}' into '{staging}'")
        unfold_tree(staging, self.config)
        return staging

    def _check_roots(self, source_root: Path) -> None:
        if not source_root.exists():
            raise ValueError(f"Source directory '{source_root}' does not exist")
        if not source_root.is_dir():
            raise ValueError(f"'{source_root}' is not a directory")
        backup_root = self.config.backup_root.resolve()
        source = source_root.resolve()
        if _contains(source, backup_root) or _contains(backup_root, source):
            raise ValueError(
                f"Source '{source_root}' and backup root '{self.config.backup_root}' must not overlap"
            )

    def run(self, checkpoint_name: Optional[str] = None) -> CheckpointResult:
        """
        Create a new checkpoint of config.source_root.

        The pointer is only updated once the new checkpoint is fully written
        and folded. A failed run leaves the pointer unchanged and the partial
        checkpoint directory on disk.

        Args:
            checkpoint_name (Optional[str]): Name for the new checkpoint, derived
                from the current UTC time when omitted

        Returns:
            CheckpointResult: Name, location, baseline and walk summary

        Raises:
            ValueError: If the source directory is invalid or the checkpoint name is unusable
            FileExistsError: If the checkpoint directory already exists
            OSError: If any filesystem or archive operation fails
        """
        if self.config.source_root is None:
            raise ValueError("No source directory configured")
        source_root = Path(self.config.source_root)
        self._check_roots(source_root)

        name = checkpoint_name if checkpoint_name is not None else self.new_checkpoint_name()
        validate_checkpoint_name(name, self.config)
        self.config.backup_root.mkdir(parents=True, exist_ok=True)
        new_checkpoint = self.config.backup_root / name
        previous = self.resolve_previous()

        logger.info(f"Starting checkpoint {name} of '{source_root}' "
                    f"(previous: {previous.name if previous else 'none'})")

        new_checkpoint.mkdir()
        staging = None
        try:
            if previous is not None:
                staging = self.config.staging_path
                self.stage_previous(previous)

            walker = TreeDiffWalker(self.config)
            writer = CheckpointWriter(self.config)
            summary = writer.apply(walker.walk(source_root, staging), new_checkpoint)

            fold_tree(new_checkpoint, self.config)
            self.pointer.commit(name)
        finally:
            if staging is not None and self.config.remove_staging:
                shutil.rmtree(staging, ignore_errors=True)

        if summary.removed:
            logger.info(f"{len(summary.removed)} files removed since {previous.name}")
        logger.info(f"Checkpoint {name} committed")
        return CheckpointResult(
            name=name,
            path=new_checkpoint,
            previous=previous.name if previous else None,
            summary=summary,
        )


def regenerate_metadata(directory: Union[str, Path], config: BackupConfig) -> int:
    """
    Write and fold a change record for every file under a directory.

    This works outside the checkpoint chain: nothing is compared and the
    pointer is not read or written. Existing sidecars are overwritten.

    Args:
        directory: Tree to fingerprint
        config: Backup configuration (ignore patterns, file names)

    Returns:
        int: Number of records written

    Raises:
        ValueError: If directory is not an existing directory
        OSError: If a file cannot be read or a sidecar cannot be written
    """
    root = Path(directory)
    if not root.is_dir():
        raise ValueError(f"'{directory}' is not a directory")

    written = 0
    for current in iter_directories(root, config):
        with os.scandir(current) as it:
            names = sorted(e.name for e in it if e.is_file(follow_symlinks=False))
        for name in names:
            if config.is_reserved(name):
                continue
            record = ChangeRecord.capture(current / name)
            record.write(current / config.sidecar_name(name))
            written += 1
            logger.debug(f"Created metadata for '{current / name}'")

    fold_tree(root, config)
    logger.info(f"Regenerated {written} records under '{root}'")
    return written
