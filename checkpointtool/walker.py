"""
Recursive diff of a source tree against the previous checkpoint's metadata.

The walk is split in two: TreeDiffWalker reads the source tree and the
unfolded baseline and yields WalkEvent values describing what should happen;
CheckpointWriter consumes those events and performs the copies and sidecar
writes into the new checkpoint.
"""

import os
import shutil
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, List, Optional, Set, Tuple, Union

from .config import BackupConfig
from .record import ChangeRecord, RecordFormatError, unchanged


logger = logging.getLogger('checkpointtool')


class FileAction(Enum):
    COPY = "copy"
    RECORD_ONLY = "record_only"


class EventKind(Enum):
    DIRECTORY = "directory"
    SKIPPED_DIRECTORY = "skipped_directory"
    FILE = "file"
    FAILED = "failed"
    REMOVED = "removed"


@dataclass(frozen=True)
class WalkEvent:
    kind: EventKind
    relative_path: PurePosixPath
    source_path: Optional[Path] = None
    current: Optional[ChangeRecord] = None
    last: Optional[ChangeRecord] = None
    action: Optional[FileAction] = None
    error: Optional[str] = None


@dataclass
class WalkSummary:
    directories: int = 0
    skipped_directories: int = 0
    copied: int = 0
    unchanged: int = 0
    bytes_copied: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def files(self) -> int:
        return self.copied + self.unchanged


def classify(last: Optional[ChangeRecord], current: ChangeRecord) -> FileAction:
    """Decide whether a file's content has to be stored in the new checkpoint."""
    if last is not None and unchanged(last, current):
        return FileAction.RECORD_ONLY
    return FileAction.COPY


class TreeDiffWalker:
    """Compares a live source tree with an unfolded baseline checkpoint."""

    def __init__(self, config: BackupConfig):
        self.config = config

    def walk(self, source_root: Union[str, Path],
             baseline_root: Optional[Union[str, Path]] = None) -> Iterator[WalkEvent]:
        """
        Walk source_root and yield one event per directory and file.

        Nothing is written. After the traversal, REMOVED events are yielded
        for baseline sidecars whose file no longer exists in the source.

        Args:
            source_root: Tree being backed up
            baseline_root: Unfolded staging copy of the previous checkpoint, or None

        Yields:
            WalkEvent: Directory, file, failure and removal events

        Raises:
            OSError: On a per-file read failure when fail_fast is set, or when a
                directory cannot be listed
            RecordFormatError: On a corrupt baseline sidecar when fail_fast is set
        """
        source_root = Path(source_root)
        baseline = Path(baseline_root) if baseline_root is not None else None
        seen: Set[PurePosixPath] = set()

        yield from self._walk_dir(source_root, PurePosixPath(), baseline, seen)

        if baseline is not None and baseline.is_dir():
            yield from self._removed(baseline, seen)

    def _walk_dir(self, directory: Path, rel_dir: PurePosixPath,
                  baseline: Optional[Path], seen: Set[PurePosixPath]) -> Iterator[WalkEvent]:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            rel = rel_dir / entry.name
            path = Path(entry.path)

            if entry.is_dir(follow_symlinks=False):
                if self.config.is_ignored(rel):
                    logger.info(f"Ignoring directory '{path}'")
                    yield WalkEvent(EventKind.SKIPPED_DIRECTORY, rel, source_path=path)
                    continue
                yield WalkEvent(EventKind.DIRECTORY, rel, source_path=path)
                yield from self._walk_dir(path, rel, baseline, seen)
            elif entry.is_file(follow_symlinks=False):
                seen.add(rel)
                yield self._file_event(path, rel, baseline)
            else:
                logger.debug(f"Skipping non-regular entry '{path}'")

    def _file_event(self, path: Path, rel: PurePosixPath, baseline: Optional[Path]) -> WalkEvent:
        try:
            last = self._load_last(rel, baseline)
            current = ChangeRecord.capture(path)
        except (OSError, RecordFormatError) as e:
            if self.config.fail_fast:
                raise
            logger.warning(f"Could not process file '{path}': {e}")
            return WalkEvent(EventKind.FAILED, rel, source_path=path, error=str(e))

        action = classify(last, current)
        return WalkEvent(EventKind.FILE, rel, source_path=path,
                         current=current, last=last, action=action)

    def _load_last(self, rel: PurePosixPath, baseline: Optional[Path]) -> Optional[ChangeRecord]:
        if baseline is None:
            return None
        sidecar = baseline.joinpath(*rel.parent.parts) / self.config.sidecar_name(rel.name)
        if not sidecar.is_file():
            return None
        return ChangeRecord.load(sidecar)

    def _removed(self, baseline: Path, seen: Set[PurePosixPath]) -> Iterator[WalkEvent]:
        for dirpath, dirnames, filenames in os.walk(baseline):
            rel_dir = PurePosixPath(Path(dirpath).relative_to(baseline).as_posix())
            dirnames[:] = sorted(d for d in dirnames if not self.config.is_ignored(rel_dir / d))
            for name in sorted(filenames):
                if not self.config.is_sidecar(name):
                    continue
                rel = rel_dir / self.config.tracked_name(name)
                if rel not in seen:
                    logger.info(f"File removed since last checkpoint: '{rel}'")
                    yield WalkEvent(EventKind.REMOVED, rel)


class CheckpointWriter:
    """Applies walk events to a new checkpoint directory."""

    def __init__(self, config: BackupConfig):
        self.config = config

    def apply(self, events: Iterable[WalkEvent], checkpoint_root: Union[str, Path]) -> WalkSummary:
        """
        Mirror directories, copy changed files and write every sidecar.

        Content is copied before its sidecar is written. Any write failure
        propagates and aborts the run.

        Args:
            events: Events produced by TreeDiffWalker.walk
            checkpoint_root: Root of the checkpoint being written

        Returns:
            WalkSummary: Aggregate counts, failures and removals
        """
        root = Path(checkpoint_root)
        root.mkdir(parents=True, exist_ok=True)
        summary = WalkSummary()

        for event in events:
            dest = root.joinpath(*event.relative_path.parts)

            if event.kind is EventKind.DIRECTORY:
                dest.mkdir(parents=True, exist_ok=True)
                summary.directories += 1
            elif event.kind is EventKind.SKIPPED_DIRECTORY:
                summary.skipped_directories += 1
            elif event.kind is EventKind.FAILED:
                summary.failures.append((event.relative_path.as_posix(), event.error or ""))
            elif event.kind is EventKind.REMOVED:
                summary.removed.append(event.relative_path.as_posix())
            elif event.kind is EventKind.FILE:
                self._write_file(event, dest)
                if event.action is FileAction.COPY:
                    summary.copied += 1
                    summary.bytes_copied += event.current.size
                else:
                    summary.unchanged += 1

        if summary.failures:
            logger.warning(f"Skipped {len(summary.failures)} files due to errors")
        logger.info(f"Wrote checkpoint '{root}': {summary.copied} copied, "
                    f"{summary.unchanged} unchanged, {summary.directories} directories")
        return summary

    def _write_file(self, event: WalkEvent, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        if event.action is FileAction.COPY:
            # Names like "notes.meta" are stored escaped so fold leaves them alone
            stored = dest.with_name(self.config.content_name(dest.name))
            shutil.copy2(event.source_path, stored)
            logger.debug(f"Copied '{event.source_path}' -> '{stored}'")
        else:
            logger.debug(f"No changes for '{event.source_path}'")
        event.current.write(dest.parent / self.config.sidecar_name(dest.name))
