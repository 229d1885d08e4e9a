import os
import shutil
import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional, Tuple, Union

from .archive import iter_directories, read_archive_members
from .chain import CheckpointPointer
from .config import BackupConfig
from .record import ChangeRecord, RecordFormatError, hash_file_content, unchanged


logger = logging.getLogger('checkpointtool')


class RestoreError(RuntimeError):
    """Raised when a file's content cannot be found anywhere in the chain."""


def checkpoint_names(config: BackupConfig) -> List[str]:
    """Return the names of all checkpoint directories, oldest first."""
    if not config.backup_root.is_dir():
        return []
    with os.scandir(config.backup_root) as it:
        names = [
            e.name for e in it
            if e.is_dir(follow_symlinks=False) and not e.name.startswith(".")
            and e.name != config.staging_name
        ]
    return sorted(names)


def chain_order(config: BackupConfig) -> List[str]:
    """
    Return checkpoint names in the order they were committed.

    Checkpoints missing from the commit history (written by an older version,
    or never committed) follow in name order.
    """
    names = checkpoint_names(config)
    existing = set(names)
    ordered = []
    for name in CheckpointPointer(config.pointer_path, config.history_path).history():
        if name in existing and name not in ordered:
            ordered.append(name)
    return ordered + [n for n in names if n not in ordered]


def _ancestors(name: str, names: List[str], config: BackupConfig) -> List[str]:
    """Return name and the checkpoints committed before it, newest first."""
    history = CheckpointPointer(config.pointer_path, config.history_path).history()
    if name not in history:
        logger.warning(f"Checkpoint {name} is not in the commit history, "
                       f"falling back to name order")
        candidates = [n for n in names if n <= name]
        candidates.reverse()
        return candidates

    last = len(history) - 1 - history[::-1].index(name)
    existing = set(names)
    candidates = []
    for checkpoint in reversed(history[:last + 1]):
        if checkpoint in existing and checkpoint not in candidates:
            candidates.append(checkpoint)
    return candidates


def _content_files(checkpoint_root: Path, config: BackupConfig) -> List[Tuple[PurePosixPath, Path]]:
    """Return (tracked relative path, stored path) for every content copy."""
    files = []
    for directory in iter_directories(checkpoint_root, config):
        rel_dir = PurePosixPath(directory.relative_to(checkpoint_root).as_posix())
        with os.scandir(directory) as it:
            for entry in it:
                if entry.is_file(follow_symlinks=False) and not config.is_reserved(entry.name):
                    files.append((rel_dir / config.original_name(entry.name), Path(entry.path)))
    return sorted(files)


def _stored_path(checkpoint_root: Path, rel: PurePosixPath, config: BackupConfig) -> Path:
    return checkpoint_root.joinpath(*rel.parent.parts) / config.content_name(rel.name)


def load_checkpoint_records(checkpoint_root: Union[str, Path],
                            config: BackupConfig) -> Dict[str, ChangeRecord]:
    """
    Read every change record of a checkpoint without unfolding it.

    Records are taken from each directory's metadata archive and from any
    loose sidecars (a loose sidecar wins over an archive member).

    Returns:
        Dict[str, ChangeRecord]: Records keyed by POSIX path relative to the checkpoint

    Raises:
        RecordFormatError: If a stored record is corrupt
    """
    root = Path(checkpoint_root)
    records: Dict[str, ChangeRecord] = {}
    for directory in iter_directories(root, config):
        rel_dir = PurePosixPath(directory.relative_to(root).as_posix())
        raw = read_archive_members(directory, config)
        with os.scandir(directory) as it:
            for entry in it:
                if entry.is_file(follow_symlinks=False) and config.is_sidecar(entry.name):
                    raw[entry.name] = Path(entry.path).read_bytes()
        for member, data in raw.items():
            if not config.is_sidecar(member):
                continue
            rel = (rel_dir / config.tracked_name(member)).as_posix()
            try:
                records[rel] = ChangeRecord.deserialize(data)
            except RecordFormatError as e:
                raise RecordFormatError(f"{directory / member}: {e}") from e
    return records


def list_checkpoints(config: BackupConfig) -> List[Dict[str, Any]]:
    """
    List checkpoints with their record counts and stored content size.

    Returns:
        List[Dict[str, Any]]: One entry per checkpoint with:
            - name: Checkpoint directory name
            - latest: True for the checkpoint named by the pointer
            - files: Number of change records
            - stored_files: Number of content copies held by this checkpoint
            - size: Size of those content copies in kilobytes
    """
    latest = CheckpointPointer(config.pointer_path).read()
    result = []
    for name in chain_order(config):
        root = config.backup_root / name
        stored = _content_files(root, config)
        size = sum(path.stat().st_size for _, path in stored)
        result.append({
            'name': name,
            'latest': name == latest,
            'files': len(load_checkpoint_records(root, config)),
            'stored_files': len(stored),
            'size': int(size / 1024),
        })
    return result


def restore_checkpoint(name: str, output_directory: Union[str, Path], config: BackupConfig) -> int:
    """
    Rebuild the full source tree as it was when a checkpoint was taken.

    Unchanged files are not stored in every checkpoint, so for each record the
    checkpoint itself and then the checkpoints committed before it (newest
    first, following the commit history) are searched
    for a content copy whose own record has the same size and hash.

    Args:
        name (str): Checkpoint to restore
        output_directory: Directory to restore into (created if missing)
        config: Backup configuration

    Returns:
        int: Number of files restored

    Raises:
        ValueError: If the checkpoint does not exist
        RestoreError: If some file's content is missing from the chain
    """
    names = checkpoint_names(config)
    if name not in names:
        raise ValueError(f"Checkpoint '{name}' does not exist")

    target_root = config.backup_root / name
    output = Path(output_directory)
    output.mkdir(parents=True, exist_ok=True)

    for directory in iter_directories(target_root, config):
        (output / directory.relative_to(target_root)).mkdir(parents=True, exist_ok=True)

    candidates = _ancestors(name, names, config)
    record_cache: Dict[str, Dict[str, ChangeRecord]] = {}

    def records_of(checkpoint: str) -> Dict[str, ChangeRecord]:
        if checkpoint not in record_cache:
            record_cache[checkpoint] = load_checkpoint_records(config.backup_root / checkpoint, config)
        return record_cache[checkpoint]

    targets = records_of(name)
    logger.info(f"Restoring {len(targets)} files from checkpoint {name} to '{output}'")

    restored = 0
    for rel, wanted in sorted(targets.items()):
        source = _find_content(rel, wanted, candidates, records_of, config)
        if source is None:
            raise RestoreError(f"Content for '{rel}' ({wanted.hash}) not found in any checkpoint")
        dest = output.joinpath(*PurePosixPath(rel).parts)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        restored += 1

    logger.info(f"Restored {restored} files from checkpoint {name}")
    return restored


def _find_content(rel: str, wanted: ChangeRecord, candidates: List[str],
                  records_of, config: BackupConfig) -> Optional[Path]:
    for checkpoint in candidates:
        content = _stored_path(config.backup_root / checkpoint, PurePosixPath(rel), config)
        if not content.is_file():
            continue
        if unchanged(records_of(checkpoint).get(rel), wanted):
            return content
    return None


def verify_checkpoint(name: str, config: BackupConfig) -> Tuple[bool, List[Dict[str, Any]]]:
    """
    Re-hash every content copy held by a checkpoint and compare with its record.

    Returns:
        Tuple[bool, List[Dict[str, Any]]]: Whether everything matched, and one
            dict per problem with path, stored_hash and calculated_hash
            (stored_hash is None for a copy that has no record)

    Raises:
        ValueError: If the checkpoint does not exist
    """
    if name not in checkpoint_names(config):
        raise ValueError(f"Checkpoint '{name}' does not exist")

    root = config.backup_root / name
    records = load_checkpoint_records(root, config)
    problems = []
    for rel, path in _content_files(root, config):
        calculated = hash_file_content(path)
        record = records.get(rel.as_posix())
        if record is None or record.hash != calculated or record.size != path.stat().st_size:
            problems.append({
                'path': rel.as_posix(),
                'stored_hash': record.hash if record else None,
                'calculated_hash': calculated,
            })

    if problems:
        logger.warning(f"Checkpoint {name} failed verification: {len(problems)} problems")
    else:
        logger.info(f"Checkpoint {name} verified")
    return not problems, problems
