"""
Folding of per-file sidecars into one ZIP archive per directory, and back.

A checkpoint directory at rest holds content copies plus a single metadata
archive; the loose sidecars only exist while a run is writing or comparing.
"""

import os
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, List, Union

from .config import BackupConfig


logger = logging.getLogger('checkpointtool')


def _list_sidecars(directory: Path, config: BackupConfig) -> List[Path]:
    with os.scandir(directory) as entries:
        return sorted(
            Path(entry.path) for entry in entries
            if entry.is_file(follow_symlinks=False) and config.is_sidecar(entry.name)
        )


def read_archive_members(directory: Union[str, Path], config: BackupConfig) -> Dict[str, bytes]:
    """
    Read every member of a directory's metadata archive without modifying it.

    Args:
        directory: Directory that may contain an archive
        config: Backup configuration

    Returns:
        Dict[str, bytes]: Member name to member bytes; empty if there is no archive
    """
    zip_path = Path(directory) / config.archive_name
    if not zip_path.exists():
        return {}
    with zipfile.ZipFile(zip_path, 'r') as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def fold(directory: Union[str, Path], config: BackupConfig) -> int:
    """
    Fold all sidecars of one directory into its metadata archive.

    Members already present in an existing archive are kept unless a loose
    sidecar with the same name replaces them. The archive is written under a
    temporary name and moved into place before any sidecar is deleted.

    Args:
        directory: Directory to fold (not recursive)
        config: Backup configuration

    Returns:
        int: Number of sidecars folded

    Raises:
        OSError: If the archive cannot be written or a sidecar cannot be read or deleted
    """
    directory = Path(directory)
    sidecars = _list_sidecars(directory, config)
    if not sidecars:
        return 0

    zip_path = directory / config.archive_name
    tmp_path = directory / config.archive_tmp_name

    carried = read_archive_members(directory, config)
    loose_names = {p.name for p in sidecars}

    with zipfile.ZipFile(tmp_path, 'w', zipfile.ZIP_DEFLATED) as zf:
        for name, data in sorted(carried.items()):
            if name not in loose_names:
                zf.writestr(name, data)
        for sidecar in sidecars:
            zf.writestr(sidecar.name, sidecar.read_bytes())
    os.replace(tmp_path, zip_path)

    for sidecar in sidecars:
        sidecar.unlink()

    logger.debug(f"Folded {len(sidecars)} sidecars into '{zip_path}'")
    return len(sidecars)


def unfold(directory: Union[str, Path], config: BackupConfig) -> int:
    """
    Expand a directory's metadata archive back into loose sidecars.

    Existing sidecars are never overwritten. Members that are not sidecars, or
    whose names contain a path, are logged and left out. The archive is
    deleted afterwards.

    Returns:
        int: Number of sidecars extracted
    """
    directory = Path(directory)
    zip_path = directory / config.archive_name
    if not zip_path.exists():
        return 0

    extracted = 0
    with zipfile.ZipFile(zip_path, 'r') as zf:
        for info in zf.infolist():
            name = info.filename
            if not config.is_sidecar(name):
                logger.info(f"Skipping non-metadata member in '{zip_path}': {name}")
                continue
            if PurePosixPath(name).name != name or "\\" in name:
                logger.warning(f"Skipping member with a path component in '{zip_path}': {name}")
                continue
            out_path = directory / name
            if out_path.exists():
                logger.info(f"Sidecar already exists, skipping: '{out_path}'")
                continue
            out_path.write_bytes(zf.read(info))
            extracted += 1

    zip_path.unlink()
    logger.debug(f"Unfolded {extracted} sidecars from '{zip_path}'")
    return extracted


def iter_directories(root: Union[str, Path], config: BackupConfig) -> Iterator[Path]:
    """
    Yield root and every subdirectory below it, pruning ignored directories.

    Ignore patterns are matched against paths relative to root.
    """
    root = Path(root)
    for dirpath, dirnames, _ in os.walk(root):
        current = Path(dirpath)
        rel = current.relative_to(root)
        kept = []
        for name in sorted(dirnames):
            if config.is_ignored((rel / name).as_posix()):
                logger.info(f"Ignoring directory '{current / name}'")
                continue
            kept.append(name)
        dirnames[:] = kept
        yield current


def fold_tree(root: Union[str, Path], config: BackupConfig) -> int:
    """Fold every non-ignored directory under root. Returns the total folded."""
    total = sum(fold(directory, config) for directory in iter_directories(root, config))
    logger.info(f"Folded {total} sidecars under '{root}'")
    return total


def unfold_tree(root: Union[str, Path], config: BackupConfig) -> int:
    """Unfold every non-ignored directory under root. Returns the total extracted."""
    total = sum(unfold(directory, config) for directory in iter_directories(root, config))
    logger.info(f"Unfolded {total} sidecars under '{root}'")
    return total
