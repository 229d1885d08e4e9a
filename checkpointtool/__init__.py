"""
Checkpointtool - checkpoint-based incremental directory backups.

Each backup run writes a new checkpoint holding full copies of the files that
changed since the previous checkpoint plus a change record (size, hash,
capture time) for every file, folded into one metadata archive per directory.
"""

__version__ = "0.1.0"
__author__ = "ijd"

# Export public API
from .config import BackupConfig
from .record import ChangeRecord, RecordFormatError
from .chain import CheckpointChain, CheckpointPointer
from .operations import BackupOperations

__all__ = [
    "BackupConfig",
    "ChangeRecord",
    "RecordFormatError",
    "CheckpointChain",
    "CheckpointPointer",
    "BackupOperations",
]
