import os
import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import xxhash


logger = logging.getLogger('checkpointtool')

HASH_BLOCK_SIZE = 4096
_HASH_RE = re.compile(r"[0-9a-f]{16}")


class RecordFormatError(ValueError):
    """Raised when a sidecar's content is not a valid change record."""


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def hash_file_content(file_path: Union[str, Path]) -> str:
    """Generate an XXH3-64 hash for a file's content."""
    hasher = xxhash.xxh3_64()
    with open(file_path, 'rb') as f:
        for chunk in iter(lambda: f.read(HASH_BLOCK_SIZE), b''):
            hasher.update(chunk)
    return hasher.hexdigest()


@dataclass(frozen=True)
class ChangeRecord:
    """
    Fingerprint of a single tracked file.

    Two records describe the same content when their size and hash match;
    captured_at is informational only (see unchanged()).
    """

    size: int
    hash: str
    captured_at: datetime = field(default_factory=_now)

    @classmethod
    def capture(cls, path: Union[str, Path]) -> "ChangeRecord":
        """
        Build a record by hashing a file on disk.

        Args:
            path: File to fingerprint

        Returns:
            ChangeRecord: Record stamped with the current time

        Raises:
            FileNotFoundError: If the file does not exist
            PermissionError: If the file cannot be read
            OSError: For any other I/O failure
        """
        size = os.stat(path).st_size
        content_hash = hash_file_content(path)
        return cls(size=size, hash=content_hash)

    @classmethod
    def deserialize(cls, data: bytes) -> "ChangeRecord":
        """
        Parse the three-line sidecar format: size, hash, epoch seconds.

        Raises:
            RecordFormatError: If a line is missing or malformed
        """
        try:
            text = data.decode('ascii')
        except UnicodeDecodeError as e:
            raise RecordFormatError(f"Record is not ASCII text: {e}") from e

        lines = text.splitlines()
        if len(lines) < 1 or not lines[0]:
            raise RecordFormatError("Missing size")
        if len(lines) < 2 or not lines[1]:
            raise RecordFormatError("Missing hash")
        if len(lines) < 3 or not lines[2]:
            raise RecordFormatError("Missing timestamp")

        size_text, content_hash, ts_text = lines[0].strip(), lines[1].strip(), lines[2].strip()

        if not size_text.isdigit():
            raise RecordFormatError(f"Invalid size: {size_text!r}")
        if not _HASH_RE.fullmatch(content_hash):
            raise RecordFormatError(f"Invalid hash: {content_hash!r}")
        try:
            captured_at = datetime.fromtimestamp(int(ts_text), tz=timezone.utc)
        except (ValueError, OverflowError, OSError) as e:
            raise RecordFormatError(f"Invalid timestamp: {ts_text!r}") from e

        return cls(size=int(size_text), hash=content_hash, captured_at=captured_at)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ChangeRecord":
        """Read and parse a sidecar file, naming the file in any format error."""
        with open(path, 'rb') as f:
            data = f.read()
        try:
            return cls.deserialize(data)
        except RecordFormatError as e:
            raise RecordFormatError(f"{path}: {e}") from e

    def serialize(self) -> bytes:
        return f"{self.size}\n{self.hash}\n{int(self.captured_at.timestamp())}\n".encode('ascii')

    def write(self, path: Union[str, Path]) -> None:
        with open(path, 'wb') as f:
            f.write(self.serialize())

    def unchanged(self, other: Optional["ChangeRecord"]) -> bool:
        return unchanged(self, other)


def unchanged(a: Optional[ChangeRecord], b: Optional[ChangeRecord]) -> bool:
    """True iff both records exist and agree on size and hash."""
    if a is None or b is None:
        return False
    return a.size == b.size and a.hash == b.hash
