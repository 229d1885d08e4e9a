import os
import pytest
import tempfile
import zipfile
from pathlib import Path

from checkpointtool.config import BackupConfig
from checkpointtool.operations import BackupOperations


# ---- Individual fixtures for flexible test composition ----

@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def source_dir(temp_dir):
    """Create a source directory with test files."""
    source_dir = temp_dir / "source"
    os.makedirs(source_dir)
    create_test_files(source_dir)
    return source_dir


@pytest.fixture
def backup_root(temp_dir):
    """Return an (absent) backup root inside the temporary directory."""
    return temp_dir / "backups"


@pytest.fixture
def config(source_dir, backup_root):
    """Create a backup configuration for the source and backup fixtures."""
    return BackupConfig(backup_root=backup_root, source_root=source_dir)


# ---- Base test class for inheritance-based testing ----

class TestBase:
    """Base class for all checkpoint tool tests providing isolation and cleanup."""

    def setUp(self):
        """
        Set up the test environment.

        This method:
        1. Creates a temporary directory
        2. Sets up source, backup and restore directories
        3. Creates test files
        4. Builds the configuration and operations objects
        """
        self.temp_dir = tempfile.TemporaryDirectory()
        self.working_dir = Path(self.temp_dir.name)

        self.source_dir = self.working_dir / "source"
        self.backup_root = self.working_dir / "backups"
        self.restore_dir = self.working_dir / "restore"
        os.makedirs(self.source_dir)
        os.makedirs(self.restore_dir)

        self._create_test_files()

        self.config = BackupConfig(backup_root=self.backup_root, source_root=self.source_dir)
        self.ops = BackupOperations(self.config)

    def tearDown(self):
        """Clean up the temporary directory."""
        try:
            self.temp_dir.cleanup()
        except (PermissionError, OSError) as e:
            print(f"Warning: Could not clean up temporary directory: {e}")

    @pytest.fixture(autouse=True)
    def _setup_teardown_fixture(self):
        """
        Pytest fixture to automatically call setUp and tearDown.

        This fixture is automatically used by all test methods in classes
        that inherit from TestBase.
        """
        self.setUp()
        yield
        self.tearDown()

    def _create_test_files(self):
        """Create test files in the source directory."""
        create_test_files(self.source_dir)

    def write(self, rel_path, content):
        """Create or overwrite a file below the source directory."""
        path = self.source_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
        return path

    def checkpoint(self, name):
        return self.backup_root / name

    def archive_members(self, directory):
        """Return member name -> bytes of a directory's metadata archive."""
        with zipfile.ZipFile(Path(directory) / self.config.archive_name) as zf:
            return {n: zf.read(n) for n in zf.namelist()}


# ---- Helper functions for both approaches ----

def create_test_files(directory, count=5):
    """Create test files in the specified directory."""
    # Create text files
    for i in range(1, count):
        with open(directory / f"file_{i}.txt", "w") as f:
            f.write(f"Content of file {i}")

    # Create a binary file
    with open(directory / "binary.bin", "wb") as f:
        f.write(os.urandom(1024))  # 1KB of random data

    # Create a nested directory
    os.makedirs(directory / "nested" / "deeper")
    with open(directory / "nested" / "inner.txt", "w") as f:
        f.write("Nested content")
    with open(directory / "nested" / "deeper" / "deep.txt", "w") as f:
        f.write("Deep content")
