import os
import pytest
from pathlib import Path

from checkpointtool.history import RestoreError, list_checkpoints, restore_checkpoint
from tests.conftest import TestBase


class TestTimelineScenarios(TestBase):
    """
    Tests that simulate realistic backup scenarios with several checkpoints.

    Files are modified, added and removed between runs, and every checkpoint
    must restore to exactly the tree that existed when it was taken.
    """

    def _snapshot_tree(self, base_dir):
        """Map relative POSIX paths to file bytes for every file under base_dir."""
        result = {}
        for root, _, files in os.walk(base_dir):
            for name in files:
                path = Path(root) / name
                result[path.relative_to(base_dir).as_posix()] = path.read_bytes()
        return result

    def _create_fixed_file_structure(self):
        files = {
            "file_1.txt": "This is test file 1",
            "file_2.txt": "This is test file 2",
            "dir_1/file_3.txt": "This is test file 3 in dir_1",
            "dir_2/file_4.txt": "This is test file 4 in dir_2",
            "dir_1/subdir_1/file_5.txt": "This is test file 5 in subdir_1",
            "binary_1.bin": b"\x00\x01\x02\x03\x04",
            "dir_2/subdir_2/binary_3.bin": b"\x0A\x0B\x0C\x0D\x0E\x0F",
        }
        for rel, content in files.items():
            self.write(rel, content)

    def _restore_and_compare(self, name, expected):
        target = self.working_dir / f"restore_{name}"
        restore_checkpoint(name, target, self.config)
        assert self._snapshot_tree(target) == expected

    def test_restore_every_checkpoint_in_timeline(self):
        self._create_fixed_file_structure()
        expected = {}

        self.ops.backup("2024-01-01_00-00_00")
        expected["2024-01-01_00-00_00"] = self._snapshot_tree(self.source_dir)

        # Stage 1: modify and add
        self.write("file_1.txt", "This is test file 1 - MODIFIED")
        self.write("dir_1/file_3.txt", "This is test file 3 in dir_1 - MODIFIED")
        self.write("new_file_1.txt", "This is a new file 1")
        self.ops.backup("2024-01-02_00-00_00")
        expected["2024-01-02_00-00_00"] = self._snapshot_tree(self.source_dir)

        # Stage 2: remove and revert
        os.remove(self.source_dir / "dir_2" / "file_4.txt")
        self.write("file_1.txt", "This is test file 1")
        self.ops.backup("2024-01-03_00-00_00")
        expected["2024-01-03_00-00_00"] = self._snapshot_tree(self.source_dir)

        # Stage 3: nothing changes
        self.ops.backup("2024-01-04_00-00_00")
        expected["2024-01-04_00-00_00"] = self._snapshot_tree(self.source_dir)

        for name, tree in expected.items():
            self._restore_and_compare(name, tree)

    def test_unchanged_checkpoints_store_nothing(self):
        self._create_fixed_file_structure()
        self.ops.backup("2024-01-01_00-00_00")
        self.ops.backup("2024-01-02_00-00_00")

        checkpoints = {cp["name"]: cp for cp in list_checkpoints(self.config)}
        first, second = checkpoints["2024-01-01_00-00_00"], checkpoints["2024-01-02_00-00_00"]

        # The default fixture files are present too
        assert first["files"] == second["files"]
        assert first["stored_files"] == first["files"]
        assert second["stored_files"] == 0
        assert second["latest"] and not first["latest"]

    def test_restore_fails_when_content_is_lost(self):
        self._create_fixed_file_structure()
        self.ops.backup("2024-01-01_00-00_00")
        self.ops.backup("2024-01-02_00-00_00")

        os.remove(self.checkpoint("2024-01-01_00-00_00") / "file_2.txt")
        with pytest.raises(RestoreError, match="file_2.txt"):
            restore_checkpoint("2024-01-02_00-00_00", self.restore_dir, self.config)

    def test_restore_unknown_checkpoint(self):
        with pytest.raises(ValueError):
            restore_checkpoint("nope", self.restore_dir, self.config)

    def test_restore_ignores_later_checkpoints(self):
        self.write("file_1.txt", "first")
        self.ops.backup("2024-01-01_00-00_00")
        self.write("file_1.txt", "second")
        self.ops.backup("2024-01-02_00-00_00")

        expected = self._snapshot_tree(self.source_dir)
        expected["file_1.txt"] = b"first"
        self._restore_and_compare("2024-01-01_00-00_00", expected)

    def test_restore_follows_commit_order_not_name_order(self):
        self.write("file_1.txt", "first")
        self.ops.backup("zeta")
        self.write("file_1.txt", "second")
        self.ops.backup("alpha")

        expected = self._snapshot_tree(self.source_dir)
        self._restore_and_compare("alpha", expected)

        expected["file_1.txt"] = b"first"
        self._restore_and_compare("zeta", expected)

    def test_list_follows_commit_order(self):
        self.ops.backup("zeta")
        self.ops.backup("alpha")
        (self.backup_root / "orphan").mkdir()

        names = [cp["name"] for cp in list_checkpoints(self.config)]
        assert names == ["zeta", "alpha", "orphan"]
