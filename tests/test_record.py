import pytest
from datetime import datetime, timezone

from checkpointtool.record import ChangeRecord, RecordFormatError, unchanged
from tests.conftest import TestBase


HASH_A = "0123456789abcdef"
HASH_B = "fedcba9876543210"


class TestChangeRecord(TestBase):
    """Test capture, serialization and comparison of change records."""

    def test_capture(self):
        path = self.write("a.txt", "hello")
        before = datetime.now(timezone.utc).replace(microsecond=0)
        record = ChangeRecord.capture(path)

        assert record.size == 5
        assert len(record.hash) == 16
        assert record.captured_at.microsecond == 0
        assert record.captured_at >= before

    def test_capture_missing_file(self):
        with pytest.raises(FileNotFoundError):
            ChangeRecord.capture(self.source_dir / "missing.txt")

    def test_capture_same_content_same_hash(self):
        a = ChangeRecord.capture(self.write("a.txt", "hello"))
        b = ChangeRecord.capture(self.write("sub/b.txt", "hello"))
        assert a.hash == b.hash
        assert unchanged(a, b)

    def test_same_size_different_content(self):
        a = ChangeRecord.capture(self.write("a.txt", "hello"))
        b = ChangeRecord.capture(self.write("b.txt", "jello"))
        assert a.size == b.size
        assert not unchanged(a, b)

    def test_serialize_format(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        record = ChangeRecord(size=42, hash=HASH_A, captured_at=ts)
        assert record.serialize() == f"42\n{HASH_A}\n{int(ts.timestamp())}\n".encode()

    def test_round_trip(self):
        for size, content_hash, ts in [
            (0, HASH_A, 0),
            (5, HASH_B, 1700000000),
            (2 ** 40, "0000000000000000", 4102444800),
        ]:
            record = ChangeRecord(size, content_hash, datetime.fromtimestamp(ts, tz=timezone.utc))
            assert ChangeRecord.deserialize(record.serialize()) == record

    def test_round_trip_of_captured_record(self):
        record = ChangeRecord.capture(self.write("a.txt", "hello"))
        assert ChangeRecord.deserialize(record.serialize()) == record

    def test_deserialize_without_trailing_newline(self):
        record = ChangeRecord.deserialize(f"7\n{HASH_A}\n100".encode())
        assert record.size == 7
        assert record.captured_at == datetime.fromtimestamp(100, tz=timezone.utc)

    @pytest.mark.parametrize("data", [
        b"",
        b"12\n",
        f"12\n{HASH_A}\n".encode(),
        f"abc\n{HASH_A}\n100\n".encode(),
        f"-1\n{HASH_A}\n100\n".encode(),
        b"12\nnot-a-hash\n100\n",
        f"12\n{HASH_A}\nyesterday\n".encode(),
        f"12\n{HASH_A}\n99999999999999999999\n".encode(),
        b"\xff\xfe\n",
    ])
    def test_deserialize_rejects_malformed(self, data):
        with pytest.raises(RecordFormatError):
            ChangeRecord.deserialize(data)

    def test_format_error_is_not_io_error(self):
        assert issubclass(RecordFormatError, ValueError)
        assert not issubclass(RecordFormatError, OSError)

    def test_load_names_path(self):
        sidecar = self.working_dir / "broken.txt.meta"
        sidecar.write_bytes(b"oops\n")
        with pytest.raises(RecordFormatError, match="broken.txt.meta"):
            ChangeRecord.load(sidecar)

    def test_write_and_load(self):
        record = ChangeRecord.capture(self.write("a.txt", "hello"))
        sidecar = self.working_dir / "a.txt.meta"
        record.write(sidecar)
        assert ChangeRecord.load(sidecar) == record

    def test_unchanged_ignores_capture_time(self):
        a = ChangeRecord(5, HASH_A, datetime.fromtimestamp(1, tz=timezone.utc))
        b = ChangeRecord(5, HASH_A, datetime.fromtimestamp(2, tz=timezone.utc))
        assert a != b
        assert a.unchanged(b)
        assert not a.unchanged(ChangeRecord(6, HASH_A))
        assert not a.unchanged(ChangeRecord(5, HASH_B))
        assert not a.unchanged(None)
