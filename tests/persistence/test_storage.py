"""Tests for checkpoint storage backends."""

from pathlib import Path

import pytest

from playtest_harness.core.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    CheckpointReadError,
    CheckpointWriteError,
)
from playtest_harness.persistence.storage import FileCheckpointStorage, SqliteCheckpointStorage


class TestFileCheckpointStorage:
    async def test_write_read(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)

        location = await storage.write("s1/turn-001.json", '{"a": 1}')

        assert Path(location).read_text(encoding="utf-8") == '{"a": 1}'
        assert await storage.read("s1/turn-001.json") == '{"a": 1}'

    async def test_no_temp_file_left(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)
        await storage.write("s1/turn-001.json", "{}")
        assert [p.name for p in (tmp_path / "s1").iterdir()] == ["turn-001.json"]

    async def test_list_keys_by_prefix(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path)
        for key in ("s1/turn-002.json", "s1/turn-001.json", "s2/turn-001.json"):
            await storage.write(key, "{}")

        assert await storage.list_keys("s1/") == ["s1/turn-001.json", "s1/turn-002.json"]
        assert await storage.list_keys("s3/") == []

    async def test_list_keys_missing_root(self, tmp_path):
        assert await FileCheckpointStorage(tmp_path / "absent").list_keys("") == []

    async def test_read_missing(self, tmp_path):
        with pytest.raises(CheckpointNotFoundError):
            await FileCheckpointStorage(tmp_path).read("s1/turn-001.json")

    async def test_key_cannot_escape_root(self, tmp_path):
        storage = FileCheckpointStorage(tmp_path / "root")
        with pytest.raises(ValueError):
            await storage.write("../outside.json", "{}")

    async def test_write_failure_raises_write_error(self, tmp_path):
        """A path blocked by a regular file cannot be written."""
        (tmp_path / "s1").write_text("not a directory")
        storage = FileCheckpointStorage(tmp_path)

        with pytest.raises(CheckpointWriteError):
            await storage.write("s1/turn-001.json", "{}")

    async def test_unreadable_key_raises_read_error(self, tmp_path):
        """Should report a key that is a directory as unreadable, not missing."""
        (tmp_path / "s1" / "turn-001.json").mkdir(parents=True)
        storage = FileCheckpointStorage(tmp_path)

        with pytest.raises(CheckpointReadError):
            await storage.read("s1/turn-001.json")


class TestSqliteCheckpointStorage:
    async def test_write_read_overwrite(self, tmp_path):
        storage = SqliteCheckpointStorage(tmp_path / "db" / "checkpoints.db")

        location = await storage.write("s1/turn-001.json", "first")
        await storage.write("s1/turn-001.json", "second")

        assert location == f"sqlite://{tmp_path / 'db' / 'checkpoints.db'}#s1/turn-001.json"
        assert await storage.read("s1/turn-001.json") == "second"

    async def test_prefix_is_literal(self, tmp_path):
        """Underscores in session ids must not act as wildcards."""
        storage = SqliteCheckpointStorage(tmp_path / "checkpoints.db")
        await storage.write("run_1/turn-001.json", "{}")
        await storage.write("runx1/turn-001.json", "{}")

        assert await storage.list_keys("run_1/") == ["run_1/turn-001.json"]

    async def test_read_missing(self, tmp_path):
        storage = SqliteCheckpointStorage(tmp_path / "checkpoints.db")
        with pytest.raises(CheckpointNotFoundError):
            await storage.read("s1/turn-001.json")

    async def test_schema_survives_reopen(self, tmp_path):
        path = tmp_path / "checkpoints.db"
        await SqliteCheckpointStorage(path).write("s1/turn-000.json", "{}")
        assert await SqliteCheckpointStorage(path).list_keys("s1/") == ["s1/turn-000.json"]

    async def test_corrupt_database_raises_read_error(self, tmp_path):
        """Should surface a damaged database file as a checkpoint error."""
        path = tmp_path / "checkpoints.db"
        path.write_bytes(b"this is not a sqlite database " * 64)
        storage = SqliteCheckpointStorage(path)

        with pytest.raises(CheckpointReadError):
            await storage.read("s1/turn-001.json")
        with pytest.raises(CheckpointReadError) as exc_info:
            await storage.list_keys("s1/")
        assert isinstance(exc_info.value, CheckpointError)
        assert str(path) in exc_info.value.message
