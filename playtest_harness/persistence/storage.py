"""
Key -> blob storage backends for checkpoint artifacts.

The checkpoint store only needs write/read/list over string keys; where the
bytes live is up to the backend:
- FileCheckpointStorage: one file per key under a root directory
- SqliteCheckpointStorage: one row per key in an aiosqlite database
"""

import asyncio
import os
from pathlib import Path
from typing import List, Protocol

import aiosqlite
import structlog

from playtest_harness.core.exceptions import (
    CheckpointNotFoundError,
    CheckpointReadError,
    CheckpointWriteError,
)
from playtest_harness.persistence.database import init_database

log = structlog.get_logger(__name__)


class CheckpointStorage(Protocol):
    """Protocol for checkpoint blob storage."""

    async def write(self, key: str, payload: str) -> str:
        """
        Persist payload under key.

        Returns:
            Backend-specific location of the written blob

        Raises:
            CheckpointWriteError: The write did not complete
        """
        ...

    async def read(self, key: str) -> str:
        """
        Read the payload stored under key.

        Raises:
            CheckpointNotFoundError: Nothing stored under key
            CheckpointReadError: The backend itself could not be read
        """
        ...

    async def list_keys(self, prefix: str) -> List[str]:
        """Keys starting with prefix, sorted.

        Raises:
            CheckpointReadError: The backend itself could not be read
        """
        ...


# =============================================================================
# Filesystem
# =============================================================================


class FileCheckpointStorage:
    """
    Stores each key as a file below root.

    Writes go to a temporary sibling and are renamed into place, so a crash
    mid-write never leaves a truncated checkpoint behind.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"Checkpoint key escapes storage root: {key}")
        return path

    async def write(self, key: str, payload: str) -> str:
        path = self._path(key)
        try:
            await asyncio.to_thread(_atomic_write, path, payload)
        except OSError as e:
            raise CheckpointWriteError(f"Failed to write {path}: {e}") from e
        return str(path)

    async def read(self, key: str) -> str:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as e:
            raise CheckpointNotFoundError(f"No checkpoint at {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointReadError(f"Failed to read {path}: {e}") from e

    async def list_keys(self, prefix: str) -> List[str]:
        return await asyncio.to_thread(self._list_keys, prefix)

    def _list_keys(self, prefix: str) -> List[str]:
        if not self.root.exists():
            return []
        keys = [
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file() and not p.name.endswith(".tmp")
        ]
        return sorted(k for k in keys if k.startswith(prefix))


def _atomic_write(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


# =============================================================================
# SQLite
# =============================================================================


class SqliteCheckpointStorage:
    """Stores each key as a row in the checkpoint_blobs table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def _ensure_schema(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if not self._initialized:
                await init_database(self.db_path)
                self._initialized = True

    async def write(self, key: str, payload: str) -> str:
        try:
            await self._ensure_schema()
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO checkpoint_blobs (key, payload) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "payload = excluded.payload, updated_at = datetime('now')",
                    (key, payload),
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            raise CheckpointWriteError(f"Failed to write {key}: {e}") from e
        return f"sqlite://{self.db_path}#{key}"

    async def read(self, key: str) -> str:
        try:
            await self._ensure_schema()
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT payload FROM checkpoint_blobs WHERE key = ?", (key,)
                )
                row = await cursor.fetchone()
        except (aiosqlite.Error, OSError) as e:
            raise CheckpointReadError(f"Failed to read {key} from {self.db_path}: {e}") from e
        if row is None:
            raise CheckpointNotFoundError(f"No checkpoint stored under {key}")
        return row[0]

    async def list_keys(self, prefix: str) -> List[str]:
        try:
            await self._ensure_schema()
            async with aiosqlite.connect(self.db_path) as db:
                # substr() instead of LIKE so '_' and '%' in session ids stay literal
                cursor = await db.execute(
                    "SELECT key FROM checkpoint_blobs "
                    "WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                )
                rows = await cursor.fetchall()
        except (aiosqlite.Error, OSError) as e:
            raise CheckpointReadError(f"Failed to list {self.db_path}: {e}") from e
        return [row[0] for row in rows]
