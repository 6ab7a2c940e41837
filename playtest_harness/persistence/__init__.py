"""Checkpoint persistence."""

from .checkpoint_store import (
    CheckpointStore,
    ReplayOverrides,
    branch_checkpoint,
    build_storage,
    deserialize_checkpoint,
    serialize_checkpoint,
)
from .storage import CheckpointStorage, FileCheckpointStorage, SqliteCheckpointStorage

__all__ = [
    "CheckpointStore",
    "ReplayOverrides",
    "branch_checkpoint",
    "build_storage",
    "deserialize_checkpoint",
    "serialize_checkpoint",
    "CheckpointStorage",
    "FileCheckpointStorage",
    "SqliteCheckpointStorage",
]
