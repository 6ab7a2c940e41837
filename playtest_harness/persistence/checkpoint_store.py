"""
Checkpoint serialization, storage and branching.

A checkpoint is written after every turn and never rewritten. Serialization
is deterministic (sorted keys), so two identical sessions produce identical
bytes. Branching copies a checkpoint under a new session id with a few
configuration fields overridden and records where it came from.
"""

import asyncio
import json
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError

from playtest_harness.core.config import Settings
from playtest_harness.core.exceptions import (
    CheckpointNotFoundError,
    CheckpointReadError,
    InvalidCheckpointFormatError,
)
from playtest_harness.domain.models.checkpoint import CHECKPOINT_VERSION, Checkpoint
from playtest_harness.domain.models.lineage import CheckpointLineage
from playtest_harness.persistence.storage import (
    CheckpointStorage,
    FileCheckpointStorage,
    SqliteCheckpointStorage,
)

log = structlog.get_logger(__name__)

SQLITE_LOCATION_PREFIX = "sqlite://"
_TURN_KEY_RE = re.compile(r"turn-(\d+)\.json$")


def checkpoint_key(session_id: str, turn: int) -> str:
    return f"{session_id}/turn-{turn:03d}.json"


# =============================================================================
# Serialization
# =============================================================================


def serialize_checkpoint(checkpoint: Checkpoint) -> str:
    """Deterministic JSON (sorted keys, 2-space indent)."""
    return json.dumps(checkpoint.model_dump(mode="json"), sort_keys=True, indent=2)


def _major(version: str) -> str:
    return version.split(".", 1)[0]


def deserialize_checkpoint(payload: str, source: str = "<payload>") -> Checkpoint:
    """
    Parse and validate a serialized checkpoint.

    Args:
        payload: JSON text
        source: Where the payload came from, for error messages

    Raises:
        InvalidCheckpointFormatError: Malformed JSON, unsupported version or
            schema violation (message lists the offending fields)
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise InvalidCheckpointFormatError(
            f"Checkpoint {source} is not valid JSON: {e}"
        ) from e

    if not isinstance(data, dict):
        raise InvalidCheckpointFormatError(
            f"Checkpoint {source} must be a JSON object, got {type(data).__name__}"
        )

    version = data.get("version")
    if not isinstance(version, str):
        raise InvalidCheckpointFormatError(
            f"Checkpoint {source} is missing a version tag"
        )
    if _major(version) != _major(CHECKPOINT_VERSION):
        raise InvalidCheckpointFormatError(
            f"Checkpoint {source} has unsupported version {version} "
            f"(supported: {_major(CHECKPOINT_VERSION)}.x)"
        )

    try:
        return Checkpoint.model_validate(data)
    except ValidationError as e:
        fields = sorted(
            {".".join(str(part) for part in err["loc"]) or "<root>" for err in e.errors()}
        )
        # Whole-model checks carry no field location; keep their reason
        reasons = [err["msg"] for err in e.errors() if not err["loc"]]
        detail = f" ({'; '.join(reasons)})" if reasons else ""
        raise InvalidCheckpointFormatError(
            f"Checkpoint {source} failed validation in fields: {', '.join(fields)}{detail}"
        ) from e


# =============================================================================
# Store
# =============================================================================


class CheckpointStore:
    """Saves and loads checkpoints through a CheckpointStorage backend."""

    def __init__(self, storage: CheckpointStorage):
        self.storage = storage

    async def save(self, checkpoint: Checkpoint) -> str:
        """
        Persist a checkpoint.

        Returns:
            Location of the written artifact

        Raises:
            CheckpointWriteError: Backend write failed
        """
        key = checkpoint_key(checkpoint.session_id, checkpoint.turn)
        location = await self.storage.write(key, serialize_checkpoint(checkpoint))
        log.debug(
            "checkpoint_saved",
            session_id=checkpoint.session_id,
            turn=checkpoint.turn,
            location=location,
        )
        return location

    async def load(self, session_id: str, turn: int) -> Checkpoint:
        key = checkpoint_key(session_id, turn)
        return deserialize_checkpoint(await self.storage.read(key), source=key)

    async def load_location(self, location: str) -> Checkpoint:
        """
        Load a checkpoint by the location save() returned.

        Accepts a sqlite location or a filesystem path (a checkpoint file
        copied anywhere on disk still loads).
        """
        if location.startswith(SQLITE_LOCATION_PREFIX):
            _, _, key = location.partition("#")
            if not key:
                raise CheckpointNotFoundError(f"Location has no key: {location}")
            return deserialize_checkpoint(await self.storage.read(key), source=location)

        path = Path(location)
        try:
            payload = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as e:
            raise CheckpointNotFoundError(f"No checkpoint at {path}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointReadError(f"Failed to read {path}: {e}") from e
        return deserialize_checkpoint(payload, source=str(path))

    async def list_turns(self, session_id: str) -> List[int]:
        """Checkpointed turns of a session, ascending."""
        turns = []
        for key in await self.storage.list_keys(f"{session_id}/"):
            match = _TURN_KEY_RE.search(key)
            # Only direct children; branch ids share the parent's prefix
            if match and key == checkpoint_key(session_id, int(match.group(1))):
                turns.append(int(match.group(1)))
        return sorted(turns)

    async def load_latest(self, session_id: str) -> Checkpoint:
        turns = await self.list_turns(session_id)
        if not turns:
            raise CheckpointNotFoundError(f"No checkpoints found for session {session_id}")
        return await self.load(session_id, turns[-1])


def build_storage(config: Settings) -> CheckpointStorage:
    """Storage backend selected by settings.checkpoint_backend."""
    if config.checkpoint_backend == "sqlite":
        return SqliteCheckpointStorage(config.checkpoint_db_path)
    return FileCheckpointStorage(config.checkpoint_dir)


# =============================================================================
# Branching
# =============================================================================


class ReplayOverrides(BaseModel):
    """Configuration fields a branch may change. None means unchanged."""

    system_prompt: Optional[str] = None
    story_guide: Optional[str] = None
    narrator_model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    max_turns: Optional[int] = Field(default=None, ge=1)

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    def describe(self) -> str:
        """Human-readable branch reason, e.g. "Modified: system prompt, temperature -> 0.9"."""
        changes = []
        if self.system_prompt is not None:
            changes.append("system prompt")
        if self.story_guide is not None:
            changes.append("story guide")
        if self.narrator_model is not None:
            changes.append(f"narrator model -> {self.narrator_model}")
        if self.temperature is not None:
            changes.append(f"temperature -> {self.temperature}")
        if self.max_tokens is not None:
            changes.append(f"max tokens -> {self.max_tokens}")
        if self.max_turns is not None:
            changes.append(f"max turns -> {self.max_turns}")
        return f"Modified: {', '.join(changes)}"


def branch_checkpoint(
    checkpoint: Checkpoint,
    overrides: ReplayOverrides,
    new_session_id: Optional[str] = None,
) -> Checkpoint:
    """
    Fork checkpoint under a new session id with overrides applied.

    The source checkpoint is not modified; history, agents and trackers are
    deep-copied into the branch.

    Raises:
        ValueError: No override given, or max_turns below the checkpoint turn
    """
    if overrides.is_empty():
        raise ValueError("A branch needs at least one configuration override")
    if overrides.max_turns is not None and overrides.max_turns <= checkpoint.turn:
        raise ValueError(
            f"max_turns {overrides.max_turns} leaves no turns after turn {checkpoint.turn}"
        )

    config = checkpoint.session_config
    narrator_update: Dict[str, Any] = {}
    if overrides.narrator_model is not None:
        narrator_update["model"] = overrides.narrator_model
    if overrides.temperature is not None:
        narrator_update["temperature"] = overrides.temperature
    if overrides.max_tokens is not None:
        narrator_update["max_tokens"] = overrides.max_tokens

    session_id = new_session_id or (
        f"{checkpoint.session_id}-branch-{uuid.uuid4().hex[:8]}"
    )
    config_update: Dict[str, Any] = {
        "session_id": session_id,
        "narrator": config.narrator.model_copy(update=narrator_update),
    }
    if overrides.system_prompt is not None:
        config_update["system_prompt"] = overrides.system_prompt
    if overrides.story_guide is not None:
        config_update["story_guide"] = overrides.story_guide
    if overrides.max_turns is not None:
        config_update["max_turns"] = overrides.max_turns

    root = (
        checkpoint.lineage.root_session_id
        if checkpoint.lineage is not None
        else checkpoint.session_id
    )
    lineage = CheckpointLineage(
        parent_session_id=checkpoint.session_id,
        parent_turn=checkpoint.turn,
        branch_reason=overrides.describe(),
        root_session_id=root,
    )

    branched = checkpoint.model_copy(deep=True)
    branched = branched.model_copy(
        update={
            "session_id": session_id,
            "session_config": config.model_copy(update=config_update),
            "lineage": lineage,
        }
    )
    log.info(
        "checkpoint_branched",
        parent_session_id=checkpoint.session_id,
        parent_turn=checkpoint.turn,
        session_id=session_id,
        branch_reason=lineage.branch_reason,
    )
    return branched
