"""Checkpoint model: full, immutable snapshot of a session after one turn."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from playtest_harness.domain.models.agent import PlayerAgent
from playtest_harness.domain.models.lineage import CheckpointLineage
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.session import SessionConfig
from playtest_harness.domain.models.tracking import Issue, PrivateMoment
from playtest_harness.domain.models.world_state import WorldState

# Bump the major part when a change breaks older readers
CHECKPOINT_VERSION = "1.1.0"


class Checkpoint(BaseModel):
    """Snapshot keyed by (session_id, turn).

    Everything needed to resume the session lives here; nothing refers to
    live objects.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = CHECKPOINT_VERSION
    session_id: str
    turn: int = Field(ge=0)
    conversation_history: List[Message]
    player_agents: List[PlayerAgent] = Field(min_length=1)
    spokesperson: str
    session_config: SessionConfig
    tangents: List[Issue] = Field(default_factory=list)
    private_moments: List[PrivateMoment] = Field(default_factory=list)
    world_state: WorldState = Field(default_factory=WorldState)
    lineage: Optional[CheckpointLineage] = None

    @model_validator(mode="after")
    def check_group_and_history(self) -> "Checkpoint":
        """Spokesperson must be a player; no message may postdate the snapshot."""
        names = [a.name for a in self.player_agents]
        if self.spokesperson not in names:
            raise ValueError(
                f"Spokesperson {self.spokesperson!r} is not one of the players {names}"
            )
        late = sorted({m.turn for m in self.conversation_history if m.turn > self.turn})
        if late:
            raise ValueError(
                f"History contains turns {late} after checkpoint turn {self.turn}"
            )
        return self
