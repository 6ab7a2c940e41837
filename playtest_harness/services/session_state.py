"""
Mutable runtime state of one session.

SessionState is owned by exactly one session task. Turn stages mutate it in
place; checkpoints are deep-copied snapshots, so nothing written to storage
aliases live objects.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from playtest_harness.domain.models.agent import GroupConfig
from playtest_harness.domain.models.checkpoint import Checkpoint
from playtest_harness.domain.models.lineage import CheckpointLineage
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.session import SessionConfig
from playtest_harness.domain.models.tracking import Issue
from playtest_harness.domain.models.world_state import WorldState
from playtest_harness.services.cost_tracker import CostTracker
from playtest_harness.services.private_moment_tracker import PrivateMomentTracker


@dataclass
class SessionState:
    config: SessionConfig
    group: GroupConfig
    cost_tracker: CostTracker
    private_moments: PrivateMomentTracker
    history: List[Message] = field(default_factory=list)
    world_state: WorldState = field(default_factory=WorldState)
    tangents: List[Issue] = field(default_factory=list)
    lineage: Optional[CheckpointLineage] = None

    @property
    def session_id(self) -> str:
        return self.config.session_id

    @property
    def last_turn(self) -> int:
        """Highest turn in the history (0 before any turn ran)."""
        return max((m.turn for m in self.history), default=0)

    def messages_for_turn(self, turn: int) -> List[Message]:
        return [m for m in self.history if m.turn == turn]

    def to_checkpoint(self, turn: int) -> Checkpoint:
        """Snapshot the session as of the end of turn."""
        return Checkpoint(
            session_id=self.session_id,
            turn=turn,
            conversation_history=[m.model_copy(deep=True) for m in self.history],
            player_agents=[a.model_copy(deep=True) for a in self.group.players],
            spokesperson=self.group.spokesperson,
            session_config=self.config,
            tangents=[t.model_copy(deep=True) for t in self.tangents],
            private_moments=[
                m.model_copy(deep=True) for m in self.private_moments.get_all()
            ],
            world_state=self.world_state.model_copy(deep=True),
            lineage=self.lineage,
        )

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: Checkpoint,
        cost_tracker: CostTracker,
        min_keyword_length: int = 5,
    ) -> "SessionState":
        """Rebuild live state from a checkpoint (deep copies, checkpoint untouched).

        Costs are not part of checkpoints; a resumed session starts a fresh tracker.
        """
        group = GroupConfig(
            players=[a.model_copy(deep=True) for a in checkpoint.player_agents],
            spokesperson=checkpoint.spokesperson,
        )
        return cls(
            config=checkpoint.session_config,
            group=group,
            cost_tracker=cost_tracker,
            private_moments=PrivateMomentTracker.from_moments(
                checkpoint.private_moments, min_keyword_length=min_keyword_length
            ),
            history=[m.model_copy(deep=True) for m in checkpoint.conversation_history],
            world_state=checkpoint.world_state.model_copy(deep=True),
            tangents=[t.model_copy(deep=True) for t in checkpoint.tangents],
            lineage=checkpoint.lineage,
        )
