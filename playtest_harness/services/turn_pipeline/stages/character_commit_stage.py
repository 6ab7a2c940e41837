"""
Stage 5: Commit in-story characters.

Until the world state knows who plays whom, look at this turn's player
replies for character introductions. Matched agents get the locked
character block appended to their system prompt exactly once.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.services.world_state_service import WorldStateService

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class CharacterCommitStage(TurnStage):
    """
    Map players to in-story characters once.

    Populates TurnContext.committed_characters.
    """

    def __init__(self, world_state_service: WorldStateService):
        self.world_state = world_state_service

    async def process(self, context: "TurnContext") -> "TurnContext":
        state = context.state
        if state.world_state.characters or not context.replies:
            return context

        outcome = await self.world_state.try_extract_characters(
            state.world_state, state.history, context.turn, state.group
        )
        state.world_state = outcome.state
        if outcome.model_used is not None:
            state.cost_tracker.record("classification", outcome.model_used, outcome.usage)

        context.committed_characters = outcome.committed
        return context
