"""
Stage 3: Update world state.

Best-effort extraction of location, items, NPCs and plot flags from the new
narrator output, then the private-moment payoff check against the same text.
Never raises.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.services.world_state_service import WorldStateService

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class WorldStateStage(TurnStage):
    """
    Apply narrator-described changes to the world state.

    Populates TurnContext.paid_off.
    """

    def __init__(self, world_state_service: WorldStateService):
        self.world_state = world_state_service

    async def process(self, context: "TurnContext") -> "TurnContext":
        state = context.state
        narrator_text = context.narrator_text

        outcome = await self.world_state.update(state.world_state, narrator_text)
        state.world_state = outcome.state
        if outcome.model_used is not None:
            state.cost_tracker.record("classification", outcome.model_used, outcome.usage)

        context.paid_off = state.private_moments.check_payoff(context.turn, narrator_text)
        return context
