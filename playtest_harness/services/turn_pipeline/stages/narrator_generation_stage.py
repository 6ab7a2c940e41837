"""
Stage 1: Generate narrator output.

Projects the history to what the narrator may see, injects the world-state
block once characters are known, and runs the narrator through the quality
gate retry loop.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.llm.prompts.world_state import format_state_for_injection
from playtest_harness.services.narrator_service import NarratorService

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class NarratorGenerationStage(TurnStage):
    """
    Generate this turn's narrator output.

    Populates TurnContext.narrator_output.
    """

    def __init__(self, narrator_service: NarratorService):
        self.narrator = narrator_service

    async def process(self, context: "TurnContext") -> "TurnContext":
        """
        Generate narrator output for context.turn.

        Raises:
            ModelsExhaustedError: No narrator model produced output
        """
        state = context.state
        config = state.config

        state_block = format_state_for_injection(
            state.world_state, spokesperson=state.group.spokesperson
        )
        output = await self.narrator.generate(
            narrator=config.narrator,
            system_prompt=config.system_prompt,
            history=state.history,
            story_guide=config.story_guide,
            world_state_block=state_block or None,
            on_token=context.on_token,
        )

        for model, usage in zip(output.models, output.usage):
            state.cost_tracker.record("narrator", model, usage)

        context.narrator_output = output
        log.info(
            "narrator_output_generated",
            turn=context.turn,
            model=output.model_used,
            attempts=output.attempts,
            quality_failures=output.quality_failures,
            length=len(output.text),
        )
        return context
