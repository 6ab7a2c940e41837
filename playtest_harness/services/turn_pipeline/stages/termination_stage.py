"""
Stage 7: Decide whether the session continues.

The story ending wins over the turn budget: a story that ends on the last
allowed turn is completed, not timed out.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.domain.models.session import SessionOutcome

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class TerminationStage(TurnStage):
    """
    Populates TurnContext.should_continue, outcome and termination_reason.
    """

    async def process(self, context: "TurnContext") -> "TurnContext":
        if context.classification is None:
            raise RuntimeError(
                "Pipeline contract violation: TerminationStage requires "
                "ClassificationStage to complete first."
            )

        max_turns = context.state.config.max_turns
        if context.classification.is_ending:
            context.should_continue = False
            context.outcome = SessionOutcome.COMPLETED
            context.termination_reason = "story_ended"
        elif context.turn >= max_turns:
            context.should_continue = False
            context.outcome = SessionOutcome.TIMEOUT
            context.termination_reason = "max_turns_reached"

        if not context.should_continue:
            log.info(
                "session_terminating",
                turn=context.turn,
                max_turns=max_turns,
                reason=context.termination_reason,
            )
        return context
