"""
Stage 6: Persist the turn.

Refreshes the deterministic issue list over the whole transcript and writes
a full checkpoint. A failed write is logged and the session carries on;
earlier checkpoints stay valid.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.core.exceptions import CheckpointWriteError
from playtest_harness.persistence.checkpoint_store import CheckpointStore
from playtest_harness.services.issue_detector import IssueDetector

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class CheckpointStage(TurnStage):
    """
    Snapshot the session after the turn.

    Populates TurnContext.checkpoint_location (None when the write failed).
    """

    def __init__(self, store: CheckpointStore, issue_detector: IssueDetector):
        self.store = store
        self.issues = issue_detector

    async def process(self, context: "TurnContext") -> "TurnContext":
        state = context.state
        state.tangents = self.issues.detect_deterministic(state.history)

        checkpoint = state.to_checkpoint(context.turn)
        try:
            context.checkpoint_location = await self.store.save(checkpoint)
        except CheckpointWriteError as e:
            log.error(
                "checkpoint_write_failed",
                session_id=state.session_id,
                turn=context.turn,
                error=e.message,
            )
        return context
