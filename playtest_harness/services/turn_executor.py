"""
Turn executor: runs exactly one narrator/player exchange.

The exchange is a TurnPipeline:
    NarratorGeneration -> Classification -> WorldState -> Routing
    -> CharacterCommit -> Checkpoint -> Termination

Turns are strictly sequential per session: execute() returns only after the
checkpoint for the turn has been attempted.
"""

from typing import Optional

import structlog

from playtest_harness.core.exceptions import SessionError
from playtest_harness.core.logging import bind_context
from playtest_harness.domain.models.progress import (
    ProgressCallback,
    ProgressKind,
    emit_progress,
)
from playtest_harness.llm.client import TokenCallback
from playtest_harness.persistence.checkpoint_store import CheckpointStore
from playtest_harness.services.classifier_service import ClassifierService
from playtest_harness.services.discussion_service import DiscussionService
from playtest_harness.services.issue_detector import IssueDetector
from playtest_harness.services.narrator_service import NarratorService
from playtest_harness.services.player_service import PlayerService
from playtest_harness.services.session_state import SessionState
from playtest_harness.services.turn_pipeline import TurnContext, TurnPipeline, TurnResult
from playtest_harness.services.turn_pipeline.stages import (
    CharacterCommitStage,
    CheckpointStage,
    ClassificationStage,
    NarratorGenerationStage,
    RoutingStage,
    TerminationStage,
    WorldStateStage,
)
from playtest_harness.services.world_state_service import WorldStateService

log = structlog.get_logger(__name__)


class TurnExecutor:
    """Executes single turns against a SessionState."""

    def __init__(
        self,
        narrator_service: NarratorService,
        classifier_service: ClassifierService,
        world_state_service: WorldStateService,
        player_service: PlayerService,
        discussion_service: DiscussionService,
        checkpoint_store: CheckpointStore,
        issue_detector: IssueDetector,
    ):
        self.pipeline = TurnPipeline(
            [
                NarratorGenerationStage(narrator_service),
                ClassificationStage(classifier_service),
                WorldStateStage(world_state_service),
                RoutingStage(player_service, discussion_service),
                CharacterCommitStage(world_state_service),
                CheckpointStage(checkpoint_store, issue_detector),
                TerminationStage(),
            ]
        )

    async def execute(
        self,
        state: SessionState,
        turn: int,
        on_token: Optional[TokenCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> TurnResult:
        """
        Run one turn.

        Args:
            state: Live session state (mutated in place)
            turn: Turn number; must be past every turn already in the history
            on_token: Optional streaming callback for narrator tokens
            on_progress: Optional callback for turn progress events

        Returns:
            TurnResult with routing, replies and the continuation decision

        Raises:
            SessionError: Turn out of order or beyond the turn budget
            ModelsExhaustedError: Unrecoverable generation failure
        """
        if turn < 1 or turn <= state.last_turn:
            raise SessionError(
                f"Turn {turn} is not after the last recorded turn {state.last_turn}"
            )
        if turn > state.config.max_turns:
            raise SessionError(
                f"Turn {turn} exceeds the budget of {state.config.max_turns} turns"
            )

        bind_context(turn=turn)
        log.info("turn_started", turn=turn, max_turns=state.config.max_turns)
        emit_progress(
            on_progress,
            ProgressKind.TURN_START,
            state.session_id,
            turn=turn,
            max_turns=state.config.max_turns,
        )

        context = TurnContext(
            state=state, turn=turn, on_token=on_token, on_progress=on_progress
        )
        result = await self.pipeline.execute(context)

        log.info(
            "turn_completed",
            turn=turn,
            routing=result.routing,
            replies=len(result.replies),
            messages=len(state.messages_for_turn(turn)),
            should_continue=result.should_continue,
        )
        return result
