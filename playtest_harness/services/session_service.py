"""
Session orchestration service.

Main entry point for running playtest sessions:
1. Generate the group (archetypes, identities, spokesperson)
2. Freeze the SessionConfig
3. Pre-game banter at turn 0 (sequential discussion, no synthesis)
4. Turns 1..max_turns through the TurnExecutor
5. Finalize: full issue detection, unpaid private moments, post-game
   feedback (completed sessions only), cost breakdown

Also resumes sessions from checkpoints, branches them under modified
configuration, and runs independent sessions in parallel.
"""

import asyncio
import random
import time
from typing import Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

from playtest_harness.core.archetype_loader import Archetype, load_all_archetypes
from playtest_harness.core.config import HarnessConfig, Settings
from playtest_harness.core.exceptions import CheckpointWriteError, SessionError
from playtest_harness.core.logging import bind_context, clear_context
from playtest_harness.domain.models.agent import GroupConfig
from playtest_harness.domain.models.checkpoint import Checkpoint
from playtest_harness.domain.models.feedback import SessionFeedback
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.progress import (
    ProgressCallback,
    ProgressKind,
    emit_progress,
)
from playtest_harness.domain.models.session import (
    GroupComposition,
    NarratorConfig,
    SessionConfig,
    SessionOutcome,
    SessionRequest,
    SessionResult,
)
from playtest_harness.llm.client import BackendRegistry, TokenCallback
from playtest_harness.llm.prompts.players import get_pregame_prompt
from playtest_harness.persistence.checkpoint_store import (
    CheckpointStore,
    ReplayOverrides,
    branch_checkpoint,
)
from playtest_harness.services.character_service import CharacterService
from playtest_harness.services.classifier_service import ClassifierService
from playtest_harness.services.cost_tracker import CostTracker
from playtest_harness.services.discussion_service import DiscussionService
from playtest_harness.services.feedback_service import FeedbackService, synthesize_feedback
from playtest_harness.services.issue_detector import IssueDetector
from playtest_harness.services.narrator_service import NarratorService
from playtest_harness.services.player_service import PlayerService
from playtest_harness.services.private_moment_tracker import PrivateMomentTracker
from playtest_harness.services.protocols import IQualityGate
from playtest_harness.services.quality_gate import PatternQualityGate
from playtest_harness.services.session_state import SessionState
from playtest_harness.services.turn_executor import TurnExecutor
from playtest_harness.services.world_state_service import WorldStateService

log = structlog.get_logger(__name__)


class SessionService:
    """Runs complete sessions against one backend registry and checkpoint store.

    Sessions share no mutable state; one service instance can run many
    sessions concurrently.
    """

    def __init__(
        self,
        config: Settings,
        registry: BackendRegistry,
        store: CheckpointStore,
        harness_config: Optional[HarnessConfig] = None,
        archetypes: Optional[Dict[str, Archetype]] = None,
        quality_gate: Optional[IQualityGate] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize session service and its collaborators.

        Args:
            config: Application settings (models, retry budgets, defaults)
            registry: Backend registry used by every generative call
            store: Checkpoint store
            harness_config: Harness tuning (defaults when None)
            archetypes: Archetypes by id (loaded from YAML when None)
            quality_gate: Narrator quality gate (PatternQualityGate when None)
            rng: Random source for group composition and spokesperson choice
        """
        self.config = config
        self.harness = harness_config or HarnessConfig()
        self.store = store

        self.players = PlayerService(
            registry,
            fallback_models=config.player_fallback_models,
            retries_per_model=config.retries_per_model,
            context_messages=self.harness.history.player_context_messages,
        )
        self.discussion = DiscussionService(
            self.players, context_messages=self.harness.history.player_context_messages
        )
        self.characters = CharacterService(
            registry,
            archetypes if archetypes is not None else load_all_archetypes(),
            model=config.character_model,
            fallback_models=config.player_fallback_models,
            retries_per_model=config.retries_per_model,
            rng=rng,
        )
        self.feedback = FeedbackService(
            registry,
            model=config.feedback_model,
            fallback_models=config.classification_models,
            retries_per_model=config.retries_per_model,
        )
        self.issues = IssueDetector(
            self.harness.issues,
            registry=registry,
            model=config.utility_model,
            fallback_models=config.classification_models,
        )
        world_state = WorldStateService(
            registry,
            model=config.utility_model,
            fallback_models=config.classification_models,
            retries_per_model=config.retries_per_model,
        )
        self.executor = TurnExecutor(
            narrator_service=NarratorService(
                registry,
                quality_gate or PatternQualityGate(),
                fallback_models=config.narrator_fallback_models,
                retries_per_model=config.retries_per_model,
                max_quality_attempts=config.narrator_quality_retries,
            ),
            classifier_service=ClassifierService(
                registry,
                config.classification_models,
                retries_per_model=config.classification_retries_per_model,
            ),
            world_state_service=world_state,
            player_service=self.players,
            discussion_service=self.discussion,
            checkpoint_store=store,
            issue_detector=self.issues,
        )

    # ==========================================================================
    # Public API
    # ==========================================================================

    async def run_session(
        self,
        request: SessionRequest,
        on_token: Optional[TokenCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SessionResult:
        """
        Run a complete session from group generation to finalization.

        Never raises for session failures: the result carries outcome
        "failed" and the error text instead.
        """
        start = time.perf_counter()
        session_id = request.session_id or str(uuid4())
        bind_context(session_id=session_id)
        state: Optional[SessionState] = None
        cost = CostTracker(self.config)

        try:
            archetype_ids = request.archetypes or self.characters.choose_archetypes(
                request.group_size,
                min_size=self.harness.group.min_size,
                max_size=self.harness.group.max_size,
            )
            log.info("session_started", archetypes=archetype_ids, story=request.story.title)

            emit_progress(on_progress, ProgressKind.GENERATING_GROUP, session_id)
            group = await self.characters.create_group(archetype_ids, request.story, cost)
            emit_progress(
                on_progress,
                ProgressKind.GROUP_READY,
                session_id,
                players=group.player_names,
                player=group.spokesperson,
            )
            session_config = self._build_config(session_id, request, archetype_ids, group)
            state = SessionState(
                config=session_config,
                group=group,
                cost_tracker=cost,
                private_moments=PrivateMomentTracker(
                    self.harness.private_moments.min_keyword_length
                ),
            )

            await self._run_pregame(state, on_progress)
            outcome = await self._run_loop(
                state, start_turn=1, on_token=on_token, on_progress=on_progress
            )
            return await self._finalize(state, outcome, start, on_progress=on_progress)

        except Exception as e:
            log.error("session_failed", error_type=type(e).__name__, error=str(e), exc_info=True)
            if state is not None:
                return await self._finalize(
                    state, SessionOutcome.FAILED, start, error=e, on_progress=on_progress
                )
            emit_progress(on_progress, ProgressKind.FAILED, session_id, error=_describe(e))
            return SessionResult(
                session_id=session_id,
                outcome=SessionOutcome.FAILED,
                duration_seconds=time.perf_counter() - start,
                cost_breakdown=cost.get_breakdown(),
                error=_describe(e),
            )
        finally:
            clear_context()

    async def resume_session(
        self,
        checkpoint: Checkpoint,
        on_token: Optional[TokenCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SessionResult:
        """
        Continue a session from checkpoint.turn + 1 with restored trackers.

        A checkpoint already at its turn budget finalizes as a timeout
        without running any turn. A checkpoint whose state cannot be
        rebuilt yields a failed result instead of raising.
        """
        start = time.perf_counter()
        bind_context(session_id=checkpoint.session_id)
        state: Optional[SessionState] = None

        try:
            state = SessionState.from_checkpoint(
                checkpoint,
                CostTracker(self.config),
                min_keyword_length=self.harness.private_moments.min_keyword_length,
            )
            log.info(
                "session_resumed",
                from_turn=checkpoint.turn,
                max_turns=state.config.max_turns,
                lineage=checkpoint.lineage.model_dump() if checkpoint.lineage else None,
            )

            if checkpoint.turn >= state.config.max_turns:
                outcome = SessionOutcome.TIMEOUT
            else:
                outcome = await self._run_loop(
                    state,
                    start_turn=checkpoint.turn + 1,
                    on_token=on_token,
                    on_progress=on_progress,
                )
            return await self._finalize(state, outcome, start, on_progress=on_progress)

        except Exception as e:
            log.error("session_failed", error_type=type(e).__name__, error=str(e), exc_info=True)
            if state is not None:
                return await self._finalize(
                    state, SessionOutcome.FAILED, start, error=e, on_progress=on_progress
                )
            emit_progress(
                on_progress, ProgressKind.FAILED, checkpoint.session_id, error=_describe(e)
            )
            return SessionResult(
                session_id=checkpoint.session_id,
                outcome=SessionOutcome.FAILED,
                config=checkpoint.session_config,
                final_turn=checkpoint.turn,
                duration_seconds=time.perf_counter() - start,
                lineage=checkpoint.lineage,
                error=_describe(e),
            )
        finally:
            clear_context()

    async def branch_session(
        self,
        checkpoint: Checkpoint,
        overrides: ReplayOverrides,
        new_session_id: Optional[str] = None,
        on_token: Optional[TokenCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SessionResult:
        """
        Fork checkpoint under overrides and resume the branch.

        The branch's starting checkpoint is written under its new session id
        before any new turn runs, so the branch is replayable from its root.

        Raises:
            ValueError: No override given (raised before anything runs)
        """
        branched = branch_checkpoint(checkpoint, overrides, new_session_id)
        try:
            await self.store.save(branched)
        except CheckpointWriteError as e:
            log.error(
                "checkpoint_write_failed",
                session_id=branched.session_id,
                turn=branched.turn,
                error=e.message,
            )
        return await self.resume_session(branched, on_token=on_token, on_progress=on_progress)

    async def run_batch(
        self,
        requests: Sequence[SessionRequest],
        max_parallel: Optional[int] = None,
    ) -> List[SessionResult]:
        """
        Run independent sessions concurrently, at most max_parallel at a time.

        Results come back in request order.
        """
        limit = max_parallel or self.config.max_parallel_sessions
        semaphore = asyncio.Semaphore(limit)

        async def _run(request: SessionRequest) -> SessionResult:
            async with semaphore:
                return await self.run_session(request)

        log.info("batch_started", sessions=len(requests), max_parallel=limit)
        results = await asyncio.gather(*(_run(r) for r in requests))
        log.info(
            "batch_completed",
            sessions=len(results),
            outcomes={
                outcome.value: sum(1 for r in results if r.outcome == outcome)
                for outcome in SessionOutcome
            },
        )
        return list(results)

    # ==========================================================================
    # Session phases
    # ==========================================================================

    def _build_config(
        self,
        session_id: str,
        request: SessionRequest,
        archetype_ids: Sequence[str],
        group: GroupConfig,
    ) -> SessionConfig:
        return SessionConfig(
            session_id=session_id,
            story=request.story,
            system_prompt=request.system_prompt,
            story_guide=request.story_guide,
            narrator=NarratorConfig(
                model=request.narrator_model or self.config.default_narrator_model,
                temperature=(
                    request.temperature
                    if request.temperature is not None
                    else self.config.default_temperature
                ),
                max_tokens=request.max_tokens or self.config.default_max_tokens,
            ),
            group=GroupComposition(
                archetypes=tuple(archetype_ids),
                player_names=tuple(group.player_names),
                spokesperson=group.spokesperson,
            ),
            max_turns=request.max_turns or self.config.default_max_turns,
            created_at=time.time(),
        )

    async def _run_pregame(
        self, state: SessionState, on_progress: Optional[ProgressCallback] = None
    ) -> None:
        """Turn 0: players chat before the story starts. No narrator, no relay."""
        emit_progress(on_progress, ProgressKind.PRE_GAME, state.session_id, turn=0)
        result = await self.discussion.run(
            get_pregame_prompt(state.config.story.title),
            state.group.players,
            state.group.spokesperson_agent,
            synthesize=False,
        )
        for reply in result.replies:
            role = (
                MessageRole.SPOKESPERSON
                if reply.agent_name == state.group.spokesperson
                else MessageRole.PLAYER
            )
            state.history.append(
                Message(
                    role=role,
                    player=reply.agent_name,
                    content=reply.text,
                    turn=0,
                    timestamp=time.time(),
                    reasoning=reply.reasoning,
                )
            )
            state.cost_tracker.record("players", reply.model_used, reply.usage)
            emit_progress(
                on_progress,
                ProgressKind.PRE_GAME_MESSAGE,
                state.session_id,
                turn=0,
                player=reply.agent_name,
                content=reply.text,
            )

        try:
            await self.store.save(state.to_checkpoint(0))
        except CheckpointWriteError as e:
            log.error("checkpoint_write_failed", turn=0, error=e.message)
        log.info("pregame_completed", messages=len(result.replies))

    async def _run_loop(
        self,
        state: SessionState,
        start_turn: int,
        on_token: Optional[TokenCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SessionOutcome:
        """Run turns until the executor says stop; returns the terminal outcome."""
        max_turns = state.config.max_turns
        if start_turn > max_turns:
            raise SessionError(
                f"Cannot start at turn {start_turn}: budget is {max_turns} turns"
            )

        for turn in range(start_turn, max_turns + 1):
            result = await self.executor.execute(
                state, turn, on_token=on_token, on_progress=on_progress
            )
            if not result.should_continue:
                return result.outcome or SessionOutcome.TIMEOUT

        # Unreachable while TerminationStage enforces the budget
        return SessionOutcome.TIMEOUT

    async def _collect_feedback(self, state: SessionState) -> Optional[SessionFeedback]:
        """Post-game feedback; a failure here is logged and never fails the session."""
        try:
            feedback = await self.feedback.collect(
                state.group.players, state.history, state.cost_tracker
            )
            return synthesize_feedback(state.session_id, feedback)
        except Exception as e:
            log.error(
                "feedback_collection_failed",
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            return None

    async def _finalize(
        self,
        state: SessionState,
        outcome: SessionOutcome,
        start: float,
        error: Optional[BaseException] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SessionResult:
        report = await self.issues.detect_all(state.history, include_semantic=True)
        if report.model_used is not None:
            state.cost_tracker.record("classification", report.model_used, report.usage)
        state.tangents = report.issues

        unpaid = state.private_moments.get_unpaid()
        if unpaid:
            log.info(
                "private_moments_unpaid",
                count=len(unpaid),
                moments=[{"turn": m.turn, "target": m.target} for m in unpaid],
            )

        feedback = None
        if outcome == SessionOutcome.COMPLETED:
            feedback = await self._collect_feedback(state)

        breakdown = state.cost_tracker.get_breakdown()
        duration = time.perf_counter() - start
        log.info("session_costs_by_model", usage=state.cost_tracker.get_model_usage())
        log.info(
            "session_finalized",
            outcome=outcome.value,
            final_turn=state.last_turn,
            duration_seconds=round(duration, 2),
            total_cost_usd=round(breakdown.total_cost_usd, 4),
            issues=len(state.tangents),
            narrator_score=feedback.narrator_score if feedback else None,
        )
        if outcome == SessionOutcome.FAILED:
            emit_progress(
                on_progress,
                ProgressKind.FAILED,
                state.session_id,
                turn=state.last_turn,
                error=_describe(error) if error is not None else None,
            )
        else:
            emit_progress(
                on_progress, ProgressKind.COMPLETED, state.session_id, turn=state.last_turn
            )

        return SessionResult(
            session_id=state.session_id,
            outcome=outcome,
            config=state.config,
            conversation_history=list(state.history),
            final_turn=state.last_turn,
            duration_seconds=duration,
            cost_breakdown=breakdown,
            tangents=list(state.tangents),
            private_moments=state.private_moments.get_all(),
            world_state=state.world_state,
            lineage=state.lineage,
            player_feedback=feedback,
            error=_describe(error) if error is not None else None,
        )


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__
