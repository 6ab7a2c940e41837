"""
Pipeline orchestrator for turn processing.

TurnPipeline runs its stages in order on one TurnContext, recording a
per-stage duration. A failing stage is logged with its name and re-raised;
later stages do not run.
"""

import time
from typing import List, Sequence

import structlog

from .base import TurnStage
from .context import TurnContext
from .result import TurnResult

log = structlog.get_logger(__name__)


class TurnPipeline:
    """Sequential stage runner for one turn."""

    def __init__(self, stages: Sequence[TurnStage]):
        self.stages: List[TurnStage] = list(stages)

    async def execute(self, context: TurnContext) -> TurnResult:
        """
        Run every stage against context.

        Returns:
            TurnResult assembled from the final context

        Raises:
            Exception: Whatever the failing stage raised
        """
        started = time.perf_counter()
        log.info(
            "pipeline_started",
            session_id=context.session_id,
            turn=context.turn,
            num_stages=len(self.stages),
        )

        for stage in self.stages:
            name = stage.stage_name
            stage_started = time.perf_counter()
            log.debug("stage_started", stage_name=name, turn=context.turn)
            try:
                context = await stage.process(context)
            except Exception as e:
                log.error(
                    "stage_failed",
                    stage_name=name,
                    turn=context.turn,
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )
                raise
            context.stage_timings[name] = (time.perf_counter() - stage_started) * 1000
            log.debug("stage_completed", stage_name=name, duration_ms=context.stage_timings[name])

        latency_ms = int((time.perf_counter() - started) * 1000)
        log.info(
            "pipeline_completed",
            session_id=context.session_id,
            turn=context.turn,
            latency_ms=latency_ms,
            stage_timings=context.stage_timings,
        )
        return self._build_result(context, latency_ms)

    def _build_result(self, context: TurnContext, latency_ms: int) -> TurnResult:
        if context.classification is None:
            raise RuntimeError("Pipeline finished without a classification")

        return TurnResult(
            turn=context.turn,
            narrator_text=context.narrator_text,
            classification=context.classification,
            routing=type(context.policy).__name__,
            replies=list(context.replies),
            should_continue=context.should_continue,
            outcome=context.outcome,
            termination_reason=context.termination_reason,
            checkpoint_location=context.checkpoint_location,
            latency_ms=latency_ms,
            stage_timings=dict(context.stage_timings),
        )
