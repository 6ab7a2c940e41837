"""Tests for individual turn stages and the pipeline orchestrator."""

from unittest.mock import AsyncMock

import pytest

from conftest import ScriptedBackend, default_structured, msg
from playtest_harness.core.exceptions import (
    CheckpointWriteError,
    ModelsExhaustedError,
    TransientProviderError,
)
from playtest_harness.domain.models.classification import (
    Classification,
    DirectedRouting,
    GroupRouting,
    ResponseType,
)
from playtest_harness.domain.models.message import MessageRole
from playtest_harness.domain.models.session import SessionOutcome
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.services.discussion_service import DiscussionService
from playtest_harness.services.issue_detector import IssueDetector
from playtest_harness.services.narrator_service import NarratorOutput
from playtest_harness.services.player_service import PlayerService
from playtest_harness.services.turn_pipeline import TurnContext, TurnPipeline
from playtest_harness.services.turn_pipeline.base import TurnStage
from playtest_harness.services.turn_pipeline.stages import (
    CheckpointStage,
    RoutingStage,
    TerminationStage,
)


def narrated_context(state, turn=1, text="The lamp flickers."):
    context = TurnContext(state=state, turn=turn)
    context.narrator_output = NarratorOutput(text=text, model_used="stub/narrator")
    return context


class TestTurnContext:
    def test_accessors_before_stages(self, session_state):
        """Reading stage outputs before their stage ran should fail loudly."""
        context = TurnContext(state=session_state, turn=1)

        with pytest.raises(RuntimeError, match="NarratorGenerationStage"):
            context.narrator_text
        with pytest.raises(RuntimeError, match="ClassificationStage"):
            context.policy

    def test_session_id_from_state(self, session_state):
        assert TurnContext(state=session_state, turn=1).session_id == "sess-1"


class TestTerminationStage:
    async def test_requires_classification(self, session_state):
        with pytest.raises(RuntimeError):
            await TerminationStage().process(TurnContext(state=session_state, turn=1))

    @pytest.mark.parametrize(
        "turn,is_ending,expected",
        [
            (1, False, None),
            (5, False, SessionOutcome.TIMEOUT),
            (2, True, SessionOutcome.COMPLETED),
            (5, True, SessionOutcome.COMPLETED),
        ],
    )
    async def test_outcomes(self, session_state, turn, is_ending, expected):
        context = TurnContext(state=session_state, turn=turn)
        context.classification = Classification(is_ending=is_ending)

        context = await TerminationStage().process(context)

        assert context.outcome == expected
        assert context.should_continue == (expected is None)


class TestCheckpointStage:
    async def test_writes_checkpoint_with_tangents(self, session_state, checkpoint_store):
        """Should refresh deterministic issues before snapshotting."""
        for turn in (1, 2, 3):
            session_state.history.append(
                msg(MessageRole.NARRATOR, "The same corridor stretches ahead of you.", turn)
            )
        stage = CheckpointStage(checkpoint_store, IssueDetector())

        context = await stage.process(TurnContext(state=session_state, turn=3))

        assert context.checkpoint_location is not None
        assert session_state.tangents
        saved = await checkpoint_store.load("sess-1", 3)
        assert saved.tangents == session_state.tangents

    async def test_write_failure_logged(self, session_state, checkpoint_store):
        checkpoint_store.save = AsyncMock(side_effect=CheckpointWriteError("read-only"))
        stage = CheckpointStage(checkpoint_store, IssueDetector())

        context = await stage.process(TurnContext(state=session_state, turn=1))

        assert context.checkpoint_location is None


class TestRoutingStage:
    def make_stage(self, backend):
        players = PlayerService(BackendRegistry(default=backend), retries_per_model=1)
        return RoutingStage(players, DiscussionService(players))

    async def test_directed_targets_deduplicated(self, session_state):
        backend = ScriptedBackend(structured=default_structured())
        context = narrated_context(session_state)
        context.routing_policy = DirectedRouting(("Jordan", "jordan", "Alex"))

        await self.make_stage(backend).process(context)

        assert [m.player for m in context.replies] == ["Jordan", "Alex"]
        assert len(backend.calls) == 2

    async def test_replies_charged_to_players(self, session_state):
        backend = ScriptedBackend()
        context = narrated_context(session_state)
        context.routing_policy = GroupRouting()

        await self.make_stage(backend).process(context)

        usage = session_state.cost_tracker.get_model_usage()["players"]
        assert sum(m["calls"] for m in usage.values()) == 4

    async def test_all_players_failing_raises(self, session_state):
        """A group turn where nobody answers cannot be synthesized."""
        backend = ScriptedBackend(text=lambda call: TransientProviderError("down"))
        context = narrated_context(session_state)
        context.routing_policy = GroupRouting()

        with pytest.raises(ModelsExhaustedError):
            await self.make_stage(backend).process(context)


class _Recorder(TurnStage):
    def __init__(self, seen):
        self.seen = seen

    async def process(self, context):
        self.seen.append(self.stage_name)
        return context


class _Boom(TurnStage):
    async def process(self, context):
        raise ValueError("boom")


class TestTurnPipeline:
    async def test_stage_failure_propagates(self, session_state):
        seen = []
        pipeline = TurnPipeline([_Recorder(seen), _Boom(), _Recorder(seen)])

        with pytest.raises(ValueError, match="boom"):
            await pipeline.execute(TurnContext(state=session_state, turn=1))
        assert seen == ["_Recorder"]

    async def test_result_requires_classification(self, session_state):
        pipeline = TurnPipeline([_Recorder([])])
        with pytest.raises(RuntimeError):
            await pipeline.execute(narrated_context(session_state))

    async def test_result_built_from_context(self, session_state):
        class _Classify(TurnStage):
            async def process(self, context):
                context.classification = Classification(response_type=ResponseType.GROUP)
                context.routing_policy = GroupRouting()
                return context

        result = await TurnPipeline([_Classify()]).execute(narrated_context(session_state))

        assert result.routing == "GroupRouting"
        assert result.narrator_text == "The lamp flickers."
        assert set(result.stage_timings) == {"_Classify"}
