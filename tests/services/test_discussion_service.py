"""Tests for sequential group discussion."""

import pytest

from conftest import ScriptedBackend, msg
from playtest_harness.core.exceptions import ModelsExhaustedError, TransientProviderError
from playtest_harness.domain.models.message import MessageRole
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.services.discussion_service import DiscussionService
from playtest_harness.services.player_service import PlayerService


def distinct_replies(call):
    return f"{call.speaker} votes for the {'left' if call.speaker == 'Alex' else 'right'} path."


def make_service(backend):
    players = PlayerService(BackendRegistry(default=backend), retries_per_model=1)
    return DiscussionService(players)


class TestDiscussionService:
    async def test_speakers_in_order(self, group):
        backend = ScriptedBackend(text=distinct_replies)
        result = await make_service(backend).run(
            "Left or right?", group.players, group.spokesperson_agent
        )

        assert [r.agent_name for r in result.replies] == ["Alex", "Sam", "Jordan"]
        assert result.synthesis is not None
        assert result.synthesis.agent_name == "Alex"

    async def test_later_speakers_see_earlier_replies_verbatim(self, group):
        """Player 2 sees player 1's reply verbatim; player 1 sees neither."""
        backend = ScriptedBackend(text=distinct_replies)
        await make_service(backend).run(
            "Left or right?", group.players, group.spokesperson_agent
        )
        first, second, third = backend.calls[:3]

        assert "Your friends have said" not in first.last_user_message
        assert "votes for" not in first.last_user_message
        assert 'Alex: "Alex votes for the left path."' in second.last_user_message
        assert "Sam votes" not in second.last_user_message
        assert 'Alex: "Alex votes for the left path."' in third.last_user_message
        assert 'Sam: "Sam votes for the right path."' in third.last_user_message

    async def test_synthesis_sees_whole_round(self, group):
        backend = ScriptedBackend(text=distinct_replies)
        await make_service(backend).run(
            "Left or right?", group.players, group.spokesperson_agent
        )
        synthesis_prompt = backend.calls[3].last_user_message
        for name in ("Alex", "Sam", "Jordan"):
            assert f"{name} votes" in synthesis_prompt
        assert "relay the group's decision" in synthesis_prompt

    async def test_synthesis_skipped(self, group):
        """Pre-game rounds produce replies but no relay."""
        backend = ScriptedBackend()
        result = await make_service(backend).run(
            "Chat before the game.",
            group.players,
            group.spokesperson_agent,
            synthesize=False,
        )
        assert len(result.replies) == 3
        assert result.synthesis is None
        assert len(backend.calls) == 3

    async def test_history_shown_to_speakers(self, group):
        backend = ScriptedBackend()
        history = [msg(MessageRole.SPOKESPERSON, "We enter the tower.", 2, player="Alex")]
        await make_service(backend).run(
            "Stairs or lift?", group.players, group.spokesperson_agent, history=history
        )
        assert "Alex: We enter the tower." in backend.calls[0].last_user_message

    async def test_speaker_failure_propagates(self, group):
        def handler(call):
            if call.speaker == "Sam":
                return TransientProviderError("down")
            return "Fine."

        with pytest.raises(ModelsExhaustedError):
            await make_service(ScriptedBackend(text=handler)).run(
                "Left or right?", group.players, group.spokesperson_agent
            )
