"""Tests for checkpoint branching."""

import pytest
from pydantic import ValidationError

from conftest import msg
from playtest_harness.domain.models.message import MessageRole
from playtest_harness.persistence.checkpoint_store import ReplayOverrides, branch_checkpoint


@pytest.fixture
def checkpoint(session_state):
    for turn in (1, 2):
        session_state.history.append(msg(MessageRole.NARRATOR, f"Beat {turn}.", turn))
    return session_state.to_checkpoint(2)


class TestReplayOverrides:
    def test_empty(self):
        assert ReplayOverrides().is_empty()
        assert not ReplayOverrides(temperature=0.9).is_empty()

    def test_describe(self):
        overrides = ReplayOverrides(system_prompt="New prompt", temperature=0.9)
        assert overrides.describe() == "Modified: system prompt, temperature -> 0.9"

    def test_bounds(self):
        with pytest.raises(ValidationError):
            ReplayOverrides(temperature=3.0)
        with pytest.raises(ValidationError):
            ReplayOverrides(max_turns=0)


class TestBranchCheckpoint:
    def test_applies_overrides(self, checkpoint):
        overrides = ReplayOverrides(
            system_prompt="Darker tone.",
            narrator_model="stub/other",
            temperature=1.1,
            max_turns=10,
        )

        branched = branch_checkpoint(checkpoint, overrides, new_session_id="sess-1b")

        config = branched.session_config
        assert branched.session_id == config.session_id == "sess-1b"
        assert config.system_prompt == "Darker tone."
        assert config.narrator.model == "stub/other"
        assert config.narrator.temperature == 1.1
        assert config.narrator.max_tokens == 500
        assert config.max_turns == 10
        assert config.story_guide == checkpoint.session_config.story_guide

    def test_parent_untouched(self, checkpoint):
        branched = branch_checkpoint(checkpoint, ReplayOverrides(temperature=0.1))

        assert checkpoint.session_config.narrator.temperature == 0.7
        assert checkpoint.lineage is None
        assert branched.conversation_history == checkpoint.conversation_history
        assert branched.conversation_history[0] is not checkpoint.conversation_history[0]

    def test_lineage_records_parent(self, checkpoint):
        branched = branch_checkpoint(checkpoint, ReplayOverrides(story_guide="New guide"))

        assert branched.session_id.startswith("sess-1-branch-")
        assert len(branched.session_id) == len("sess-1-branch-") + 8
        assert branched.lineage.parent_session_id == "sess-1"
        assert branched.lineage.parent_turn == 2
        assert branched.lineage.root_session_id == "sess-1"
        assert branched.lineage.branch_reason == "Modified: story guide"

    def test_root_propagates(self, checkpoint):
        """A branch of a branch keeps the original root."""
        first = branch_checkpoint(checkpoint, ReplayOverrides(temperature=0.2), "b1")
        second = branch_checkpoint(first, ReplayOverrides(temperature=0.3), "b2")

        assert second.lineage.parent_session_id == "b1"
        assert second.lineage.root_session_id == "sess-1"

    def test_requires_override(self, checkpoint):
        with pytest.raises(ValueError, match="at least one"):
            branch_checkpoint(checkpoint, ReplayOverrides())

    def test_max_turns_must_leave_room(self, checkpoint):
        with pytest.raises(ValueError, match="max_turns"):
            branch_checkpoint(checkpoint, ReplayOverrides(max_turns=2))
