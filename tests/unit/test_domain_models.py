"""Tests for domain models: groups, agents, classification routing."""

import pytest
from pydantic import ValidationError

from conftest import make_agent
from playtest_harness.domain.models.agent import GroupConfig
from playtest_harness.domain.models.classification import (
    Classification,
    ClassificationSchema,
    DirectedRouting,
    DiscussionRouting,
    GroupRouting,
    NoResponse,
    PrivateRouting,
    ResponseType,
    routing_policy_for,
)
from playtest_harness.domain.models.tracking import TokenUsage


class TestGroupConfig:
    def test_spokesperson_must_be_member(self):
        """Should reject a spokesperson who is not in the group."""
        with pytest.raises(ValidationError, match="Spokesperson"):
            GroupConfig(players=[make_agent("Alex"), make_agent("Sam")], spokesperson="Kim")

    def test_names_must_be_unique(self):
        with pytest.raises(ValidationError, match="unique"):
            GroupConfig(players=[make_agent("Alex"), make_agent("Alex")], spokesperson="Alex")

    def test_find_is_case_insensitive_and_partial(self, group):
        """Should resolve lowercase and partial names."""
        assert group.find("sam").name == "Sam"
        assert group.find("JORD").name == "Jordan"
        assert group.find("Kim") is None
        assert group.find("  ") is None

    def test_find_prefers_exact_match(self):
        group = GroupConfig(
            players=[make_agent("Samantha"), make_agent("Sam")], spokesperson="Sam"
        )
        assert group.find("sam").name == "Sam"

    def test_find_partial_only_on_word_prefix(self):
        """Should not resolve a short name hidden inside a longer one."""
        group = GroupConfig(
            players=[make_agent("Al"), make_agent("Samantha")], spokesperson="Al"
        )
        assert group.find("Sally") is None
        assert group.find("manth") is None
        assert group.find("sam").name == "Samantha"
        assert group.find("Al Reyes").name == "Al"

    def test_find_ambiguous_prefix_resolves_to_nobody(self):
        group = GroupConfig(
            players=[make_agent("Alex"), make_agent("Alice")], spokesperson="Alex"
        )
        assert group.find("al") is None
        assert group.find("ali").name == "Alice"

    def test_spokesperson_agent(self, group):
        assert group.spokesperson_agent.name == "Alex"
        assert group.player_names == ["Alex", "Sam", "Jordan"]


class TestPlayerAgent:
    def test_commit_character_once(self):
        """Should append the character block exactly once."""
        agent = make_agent("Sam")
        original = agent.system_prompt

        assert agent.commit_character("Captain Reyes", "## YOUR CHARACTER (LOCKED)")
        assert not agent.commit_character("Someone Else", "## OTHER BLOCK")

        assert agent.committed_character == "Captain Reyes"
        assert agent.system_prompt.startswith(original)
        assert agent.system_prompt.count("## YOUR CHARACTER (LOCKED)") == 1
        assert "OTHER BLOCK" not in agent.system_prompt


class TestTokenUsage:
    def test_addition(self):
        total = TokenUsage(input_tokens=3, output_tokens=4) + TokenUsage(input_tokens=1)
        assert total.input_tokens == 4
        assert total.total_tokens == 8


class TestRoutingPolicy:
    """Tests for routing_policy_for."""

    def classification(self, response_type, targets=None):
        return Classification(response_type=response_type, target_players=targets or [])

    def test_group(self):
        assert routing_policy_for(self.classification(ResponseType.GROUP)) == GroupRouting()

    def test_discussion(self):
        assert isinstance(
            routing_policy_for(self.classification(ResponseType.DISCUSSION)),
            DiscussionRouting,
        )

    def test_directed_keeps_targets_in_order(self):
        policy = routing_policy_for(
            self.classification(ResponseType.DIRECTED, ["Sam", "Alex"])
        )
        assert policy == DirectedRouting(("Sam", "Alex"))

    def test_directed_without_targets_becomes_group(self):
        """Should degrade to a group reaction when nobody is named."""
        policy = routing_policy_for(self.classification(ResponseType.DIRECTED, ["  "]))
        assert isinstance(policy, GroupRouting)

    def test_private_takes_first_target(self):
        policy = routing_policy_for(
            self.classification(ResponseType.PRIVATE, ["Sam", "Alex"])
        )
        assert policy == PrivateRouting("Sam")

    def test_private_without_target(self):
        """Should leave the target open for textual detection."""
        assert routing_policy_for(
            self.classification(ResponseType.PRIVATE)
        ) == PrivateRouting(None)

    def test_none(self):
        assert isinstance(routing_policy_for(self.classification(ResponseType.NONE)), NoResponse)


class TestClassification:
    def test_fallback_is_permissive(self):
        """The fail-open default keeps the story going as a group reaction."""
        fallback = Classification.fallback()
        assert fallback.is_ending is False
        assert fallback.response_type == ResponseType.GROUP
        assert fallback.confidence == 0.0
        assert fallback.degraded is True

    def test_schema_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            ClassificationSchema(is_ending=False, response_type="shout", confidence=0.5)

    def test_schema_bounds_confidence(self):
        with pytest.raises(ValidationError):
            ClassificationSchema(is_ending=False, response_type="group", confidence=1.5)
