"""Tests for world state extraction and character commitment."""

from conftest import UTILITY_MODEL, ScriptedBackend, msg
from playtest_harness.core.exceptions import TransientProviderError
from playtest_harness.domain.models.message import MessageRole
from playtest_harness.domain.models.world_state import (
    CharacterMapping,
    ItemGrant,
    WorldState,
    WorldStateUpdate,
)
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.llm.prompts.world_state import format_state_for_injection
from playtest_harness.services.world_state_service import WorldStateService, apply_update


def make_service(backend):
    return WorldStateService(
        BackendRegistry(default=backend), model=UTILITY_MODEL, retries_per_model=1
    )


class TestApplyUpdate:
    def test_merges_delta(self):
        """Should move location, grant items and add NPCs without duplicates."""
        state = WorldState(
            characters=[CharacterMapping(player_name="Sam", character_name="Reyes")],
            location="Pier",
            npcs_encountered=["Ferryman"],
            plot_flags={"storm": True},
        )
        update = WorldStateUpdate(
            location_changed="Lamp room",
            new_items=[ItemGrant(character="reyes", item="oil can")],
            new_npcs=["Ferryman", "Josiah"],
            plot_flags={"lamp_lit": True},
        )

        new_state = apply_update(state, update)

        assert new_state.location == "Lamp room"
        assert new_state.characters[0].items == ["oil can"]
        assert new_state.npcs_encountered == ["Ferryman", "Josiah"]
        assert new_state.plot_flags == {"storm": True, "lamp_lit": True}
        assert state.location == "Pier"
        assert state.characters[0].items == []

    def test_empty_update_keeps_state(self):
        state = WorldState(location="Pier")
        assert apply_update(state, WorldStateUpdate()) == state


class TestUpdate:
    async def test_update_applies_extraction(self):
        backend = ScriptedBackend(
            structured={"WorldStateUpdate": {"location_changed": "Cellar", "new_npcs": ["Rat"]}}
        )
        outcome = await make_service(backend).update(WorldState(), "You descend to the cellar.")

        assert outcome.state.location == "Cellar"
        assert outcome.state.npcs_encountered == ["Rat"]
        assert outcome.model_used == UTILITY_MODEL
        assert outcome.usage is not None

    async def test_failure_leaves_state_unchanged(self):
        """Extraction failure should never raise into the turn."""
        backend = ScriptedBackend(structured={"WorldStateUpdate": TransientProviderError("down")})
        state = WorldState(location="Pier")

        outcome = await make_service(backend).update(state, "Anything.")

        assert outcome.state == state
        assert outcome.usage is None


class TestCharacterExtraction:
    def turn_history(self):
        return [
            msg(MessageRole.NARRATOR, "Who are you?", 1),
            msg(MessageRole.PLAYER, "I'm Captain Reyes, a harbor pilot.", 1, player="Sam"),
            msg(MessageRole.PLAYER, "Dr. Moss, ship's surgeon.", 1, player="Jordan"),
            msg(MessageRole.SPOKESPERSON, "We are Reyes, Moss and Vale.", 1, player="Alex"),
        ]

    async def test_commits_characters_once(self, group):
        """Should map players and append the locked block to each matched agent."""
        backend = ScriptedBackend(
            structured={
                "CharacterExtraction": {
                    "characters": [
                        {"player_name": "sam", "character_name": "Captain Reyes"},
                        {"player_name": "Jordan", "character_name": "Dr. Moss"},
                        {"player_name": "Kim", "character_name": "Nobody"},
                    ]
                }
            }
        )
        service = make_service(backend)

        outcome = await service.try_extract_characters(
            WorldState(), self.turn_history(), 1, group
        )

        assert [c.player_name for c in outcome.state.characters] == ["Sam", "Jordan"]
        assert outcome.committed == ["Sam", "Jordan"]
        assert group.get("Sam").committed_character == "Captain Reyes"
        assert "## YOUR CHARACTER (LOCKED)" in group.get("Sam").system_prompt
        assert group.get("Alex").committed_character is None
        prompt = backend.structured_calls[0].prompt
        assert "Sam: I'm Captain Reyes" in prompt

        again = await service.try_extract_characters(
            outcome.state, self.turn_history(), 1, group
        )
        assert again.committed == []
        assert len(backend.structured_calls) == 1
        assert group.get("Sam").system_prompt.count("## YOUR CHARACTER (LOCKED)") == 1

    async def test_no_replies_no_call(self, group):
        backend = ScriptedBackend()
        history = [msg(MessageRole.NARRATOR, "Silence.", 1)]
        outcome = await make_service(backend).try_extract_characters(
            WorldState(), history, 1, group
        )
        assert outcome.state.characters == []
        assert backend.structured_calls == []


class TestStateInjection:
    def test_block_names_characters_and_location(self):
        state = WorldState(
            characters=[
                CharacterMapping(
                    player_name="Sam", character_name="Reyes", items=["compass"]
                )
            ],
            location="Lamp room",
        )
        block = format_state_for_injection(state, spokesperson="Alex")
        assert "[GAME STATE]" in block
        assert "Lamp room" in block
        assert "Reyes" in block
        assert "compass" in block
