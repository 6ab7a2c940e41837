"""
World state extraction.

Best-effort structured extraction of location, items, named NPCs and plot
flags from each narrator output, plus the one-time mapping of players to
their in-story characters. Extraction failures leave the state unchanged;
nothing here raises into the turn.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from playtest_harness.core.exceptions import (
    ModelsExhaustedError,
    WorldStateExtractionFailure,
)
from playtest_harness.domain.models.agent import GroupConfig
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.tracking import TokenUsage
from playtest_harness.domain.models.world_state import (
    CharacterExtraction,
    CharacterMapping,
    WorldState,
    WorldStateUpdate,
)
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.players import get_character_commitment_block
from playtest_harness.llm.prompts.world_state import (
    get_character_extraction_prompt,
    get_state_update_prompt,
)

log = structlog.get_logger(__name__)

EXTRACTION_TEMPERATURE = 0.2


@dataclass
class ExtractionOutcome:
    """New state plus usage of the extraction call (None if it failed)."""

    state: WorldState
    usage: Optional[TokenUsage] = None
    model_used: Optional[str] = None
    committed: List[str] = field(default_factory=list)


def apply_update(state: WorldState, update: WorldStateUpdate) -> WorldState:
    """Merge an extracted delta into a copy of state."""
    characters = []
    for mapping in state.characters:
        granted = [
            grant.item
            for grant in update.new_items
            if grant.character.lower()
            in (mapping.character_name.lower(), mapping.player_name.lower())
        ]
        characters.append(
            mapping.model_copy(update={"items": mapping.items + granted})
        )

    npcs = list(state.npcs_encountered)
    for npc in update.new_npcs:
        if npc not in npcs:
            npcs.append(npc)

    return WorldState(
        characters=characters,
        location=update.location_changed or state.location,
        npcs_encountered=npcs,
        plot_flags={**state.plot_flags, **update.plot_flags},
    )


class WorldStateService:
    """Keeps the world state in step with the narration."""

    def __init__(
        self,
        registry: BackendRegistry,
        model: str,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 3,
    ):
        self.registry = registry
        self.model = model
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model

    async def _extract(self, schema, prompt: str, label: str):
        async def _invoke(model_id: str):
            backend = self.registry.resolve(model_id)
            return await backend.invoke_structured(
                model_id, schema, prompt, temperature=EXTRACTION_TEMPERATURE
            )

        try:
            return await with_model_fallback(
                self.model,
                _invoke,
                next_model_from(self.fallback_models),
                label=label,
                retries_per_model=self.retries_per_model,
            )
        except ModelsExhaustedError as e:
            raise WorldStateExtractionFailure(str(e)) from e

    async def update(self, state: WorldState, narrator_output: str) -> ExtractionOutcome:
        """
        Apply changes described by narrator_output.

        Returns:
            ExtractionOutcome; on failure its state is the unchanged input
        """
        try:
            outcome = await self._extract(
                WorldStateUpdate,
                get_state_update_prompt(state, narrator_output),
                "State update",
            )
        except WorldStateExtractionFailure as e:
            log.warning("world_state_update_skipped", error=e.message[:200])
            return ExtractionOutcome(state=state)

        new_state = apply_update(state, outcome.result.value)
        if new_state.location != state.location:
            log.info("location_changed", location=new_state.location)
        return ExtractionOutcome(
            state=new_state,
            usage=outcome.result.usage,
            model_used=outcome.model_used,
        )

    async def try_extract_characters(
        self,
        state: WorldState,
        history: Sequence[Message],
        turn: int,
        group: GroupConfig,
    ) -> ExtractionOutcome:
        """
        Map players to in-story characters from this turn's replies.

        Runs only while no characters are known. Each matched agent gets the
        locked character block appended to its system prompt exactly once.
        """
        if state.characters:
            return ExtractionOutcome(state=state)

        replies = "\n\n".join(
            f"{m.player}: {m.content}"
            for m in history
            if m.turn == turn and m.role in (MessageRole.PLAYER, MessageRole.SPOKESPERSON)
        )
        if not replies:
            return ExtractionOutcome(state=state)

        try:
            outcome = await self._extract(
                CharacterExtraction,
                get_character_extraction_prompt(group.player_names, replies),
                "Character extraction",
            )
        except WorldStateExtractionFailure as e:
            log.warning("character_extraction_skipped", error=e.message[:200])
            return ExtractionOutcome(state=state)

        mappings: List[CharacterMapping] = []
        committed: List[str] = []
        for found in outcome.result.value.characters:
            agent = group.find(found.player_name)
            if agent is None or state.character_for(agent.name) is not None:
                continue
            if any(m.player_name == agent.name for m in mappings):
                continue
            mapping = CharacterMapping(
                player_name=agent.name,
                character_name=found.character_name,
                description=found.description,
                role=found.role,
            )
            mappings.append(mapping)
            block = get_character_commitment_block(agent.name, mapping)
            if agent.commit_character(mapping.character_name, block):
                committed.append(agent.name)

        if mappings:
            log.info(
                "characters_committed",
                mappings={m.player_name: m.character_name for m in mappings},
            )

        return ExtractionOutcome(
            state=state.model_copy(update={"characters": mappings}),
            usage=outcome.result.usage,
            model_used=outcome.model_used,
            committed=committed,
        )
