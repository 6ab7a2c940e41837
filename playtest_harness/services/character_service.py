"""
Group generation.

Builds the simulated friend group for a session:
1. Pick archetypes (random 2-5 unless given)
2. Generate a shared group context (how they know each other, tonight's occasion)
3. Generate identities one at a time so later players can relate to earlier ones
4. Compose each agent's system prompt and pick a spokesperson
"""

import random
from typing import Dict, List, Optional, Sequence

import structlog

from playtest_harness.core.archetype_loader import Archetype
from playtest_harness.core.exceptions import SessionError
from playtest_harness.domain.models.agent import (
    GroupConfig,
    GroupContext,
    PlayerAgent,
    PlayerIdentity,
    StoryContext,
)
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.characters import (
    GeneratedIdentity,
    get_group_context_prompt,
    get_identity_prompt,
)
from playtest_harness.llm.prompts.players import get_player_system_prompt
from playtest_harness.services.cost_tracker import CostTracker

log = structlog.get_logger(__name__)

GENERATION_TEMPERATURE = 0.8


class CharacterService:
    """Creates player agents and the group around them."""

    def __init__(
        self,
        registry: BackendRegistry,
        archetypes: Dict[str, Archetype],
        model: str,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 3,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            registry: Backend registry
            archetypes: Available archetypes by id
            model: Model used for group and identity generation
            fallback_models: Ordered fallbacks for generation
            retries_per_model: Attempts per model
            rng: Random source (seed it for reproducible groups)
        """
        if not archetypes:
            raise SessionError("No archetypes available to build a group")
        self.registry = registry
        self.archetypes = archetypes
        self.model = model
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model
        self.rng = rng or random.Random()

    def choose_archetypes(
        self, size: Optional[int] = None, min_size: int = 2, max_size: int = 5
    ) -> List[str]:
        """Random archetype ids (repeats allowed) for a group of size players."""
        size = size or self.rng.randint(min_size, max_size)
        ids = sorted(self.archetypes)
        return [self.rng.choice(ids) for _ in range(size)]

    def choose_spokesperson(self, agents: Sequence[PlayerAgent]) -> str:
        return self.rng.choice(list(agents)).name

    async def _generate(self, schema, prompt: str, label: str, cost: Optional[CostTracker]):
        async def _invoke(model_id: str):
            backend = self.registry.resolve(model_id)
            return await backend.invoke_structured(
                model_id, schema, prompt, temperature=GENERATION_TEMPERATURE
            )

        outcome = await with_model_fallback(
            self.model,
            _invoke,
            next_model_from(self.fallback_models),
            label=label,
            retries_per_model=self.retries_per_model,
        )
        if cost is not None:
            cost.record("players", outcome.model_used, outcome.result.usage)
        return outcome.result.value

    async def create_group(
        self,
        archetype_ids: Sequence[str],
        story: StoryContext,
        cost: Optional[CostTracker] = None,
    ) -> GroupConfig:
        """
        Generate a full group for archetype_ids.

        Raises:
            SessionError: Unknown archetype id
            ModelsExhaustedError: Generation failed on every model
        """
        unknown = [a for a in archetype_ids if a not in self.archetypes]
        if unknown:
            raise SessionError(f"Unknown archetypes: {', '.join(unknown)}")
        if len(archetype_ids) < 2:
            raise SessionError("A group needs at least two players")

        archetypes = [self.archetypes[a] for a in archetype_ids]
        group_context: GroupContext = await self._generate(
            GroupContext, get_group_context_prompt(story, archetypes), "Group context", cost
        )

        identities: List[PlayerIdentity] = []
        for archetype in archetypes:
            generated: GeneratedIdentity = await self._generate(
                GeneratedIdentity,
                get_identity_prompt(group_context, archetype, identities),
                f"Identity ({archetype.id})",
                cost,
            )
            identity = PlayerIdentity(
                name=_unique_name(generated.name, [i.name for i in identities]),
                backstory=generated.backstory,
                group_role=generated.group_role,
                personal_reason=generated.personal_reason,
                current_state=generated.current_state,
                relationships=generated.relationships,
            )
            identities.append(identity)
            log.info("player_identity_created", name=identity.name, archetype=archetype.id)

        agents = []
        for index, (archetype, identity) in enumerate(zip(archetypes, identities)):
            others = [p for i, p in enumerate(identities) if i != index]
            agents.append(
                PlayerAgent(
                    archetype=archetype.id,
                    name=identity.name,
                    model_id=archetype.model,
                    identity=identity,
                    system_prompt=get_player_system_prompt(
                        archetype, identity, group_context, others, story
                    ),
                )
            )

        spokesperson = self.choose_spokesperson(agents)
        log.info(
            "group_created",
            players=[a.name for a in agents],
            archetypes=list(archetype_ids),
            spokesperson=spokesperson,
        )
        return GroupConfig(players=agents, spokesperson=spokesperson)


def _unique_name(name: str, taken: Sequence[str]) -> str:
    """Suffix a number when a generated name is already used in the group."""
    name = name.strip() or "Player"
    if name not in taken:
        return name
    suffix = 2
    while f"{name} {suffix}" in taken:
        suffix += 1
    return f"{name} {suffix}"
