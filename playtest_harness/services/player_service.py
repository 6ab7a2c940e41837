"""
Player agent responses.

Generates reactions to narrator output (free, directed or private), free
prompts for discussion rounds, and spokesperson synthesis. Every call runs
through the model fallback layer starting from the agent's own model.

Independent reactions run concurrently with asyncio.gather; one agent's
failure is logged and does not cancel the others.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Literal, Optional, Sequence, Tuple, Union

import structlog

from playtest_harness.core.exceptions import ModelsExhaustedError
from playtest_harness.domain.models.agent import PlayerAgent
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.tracking import TokenUsage
from playtest_harness.llm.client import (
    BackendRegistry,
    ChatMessage,
    GenerationResult,
    SamplingParams,
)
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.players import (
    build_player_messages,
    get_directed_instruction,
    get_group_synthesis_prompt,
    get_private_instruction,
    get_reaction_instruction,
)

log = structlog.get_logger(__name__)

REACTION_TEMPERATURE = 0.8
SYNTHESIS_TEMPERATURE = 0.7

ReactionMode = Literal["reaction", "directed", "private"]

_INSTRUCTIONS = {
    "reaction": get_reaction_instruction,
    "directed": get_directed_instruction,
    "private": get_private_instruction,
}


@dataclass
class AgentReply:
    """One agent's generated text."""

    agent_name: str
    text: str
    model_used: str
    usage: TokenUsage
    reasoning: Optional[str] = None


@dataclass
class ReactionFailure:
    agent_name: str
    error: BaseException


class PlayerService:
    """Generates player and spokesperson text."""

    def __init__(
        self,
        registry: BackendRegistry,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 3,
        context_messages: int = 10,
    ):
        """
        Args:
            registry: Backend registry
            fallback_models: Ordered models tried after an agent's own model
            retries_per_model: Attempts per model in the fallback layer
            context_messages: Recent history messages shown to players
        """
        self.registry = registry
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model
        self.context_messages = context_messages

    async def _generate(
        self,
        agent: PlayerAgent,
        messages: Sequence[ChatMessage],
        temperature: float,
        label: str,
    ) -> AgentReply:
        sampling = SamplingParams(temperature=temperature)

        async def _invoke(model_id: str) -> GenerationResult:
            backend = self.registry.resolve(model_id)
            return await backend.invoke(
                model_id, agent.system_prompt, messages, sampling
            )

        outcome = await with_model_fallback(
            agent.model_id,
            _invoke,
            next_model_from(self.fallback_models),
            label=label,
            retries_per_model=self.retries_per_model,
        )
        return AgentReply(
            agent_name=agent.name,
            text=outcome.result.text,
            model_used=outcome.model_used,
            usage=outcome.result.usage,
            reasoning=outcome.result.reasoning,
        )

    async def respond(
        self,
        agent: PlayerAgent,
        prompt: str,
        temperature: float = REACTION_TEMPERATURE,
        label: Optional[str] = None,
    ) -> AgentReply:
        """Answer a single free-standing prompt."""
        return await self._generate(
            agent, [ChatMessage("user", prompt)], temperature, label or agent.name
        )

    async def react(
        self,
        agent: PlayerAgent,
        narrator_output: str,
        history: Sequence[Message],
        mode: ReactionMode = "reaction",
    ) -> AgentReply:
        """
        React to narrator output.

        Args:
            agent: Reacting player
            narrator_output: Narrator text being reacted to
            history: Conversation history before the reaction
            mode: "reaction", "directed" or "private"

        Raises:
            ModelsExhaustedError: No model could produce a reaction
        """
        instruction = _INSTRUCTIONS[mode](agent.name)
        messages = build_player_messages(
            history, narrator_output, instruction, self.context_messages
        )
        label = agent.name if mode == "reaction" else f"{agent.name} ({mode})"
        return await self._generate(agent, messages, REACTION_TEMPERATURE, label)

    async def react_all(
        self,
        agents: Sequence[PlayerAgent],
        narrator_output: str,
        history: Sequence[Message],
        mode: ReactionMode = "reaction",
    ) -> List[Union[AgentReply, ReactionFailure]]:
        """
        React concurrently, one task per agent, results in agent order.

        Agents never see each other's reactions. A failed agent yields a
        ReactionFailure entry; the others still complete.
        """
        snapshot = list(history)
        results = await asyncio.gather(
            *(self.react(agent, narrator_output, snapshot, mode) for agent in agents),
            return_exceptions=True,
        )

        outcomes: List[Union[AgentReply, ReactionFailure]] = []
        for agent, result in zip(agents, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                log.warning(
                    "player_reaction_failed",
                    player=agent.name,
                    mode=mode,
                    error_type=type(result).__name__,
                    error=str(result)[:200],
                )
                outcomes.append(ReactionFailure(agent.name, result))
            else:
                outcomes.append(result)
        return outcomes

    async def synthesize(
        self,
        spokesperson: PlayerAgent,
        narrator_output: str,
        reactions: Sequence[Tuple[str, str]],
    ) -> AgentReply:
        """Spokesperson relay of independent group reactions."""
        prompt = get_group_synthesis_prompt(spokesperson.name, narrator_output, reactions)
        return await self.respond(
            spokesperson,
            prompt,
            temperature=SYNTHESIS_TEMPERATURE,
            label=f"{spokesperson.name} (spokesperson)",
        )


def successful_replies(
    outcomes: Sequence[Union[AgentReply, ReactionFailure]],
) -> List[AgentReply]:
    """Successful replies, or the first failure re-raised when every agent failed."""
    replies = [o for o in outcomes if isinstance(o, AgentReply)]
    if outcomes and not replies:
        first = outcomes[0]
        assert isinstance(first, ReactionFailure)
        if isinstance(first.error, ModelsExhaustedError):
            raise first.error
        raise ModelsExhaustedError(
            f"{first.agent_name} reaction", [], first.error
        ) from first.error
    return replies
