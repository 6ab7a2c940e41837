"""
Sequential group discussion.

Players speak one after another, each seeing everything said earlier in
the round, the way a real table talks a decision through. The spokesperson
then relays the outcome, unless synthesis is skipped (pre-game banter).
Contrast with group routing in player_service, where reactions are
independent and concurrent.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from playtest_harness.domain.models.agent import PlayerAgent
from playtest_harness.domain.models.message import Message
from playtest_harness.llm.prompts.players import (
    format_history_context,
    get_discussion_prompt,
    get_discussion_synthesis_prompt,
)
from playtest_harness.services.player_service import (
    SYNTHESIS_TEMPERATURE,
    AgentReply,
    PlayerService,
)

log = structlog.get_logger(__name__)


@dataclass
class DiscussionResult:
    replies: List[AgentReply] = field(default_factory=list)
    synthesis: Optional[AgentReply] = None


class DiscussionService:
    """Runs one discussion round over a list of players."""

    def __init__(self, player_service: PlayerService, context_messages: int = 10):
        self.player_service = player_service
        self.context_messages = context_messages

    async def run(
        self,
        prompt: str,
        players: Sequence[PlayerAgent],
        spokesperson: PlayerAgent,
        history: Sequence[Message] = (),
        synthesize: bool = True,
    ) -> DiscussionResult:
        """
        Run a discussion round.

        Args:
            prompt: What the group is discussing (narrator output or pre-game prompt)
            players: Speakers, in speaking order
            spokesperson: Player who relays the result
            history: Recent transcript shown to every speaker
            synthesize: Whether the spokesperson relays the outcome

        Returns:
            DiscussionResult with one reply per player and the optional synthesis

        Raises:
            ModelsExhaustedError: A speaker or the spokesperson could not respond
        """
        history_context = format_history_context(history, self.context_messages)
        replies: List[AgentReply] = []

        for agent in players:
            prior = [(r.agent_name, r.text) for r in replies]
            speaker_prompt = get_discussion_prompt(prompt, prior, history_context)
            reply = await self.player_service.respond(
                agent, speaker_prompt, label=f"{agent.name} (discussion)"
            )
            replies.append(reply)
            log.debug("discussion_reply", player=agent.name, position=len(replies))

        if not synthesize:
            return DiscussionResult(replies=replies)

        synthesis = await self.player_service.respond(
            spokesperson,
            get_discussion_synthesis_prompt(
                prompt, [(r.agent_name, r.text) for r in replies]
            ),
            temperature=SYNTHESIS_TEMPERATURE,
            label=f"{spokesperson.name} (spokesperson)",
        )
        log.info("discussion_complete", speakers=len(replies), synthesized=True)
        return DiscussionResult(replies=replies, synthesis=synthesis)
