"""
Stage 4: Route narrator output to the players.

One handler per RoutingPolicy variant:
- GroupRouting: independent concurrent reactions, spokesperson synthesizes
- DiscussionRouting: sequential discussion, spokesperson synthesizes
- DirectedRouting: only the named players answer, no synthesis
- PrivateRouting: one resolved player answers and the moment is recorded;
  an unresolvable target gets no reply at all
- NoResponse: nothing
"""

import time
from typing import TYPE_CHECKING, List, Optional, Sequence, assert_never

import structlog

from ..base import TurnStage
from playtest_harness.domain.models.agent import PlayerAgent
from playtest_harness.domain.models.classification import (
    DirectedRouting,
    DiscussionRouting,
    GroupRouting,
    NoResponse,
    PrivateRouting,
)
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.progress import ProgressKind, emit_progress
from playtest_harness.services.classifier_service import resolve_private_target
from playtest_harness.services.discussion_service import DiscussionService
from playtest_harness.services.player_service import (
    AgentReply,
    PlayerService,
    successful_replies,
)

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class RoutingStage(TurnStage):
    """
    Produce the players' side of the turn.

    Populates TurnContext.replies (also appended to the session history).
    """

    def __init__(self, player_service: PlayerService, discussion_service: DiscussionService):
        self.players = player_service
        self.discussion = discussion_service

    async def process(self, context: "TurnContext") -> "TurnContext":
        """
        Dispatch on the routing policy.

        Raises:
            ModelsExhaustedError: Synthesis or discussion failed, a private
                reply failed, or every player in a group/directed turn failed
        """
        policy = context.policy

        if isinstance(policy, GroupRouting):
            await self._group(context)
        elif isinstance(policy, DiscussionRouting):
            await self._discussion(context)
        elif isinstance(policy, DirectedRouting):
            await self._directed(context, policy)
        elif isinstance(policy, PrivateRouting):
            await self._private(context, policy)
        elif isinstance(policy, NoResponse):
            log.info("routing_no_response", turn=context.turn)
        else:
            assert_never(policy)

        return context

    # ==========================================================================
    # Policy handlers
    # ==========================================================================

    async def _group(self, context: "TurnContext") -> None:
        state = context.state
        narrator_text = context.narrator_text

        outcomes = await self.players.react_all(
            state.group.players, narrator_text, state.history, mode="reaction"
        )
        replies = successful_replies(outcomes)
        for reply in replies:
            self._record(context, reply, MessageRole.PLAYER)

        synthesis = await self.players.synthesize(
            state.group.spokesperson_agent,
            narrator_text,
            [(r.agent_name, r.text) for r in replies],
        )
        self._record(context, synthesis, MessageRole.SPOKESPERSON)
        log.info(
            "routing_group_complete",
            turn=context.turn,
            reactions=len(replies),
            failed=len(outcomes) - len(replies),
        )

    async def _discussion(self, context: "TurnContext") -> None:
        state = context.state
        prior = [m for m in state.history if m is not context.narrator_message]

        result = await self.discussion.run(
            context.narrator_text,
            state.group.players,
            state.group.spokesperson_agent,
            history=prior,
            synthesize=True,
        )
        for reply in result.replies:
            self._record(context, reply, MessageRole.PLAYER)
        if result.synthesis is not None:
            self._record(context, result.synthesis, MessageRole.SPOKESPERSON)

    async def _directed(self, context: "TurnContext", policy: DirectedRouting) -> None:
        state = context.state
        targets = _resolve_targets(state.group.find, policy.targets)
        if not targets:
            log.warning(
                "directed_targets_unresolved",
                turn=context.turn,
                targets=list(policy.targets),
            )
            await self._group(context)
            return

        outcomes = await self.players.react_all(
            targets, context.narrator_text, state.history, mode="directed"
        )
        for reply in successful_replies(outcomes):
            self._record(context, reply, MessageRole.PLAYER)
        log.info(
            "routing_directed_complete",
            turn=context.turn,
            targets=[a.name for a in targets],
        )

    async def _private(self, context: "TurnContext", policy: PrivateRouting) -> None:
        state = context.state
        target = resolve_private_target(policy.target, context.narrator_text, state.group)
        if target is None:
            log.info("routing_private_skipped", turn=context.turn)
            return

        reply = await self.players.react(
            target, context.narrator_text, state.history, mode="private"
        )
        self._record(context, reply, MessageRole.PLAYER)
        state.private_moments.add(
            turn=context.turn,
            target=target.name,
            content=context.narrator_text,
            response=reply.text,
        )

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _record(self, context: "TurnContext", reply: AgentReply, role: MessageRole) -> None:
        """Append a reply to the history, charge it to players and report it."""
        state = context.state
        message = Message(
            role=role,
            player=reply.agent_name,
            content=reply.text,
            turn=context.turn,
            timestamp=time.time(),
            reasoning=reply.reasoning,
        )
        state.history.append(message)
        context.replies.append(message)
        state.cost_tracker.record("players", reply.model_used, reply.usage)
        emit_progress(
            context.on_progress,
            (
                ProgressKind.SPOKESPERSON_TURN
                if role == MessageRole.SPOKESPERSON
                else ProgressKind.PLAYER_TURN
            ),
            context.session_id,
            turn=context.turn,
            player=reply.agent_name,
            content=reply.text,
        )


def _resolve_targets(find, names: Sequence[str]) -> List[PlayerAgent]:
    """Agents for names in order, unknown names dropped, duplicates collapsed."""
    agents: List[PlayerAgent] = []
    for name in names:
        agent: Optional[PlayerAgent] = find(name)
        if agent is not None and all(a.name != agent.name for a in agents):
            agents.append(agent)
    return agents
