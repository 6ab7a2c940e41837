"""
Prompts and history projection for the narrator.

The narrator only ever sees its own output and what the spokesperson
relays. Pre-game chatter (turn 0) and individual player messages never
reach it. Chat APIs expect user/assistant alternation, so adjacent narrator
messages get a placeholder user message between them.
"""

from typing import List, Optional, Sequence

from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.llm.client import ChatMessage

NARRATOR_ACK_PLACEHOLDER = (
    "[The players acknowledge and wait for the narrator to continue.]"
)
FIRST_TURN_PROMPT = "Hi"
SPOKESPERSON_PREFIX = "Players: "


def narrator_visible_history(history: Sequence[Message]) -> List[Message]:
    """Narrator and spokesperson messages from the main loop, in order."""
    return [
        m
        for m in history
        if m.turn > 0 and m.role in (MessageRole.NARRATOR, MessageRole.SPOKESPERSON)
    ]


def build_narrator_messages(history: Sequence[Message]) -> List[ChatMessage]:
    """
    Project the conversation history into the narrator's chat messages.

    Narrator output becomes "assistant", spokesperson relays become "user"
    prefixed with "Players: ". Two narrator messages are never adjacent: a
    placeholder user message is injected between them. The projection always
    ends on a user message so the model has something to answer.

    Args:
        history: Full conversation history

    Returns:
        Alternating chat messages for the narrator call
    """
    messages: List[ChatMessage] = []
    for m in narrator_visible_history(history):
        if m.role == MessageRole.NARRATOR:
            if messages and messages[-1].role == "assistant":
                messages.append(ChatMessage("user", NARRATOR_ACK_PLACEHOLDER))
            messages.append(ChatMessage("assistant", m.content))
        else:
            messages.append(ChatMessage("user", f"{SPOKESPERSON_PREFIX}{m.content}"))

    if not messages:
        return [ChatMessage("user", FIRST_TURN_PROMPT)]
    # Turn 1 was answered from the opening prompt, so replay it first
    if messages[0].role == "assistant":
        messages.insert(0, ChatMessage("user", FIRST_TURN_PROMPT))
    if messages[-1].role == "assistant":
        messages.append(ChatMessage("user", NARRATOR_ACK_PLACEHOLDER))
    return messages


def get_narrator_system_prompt(
    system_prompt: str,
    story_guide: str = "",
    world_state_block: Optional[str] = None,
) -> str:
    """
    Compose the narrator system prompt for one turn.

    Args:
        system_prompt: Narrator system prompt under test
        story_guide: Optional story guide appended under its own heading
        world_state_block: Optional [GAME STATE] block, appended last

    Returns:
        System prompt string
    """
    parts = [system_prompt.rstrip()]
    if story_guide.strip():
        parts.append(f"## STORY GUIDE\n\n{story_guide.strip()}")
    if world_state_block:
        parts.append(world_state_block)
    return "\n\n".join(parts)
