"""
Prompts for player agents and the spokesperson.

Covers:
- Player system prompt composed from archetype, identity and group context
- Reaction, directed-question and private-aside prompts
- Spokesperson synthesis for group reactions and discussions
- Discussion-round and pre-game prompts
- The locked character block appended once characters are known
"""

from typing import List, Sequence, Tuple

from playtest_harness.core.archetype_loader import Archetype
from playtest_harness.domain.models.agent import (
    GroupContext,
    PlayerIdentity,
    StoryContext,
)
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.world_state import CharacterMapping
from playtest_harness.llm.client import ChatMessage

PLAYER_ACK_PLACEHOLDER = "[Players acknowledge.]"
PLAYER_LISTEN_PLACEHOLDER = "[Players listen.]"


def get_player_system_prompt(
    archetype: Archetype,
    identity: PlayerIdentity,
    group_context: GroupContext,
    other_players: Sequence[PlayerIdentity],
    story: StoryContext,
) -> str:
    """
    Compose the system prompt for one player agent.

    Args:
        archetype: The player's play-style archetype
        identity: Generated identity for this player
        group_context: Shared friend-group context
        other_players: Everyone else at the table
        story: Story being played

    Returns:
        System prompt string
    """
    if other_players:
        relationships = "\n".join(
            f"- {p.name}: {identity.relationships.get(p.name, 'friend')}"
            for p in other_players
        )
    else:
        relationships = "- Playing solo tonight (no other players)"

    memories = "\n".join(f"- {m}" for m in group_context.shared_memories) or "- None"
    patterns = "\n".join(f"- {p}" for p in archetype.patterns)
    friend_names = '", "'.join(p.name for p in other_players)

    return f"""You are {identity.name}, playing an interactive fiction game with friends.

## Your Friend Group
{group_context.relationship}. You've {group_context.history}.

Tonight: {group_context.occasion}

{group_context.organizer} suggested "{story.title}" because {group_context.story_reason}.

Group vibe: {group_context.dynamic}

## Your Friends Tonight
{relationships}

## Shared History
You might naturally reference these memories during tangents:
{memories}

## Who You Are
In the group: {identity.group_role}

Why you're here: {identity.personal_reason}

Tonight you're {identity.current_state}.

Background: {identity.backstory}

## Your Play Style
{archetype.style}

Behavioral patterns:
{patterns}

## How to Play
- Respond as {identity.name} would with these specific friends
- Reference shared history naturally when tangents happen (don't force it)
- React to friends by name: "{friend_names}"
- Your personality quirk shows ~{round(archetype.quirk_frequency * 100)}% of the time
- Stay in character but adapt to what the story needs
- Keep responses concise (1-3 sentences typically)
- You're ONE player in a GROUP - listen, contribute, don't dominate

IMPORTANT:
- NEVER break character or refer to yourself as an AI
- You're with friends playing a game - be natural, be yourself
- Tangents are fine - you have shared history to reference
- When the narrator asks you a personality question, draw from your backstory"""


def get_character_commitment_block(player_name: str, character: CharacterMapping) -> str:
    """Locked character block appended once to a player's system prompt."""
    description = f"\n{character.description}" if character.description else ""
    items = f"\nEquipment: {', '.join(character.items)}" if character.items else ""
    return f"""## YOUR CHARACTER (LOCKED)

You are playing: **{character.character_name}**{description}{items}

- This character name is LOCKED for the rest of the story
- OOC commentary uses your real name: ({player_name}: wow this is creepy!)"""


# =============================================================================
# Reaction messages
# =============================================================================


def build_player_messages(
    history: Sequence[Message],
    narrator_output: str,
    instruction: str,
    context_messages: int = 10,
) -> List[ChatMessage]:
    """
    Build the chat messages a player sees when reacting to narrator output.

    The last context_messages history entries are mapped narrator ->
    assistant, everyone else -> user, with placeholders keeping
    user/assistant alternation. The new narrator output is appended if it
    is not already last, then the instruction closes the conversation.
    """
    messages: List[ChatMessage] = []
    recent = list(history)[-context_messages:]

    for m in recent:
        role = "assistant" if m.role == MessageRole.NARRATOR else "user"
        if role == "assistant" and messages and messages[-1].role == "assistant":
            messages.append(ChatMessage("user", PLAYER_ACK_PLACEHOLDER))
        content = m.content
        if m.role != MessageRole.NARRATOR and m.player:
            content = f"{m.player}: {m.content}"
        messages.append(ChatMessage(role, content))

    last = messages[-1] if messages else None
    if last is None or last.role != "assistant" or last.content != narrator_output:
        if last is not None and last.role == "assistant":
            messages.append(ChatMessage("user", PLAYER_LISTEN_PLACEHOLDER))
        messages.append(ChatMessage("assistant", narrator_output))

    messages.append(ChatMessage("user", instruction))
    return messages


def get_reaction_instruction(player_name: str) -> str:
    return f"{player_name}, what is your reaction to this? Respond in character."


def get_directed_instruction(player_name: str) -> str:
    return f"""The narrator has asked YOU ({player_name}) specific questions directly.

Answer ONLY the questions addressed to you. Do not answer questions meant for other players.

Respond in character as {player_name}."""


def get_private_instruction(player_name: str) -> str:
    return f"""The narrator has shared something with YOU ({player_name}) alone. The rest of the group did not see it.

React privately, in character as {player_name}. Keep it brief."""


# =============================================================================
# Spokesperson synthesis
# =============================================================================


def get_group_synthesis_prompt(
    spokesperson_name: str,
    narrator_output: str,
    reactions: Sequence[Tuple[str, str]],
) -> str:
    """Synthesis prompt after independent group reactions.

    Args:
        spokesperson_name: Name of the spokesperson
        narrator_output: What the narrator just said
        reactions: (player name, reaction) pairs
    """
    responses = "\n".join(f'{name}: "{text}"' for name, text in reactions)
    return f"""The group just heard from the narrator:
"{narrator_output}"

Individual player responses:
{responses}

As {spokesperson_name}, synthesize these responses into a single coherent message to relay back to the narrator. Keep it concise and preserve important details."""


def get_discussion_synthesis_prompt(
    narrator_prompt: str, replies: Sequence[Tuple[str, str]]
) -> str:
    """Synthesis prompt after a sequential discussion round."""
    discussed = "\n\n".join(f'{name}: "{text}"' for name, text in replies)
    return f"""The narrator asked:
"{narrator_prompt}"

Your group discussed:
{discussed}

As the spokesperson, relay the group's decision/response to the narrator. Be concise."""


# =============================================================================
# Discussion rounds
# =============================================================================


def format_history_context(history: Sequence[Message], limit: int = 10) -> str:
    recent = list(history)[-limit:]
    if not recent:
        return ""
    lines = [f"{m.player or m.role.value}: {m.content}" for m in recent]
    return "\n".join(lines) + "\n\n"


def get_discussion_prompt(
    narrator_prompt: str,
    prior_replies: Sequence[Tuple[str, str]],
    history_context: str = "",
) -> str:
    """Prompt for one speaker in a discussion round.

    prior_replies are the (name, text) pairs already spoken this round, shown
    verbatim so later speakers react to earlier ones.
    """
    said = "\n\n".join(f'{name}: "{text}"' for name, text in prior_replies)
    friends = f"Your friends have said:\n{said}\n\n" if said else ""
    return f"""{history_context}The narrator just said:
"{narrator_prompt}"

{friends}What do you think? Discuss with your friends."""


def get_pregame_prompt(story_title: str) -> str:
    return (
        f'You\'re about to play "{story_title}" with your friends. '
        f"Chat for a moment before starting."
    )
