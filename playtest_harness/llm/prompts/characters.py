"""
Prompts for generating a believable friend group.

Group context is generated first; identities are then generated one at a
time so each new player can form relationships with those already made.
"""

import json
from typing import Dict, Optional, Sequence

from pydantic import BaseModel, Field

from playtest_harness.core.archetype_loader import Archetype
from playtest_harness.domain.models.agent import (
    GroupContext,
    PlayerIdentity,
    StoryContext,
)


class GeneratedIdentity(BaseModel):
    """Structured output for one player identity."""

    name: str = Field(description="A natural first name")
    group_role: str
    relationships: Dict[str, str] = Field(default_factory=dict)
    personal_reason: str
    current_state: str
    backstory: str


def get_group_context_prompt(
    story: StoryContext, archetypes: Sequence[Archetype]
) -> str:
    personalities = ", ".join(f"{a.name}: {a.style}" for a in archetypes)
    setting = f" - {story.setting}" if story.setting else ""
    return f"""Generate a friend group context for {len(archetypes)} people about to play an interactive fiction game.

Story they're playing: "{story.title}"{setting}

The group has these personality types: {personalities}

Create a believable friend group. They should:
- Have a clear relationship (how they met, how long ago)
- Have a reason for tonight's session (game night, birthday, killing time, etc.)
- Have someone who suggested this specific story
- Have 2-3 shared memories they might reference during play (inside jokes, shared experiences)
- Feel like real friends, not strangers

Be creative. Make them feel like actual friends with history."""


def get_identity_prompt(
    group_context: GroupContext,
    archetype: Archetype,
    existing: Sequence[PlayerIdentity],
    taken_names: Optional[Sequence[str]] = None,
) -> str:
    if existing:
        existing_desc = "\n".join(f"- {p.name}: {p.group_role}" for p in existing)
    else:
        existing_desc = "None yet - this is the first player"
    names = ", ".join(p.name for p in existing) or "none yet"
    avoid = ", ".join(taken_names or [p.name for p in existing])
    avoid_line = f"\n- Has a name different from: {avoid}" if avoid else ""

    return f"""Generate a player character for a group interactive fiction session.

GROUP CONTEXT:
{json.dumps(group_context.model_dump(), indent=2)}

OTHER PLAYERS ALREADY CREATED:
{existing_desc}

THIS PLAYER'S ARCHETYPE:
{archetype.name}: {archetype.style}
Behavioral patterns: {', '.join(archetype.patterns)}

Generate a character who:
- Fits naturally into this friend group
- Has specific relationships to the other players (use their actual names: {names})
- Has a reason for being here tonight that fits the occasion
- Matches the archetype's personality
- Feels like a real person, not a game character{avoid_line}

The backstory should be 2-3 sentences the player can draw on when the narrator asks personality questions."""
