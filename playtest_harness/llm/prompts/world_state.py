"""
Prompts for world-state tracking.

- State-update extraction from narrator output
- Player -> character mapping extraction from introductions
- [GAME STATE] block injected into the narrator system prompt
"""

from typing import Sequence

from playtest_harness.domain.models.world_state import WorldState


def get_state_update_prompt(state: WorldState, narrator_output: str) -> str:
    character_names = ", ".join(c.character_name for c in state.characters)
    npcs = ", ".join(state.npcs_encountered)
    return f"""Analyze this narrator response for state changes.

Current characters: {character_names or 'none established yet'}
Current location: {state.location}
Known NPCs: {npcs or 'none'}

Narrator response:
{narrator_output}

Extract any:
- Location change (null if no change, otherwise the new location name)
- New items given to characters (use their story character names)
- New NPCs introduced by name (not generic "a stranger" - only named NPCs)
- Significant plot events as boolean flags (e.g., "found_ledger": true)

Be conservative - only extract clear, explicit changes."""


def get_character_extraction_prompt(
    player_names: Sequence[str], introductions: str
) -> str:
    return f"""Extract the player-to-character mappings from this introduction.

Players in the game: {', '.join(player_names)}

Introduction text:
{introductions}

For each player, identify:
- Their real name (player_name) - must match one from the list above
- Their story character name (character_name)
- Brief description if given
- Their role in the story if stated

Return an empty list if no story characters have been chosen yet."""


def format_state_for_injection(state: WorldState, spokesperson: str = "") -> str:
    """
    Render the [GAME STATE] block for the narrator.

    Returns an empty string until characters are known, so early turns
    carry no state block at all.
    """
    if not state.characters:
        return ""

    character_lines = []
    for c in state.characters:
        role = "spokesperson" if c.player_name == spokesperson else "player"
        description = f" - {c.description}" if c.description else ""
        character_lines.append(
            f'- {c.player_name} ({role}) is playing "{c.character_name}"{description}'
        )

    inventory_lines = [
        f"- {c.character_name}: {', '.join(c.items)}" for c in state.characters if c.items
    ]

    output = "[GAME STATE]\nPlayers and their characters:\n" + "\n".join(
        character_lines
    )
    if inventory_lines:
        output += "\n\nItems in play:\n" + "\n".join(inventory_lines)
    output += f"\n\nCurrent location: {state.location}"
    if state.npcs_encountered:
        output += f"\nNPCs encountered: {', '.join(state.npcs_encountered)}"
    output += "\n[END GAME STATE]"
    return output
