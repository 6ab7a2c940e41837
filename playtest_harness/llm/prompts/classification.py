"""
Prompts for classifying narrator output into a routing policy.
"""

from typing import Sequence

CLASSIFICATION_SYSTEM_PROMPT = """You are analyzing narrator output from an interactive fiction game.

You must answer TWO questions:

## QUESTION 1: response_type - HOW should players respond?

**discussion** - Players need to deliberate together
- Character creation: "Who are you?", "What's your backstory?"
- Equipment choices: "What do you carry?"
- Path decisions: "Left or right?", "Door A or B?"
- Major decisions: "Do you accept?", "Do you enter?"
- Key: Requires GROUP COORDINATION before answering

**directed** - Only specific named players should respond
- "**Alex** - tell me about your character"
- "Alex, Jordan - what do you do?"
- Questions addressed to specific players BY NAME
- NOT private, but only named players respond
- Set target_players to the list of names

**private** - Single player addressed secretly
- "[To X only]" or "X, you alone notice..."
- Secrets that would spoil group experience
- Set target_players to a single-element list

**group** - All players react, spokesperson synthesizes
- General narrative that invites reactions
- No specific choice or question posed
- Default for most story beats

**none** - No player response needed
- Story ending/epilogue
- Pure narration that doesn't invite response

## QUESTION 2: is_ending - Is the story OVER?

**is_ending: true** only when:
- Explicit ending: "The End", "Fin", story concludes
- Epilogue wrapping up fates
- Narrator explicitly ends session
- NOT just a dramatic moment

Analyze the narrator output and provide response_type, is_ending, target_players (if applicable), confidence (0-1) and brief reasoning."""


def get_classification_user_prompt(
    narrator_output: str, player_names: Sequence[str]
) -> str:
    names = ", ".join(player_names) or "Unknown"
    return (
        f"Narrator output to classify:\n\n{narrator_output}\n\n"
        f"Player names: {names}"
    )
