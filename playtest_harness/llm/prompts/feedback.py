"""
Prompts for post-game feedback.

The agent keeps its own system prompt (so it remembers who it played) with
a mode-change block appended that takes it out of character.
"""

from typing import Sequence

from playtest_harness.domain.models.message import Message

FEEDBACK_SAMPLE_MESSAGES = 20
FEEDBACK_SAMPLE_CHARS = 200

FEEDBACK_MODE_BLOCK = """**MODE CHANGE: FEEDBACK COLLECTION**

The game is OVER. You are now an AI TEST AGENT evaluating the experience.

CRITICAL INSTRUCTIONS:
- Do NOT roleplay as your character
- Do NOT reference fictional shared memories as real experiences
- You are EVALUATING the story and narrator performance analytically
- Reference actual content from the session
- Be specific and critical"""


def get_feedback_system_prompt(agent_system_prompt: str) -> str:
    return f"{agent_system_prompt}\n\n{FEEDBACK_MODE_BLOCK}"


def get_feedback_prompt(
    agent_name: str, archetype: str, history: Sequence[Message]
) -> str:
    """Interview prompt over a sample of the most recent narrator outputs."""
    narration = [m for m in history if m.is_narrator][-FEEDBACK_SAMPLE_MESSAGES:]
    moments = "\n---\n".join(m.content[:FEEDBACK_SAMPLE_CHARS] for m in narration)
    return f"""You played as "{agent_name}" (archetype: {archetype}).

Sample narrator outputs from the session:
{moments or '(no narration recorded)'}

Evaluate the STORY and NARRATOR:

1. HIGHLIGHT: Best moment. Why was it effective?
2. AGENCY: Did choices feel meaningful? Specific example.
3. FRUSTRATIONS: Problems? (railroading, inconsistency, pacing)
4. MISSED OPPORTUNITIES: What could have been better?
5. PACING: Too fast, too slow, or good?
6. NARRATOR RATING: 1-10. Strengths and weaknesses?
7. GROUP DYNAMICS: How well did narrator handle multiple players?"""
