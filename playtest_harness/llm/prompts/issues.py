"""
Prompts for LLM-assisted transcript analysis.
"""

from typing import List, Sequence

from pydantic import BaseModel, Field

from playtest_harness.domain.models.message import Message


class ContradictionFinding(BaseModel):
    turn: int
    description: str


class ContradictionReport(BaseModel):
    """Semantic contradictions found in a sampled transcript."""

    contradictions: List[ContradictionFinding] = Field(default_factory=list)


def get_contradiction_prompt(sampled: Sequence[Message]) -> str:
    transcript = "\n\n".join(f"Turn {m.turn}: {m.content}" for m in sampled)
    return f"""Analyze this narrative transcript for contradictions. Look for:
- Character descriptions that change (hair color, age, etc.)
- Location inconsistencies (indoors then suddenly outdoors without transition)
- Object state changes without explanation
- Factual contradictions about events

TRANSCRIPT:
{transcript}

List any contradictions found. For each, provide:
- Turn number where contradiction appears
- Brief description of the contradiction

If no contradictions found, return an empty list."""
