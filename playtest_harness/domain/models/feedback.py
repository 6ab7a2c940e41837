"""Post-game feedback from the player agents.

Collected once a session completes: each agent steps out of character and
rates the story and the narrator. The per-player answers are then folded
into one SessionFeedback for reports and batch comparison.
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field


class PacingRating(str, Enum):
    TOO_FAST = "too-fast"
    TOO_SLOW = "too-slow"
    GOOD = "good"


class FeedbackHighlight(BaseModel):
    moment: str = Field(description="Your single favorite moment from the story")
    reason: str = Field(description="Why this moment stood out")


class FeedbackAgency(BaseModel):
    felt_meaningful: bool = Field(description="Did your choices feel like they mattered?")
    example: str = Field(
        description="A specific example of a meaningful (or meaningless) choice"
    )


class FeedbackPacing(BaseModel):
    rating: PacingRating = Field(description="Overall pacing")
    notes: str = Field(description="Specific pacing observations")


class NarratorRating(BaseModel):
    score: float = Field(ge=1, le=10, description="Rating from 1-10")
    positives: List[str] = Field(default_factory=list, description="What the narrator did well")
    negatives: List[str] = Field(
        default_factory=list, description="What the narrator could improve"
    )


# =============================================================================
# Structured extraction schema
# =============================================================================


class PlayerFeedbackSchema(BaseModel):
    """What one agent is asked to fill in after the game."""

    highlight: FeedbackHighlight
    agency: FeedbackAgency
    frustrations: List[str] = Field(
        default_factory=list, description="Things that were confusing, unfair, or annoying"
    )
    missed_opportunities: List[str] = Field(
        default_factory=list, description="Things you wanted to do but couldn't"
    )
    pacing: FeedbackPacing
    narrator_rating: NarratorRating
    group_dynamics: str = Field(
        description="How playing with others affected your experience"
    )


# =============================================================================
# Results
# =============================================================================


class PlayerFeedback(PlayerFeedbackSchema):
    """One agent's answers, labelled with who gave them."""

    agent_name: str
    archetype: str


class SessionFeedback(BaseModel):
    """Feedback of every agent plus the session-level summary."""

    session_id: str
    players: List[PlayerFeedback] = Field(default_factory=list)
    top_moments: List[str] = Field(default_factory=list)
    shared_pain_points: List[str] = Field(default_factory=list)
    narrator_score: float = 0.0
    narrator_strengths: List[str] = Field(default_factory=list)
    narrator_weaknesses: List[str] = Field(default_factory=list)
    pacing_verdict: str = "No feedback collected"
    recommendations: List[str] = Field(default_factory=list)
