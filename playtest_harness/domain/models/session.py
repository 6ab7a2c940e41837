"""Session configuration and result models.

Core Models:
    - SessionConfig: immutable replay unit (story, prompts, narrator, group)
    - SessionRequest: what a caller asks the runner to play
    - SessionResult: terminal outcome handed to report/batch tooling

Session Lifecycle:
    1. Group generated, SessionConfig frozen
    2. Pre-game banter at turn 0
    3. Turns 1..max_turns until the story ends or the budget is spent
    4. Outcome: completed | timeout | failed
    5. Completed sessions collect post-game player feedback
"""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from playtest_harness.domain.models.agent import StoryContext
from playtest_harness.domain.models.feedback import SessionFeedback
from playtest_harness.domain.models.lineage import CheckpointLineage
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.tracking import CostBreakdown, Issue, PrivateMoment
from playtest_harness.domain.models.world_state import WorldState


class NarratorConfig(BaseModel):
    """Narrator model and sampling parameters."""

    model_config = ConfigDict(frozen=True)

    model: str
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)


class GroupComposition(BaseModel):
    """Who is playing, as fixed at session creation."""

    model_config = ConfigDict(frozen=True)

    archetypes: Tuple[str, ...]
    player_names: Tuple[str, ...]
    spokesperson: str


class SessionConfig(BaseModel):
    """Immutable configuration of one session.

    Branching copies this forward with model_copy(update=...) and a new
    session_id; the original is never touched.
    """

    model_config = ConfigDict(frozen=True)

    session_id: str
    story: StoryContext
    system_prompt: str
    story_guide: str = ""
    narrator: NarratorConfig
    group: GroupComposition
    max_turns: int = Field(ge=1)
    created_at: float = Field(description="Unix epoch seconds")


class SessionRequest(BaseModel):
    """Parameters for starting a new session."""

    story: StoryContext
    system_prompt: str
    story_guide: str = ""
    narrator_model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    max_turns: Optional[int] = Field(default=None, ge=1)
    archetypes: Optional[List[str]] = Field(
        default=None, description="Fixed group composition; random when omitted"
    )
    group_size: Optional[int] = Field(default=None, ge=2, le=5)
    session_id: Optional[str] = None


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    FAILED = "failed"


class SessionResult(BaseModel):
    """Terminal result of a session."""

    session_id: str
    outcome: SessionOutcome
    config: Optional[SessionConfig] = None
    conversation_history: List[Message] = Field(default_factory=list)
    final_turn: int = 0
    duration_seconds: float = 0.0
    cost_breakdown: CostBreakdown = Field(default_factory=CostBreakdown)
    tangents: List[Issue] = Field(default_factory=list)
    private_moments: List[PrivateMoment] = Field(default_factory=list)
    world_state: WorldState = Field(default_factory=WorldState)
    lineage: Optional[CheckpointLineage] = None
    player_feedback: Optional[SessionFeedback] = Field(
        default=None, description="Post-game feedback; completed sessions only"
    )
    error: Optional[str] = None
