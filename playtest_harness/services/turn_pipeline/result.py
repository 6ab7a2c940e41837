"""
Result object for the turn processing pipeline.

Returned by the pipeline after all stages complete.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from playtest_harness.domain.models.classification import Classification
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.session import SessionOutcome


@dataclass
class TurnResult:
    """Result of processing a single turn."""

    turn: int
    narrator_text: str
    classification: Classification
    routing: str  # Routing policy variant name, e.g. "GroupRouting"
    replies: List[Message] = field(default_factory=list)
    should_continue: bool = True
    outcome: Optional[SessionOutcome] = None  # Set when should_continue is False
    termination_reason: Optional[str] = None  # "story_ended" | "max_turns_reached"
    checkpoint_location: Optional[str] = None  # None if the write failed
    latency_ms: int = 0
    stage_timings: Dict[str, float] = field(default_factory=dict)
