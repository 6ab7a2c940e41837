"""
Turn processing pipeline context.

Carries the live session state plus each stage's output through the
pipeline. Accessors for stage outputs raise RuntimeError when read before
the producing stage ran, so a misordered pipeline fails loudly.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from playtest_harness.domain.models.classification import Classification, RoutingPolicy
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.progress import ProgressCallback
from playtest_harness.domain.models.session import SessionOutcome
from playtest_harness.domain.models.tracking import PrivateMoment
from playtest_harness.llm.client import TokenCallback
from playtest_harness.services.narrator_service import NarratorOutput
from playtest_harness.services.session_state import SessionState


@dataclass
class TurnContext:
    """State accumulated across the stages of one turn.

    Stage outputs:
    - NarratorGenerationStage: narrator_output
    - ClassificationStage: classification, routing_policy, narrator_message
    - WorldStateStage: paid_off
    - RoutingStage: replies
    - CharacterCommitStage: committed_characters
    - CheckpointStage: checkpoint_location
    - TerminationStage: should_continue, outcome, termination_reason
    """

    # =============================================================================
    # Inputs
    # =============================================================================
    state: SessionState
    turn: int
    on_token: Optional[TokenCallback] = None
    on_progress: Optional[ProgressCallback] = None

    # =============================================================================
    # Stage outputs
    # =============================================================================
    narrator_output: Optional[NarratorOutput] = None
    classification: Optional[Classification] = None
    routing_policy: Optional[RoutingPolicy] = None
    narrator_message: Optional[Message] = None
    paid_off: List[PrivateMoment] = field(default_factory=list)
    replies: List[Message] = field(default_factory=list)
    committed_characters: List[str] = field(default_factory=list)
    checkpoint_location: Optional[str] = None
    should_continue: bool = True
    outcome: Optional[SessionOutcome] = None
    termination_reason: Optional[str] = None

    stage_timings: Dict[str, float] = field(default_factory=dict)

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def narrator_text(self) -> str:
        if self.narrator_output is None:
            raise RuntimeError(
                "narrator_text accessed before NarratorGenerationStage completed"
            )
        return self.narrator_output.text

    @property
    def policy(self) -> RoutingPolicy:
        if self.routing_policy is None:
            raise RuntimeError("routing_policy accessed before ClassificationStage completed")
        return self.routing_policy
