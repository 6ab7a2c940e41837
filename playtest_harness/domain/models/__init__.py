"""Domain models package."""

from .agent import GroupConfig, GroupContext, PlayerAgent, PlayerIdentity, StoryContext
from .checkpoint import CHECKPOINT_VERSION, Checkpoint
from .classification import (
    Classification,
    DirectedRouting,
    DiscussionRouting,
    GroupRouting,
    NoResponse,
    PrivateRouting,
    ResponseType,
    RoutingPolicy,
    routing_policy_for,
)
from .feedback import PacingRating, PlayerFeedback, SessionFeedback
from .lineage import CheckpointLineage
from .message import Message, MessageRole
from .progress import ProgressCallback, ProgressEvent, ProgressKind
from .session import (
    GroupComposition,
    NarratorConfig,
    SessionConfig,
    SessionOutcome,
    SessionRequest,
    SessionResult,
)
from .tracking import (
    CostBreakdown,
    Issue,
    IssueKind,
    IssueSeverity,
    PrivateMoment,
    TokenUsage,
)
from .world_state import CharacterMapping, WorldState

__all__ = [
    "GroupConfig",
    "GroupContext",
    "PlayerAgent",
    "PlayerIdentity",
    "StoryContext",
    "CHECKPOINT_VERSION",
    "Checkpoint",
    "CheckpointLineage",
    "PacingRating",
    "PlayerFeedback",
    "SessionFeedback",
    "Classification",
    "DirectedRouting",
    "DiscussionRouting",
    "GroupRouting",
    "NoResponse",
    "PrivateRouting",
    "ResponseType",
    "RoutingPolicy",
    "routing_policy_for",
    "Message",
    "MessageRole",
    "ProgressCallback",
    "ProgressEvent",
    "ProgressKind",
    "GroupComposition",
    "NarratorConfig",
    "SessionConfig",
    "SessionOutcome",
    "SessionRequest",
    "SessionResult",
    "CostBreakdown",
    "Issue",
    "IssueKind",
    "IssueSeverity",
    "PrivateMoment",
    "TokenUsage",
    "CharacterMapping",
    "WorldState",
]
