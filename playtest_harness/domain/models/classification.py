"""Narrator output classification and routing policies.

The classifier labels each narrator output with exactly one ResponseType.
routing_policy_for() turns that label into a RoutingPolicy variant, which
the routing stage handles exhaustively.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from playtest_harness.domain.models.tracking import TokenUsage


class ResponseType(str, Enum):
    GROUP = "group"
    DISCUSSION = "discussion"
    DIRECTED = "directed"
    PRIVATE = "private"
    NONE = "none"


class ClassificationSchema(BaseModel):
    """Structured output requested from the classifier model."""

    is_ending: bool = Field(description="True only if the story has concluded")
    response_type: ResponseType
    target_players: Optional[List[str]] = Field(
        default=None, description="Player names for directed/private"
    )
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


class Classification(BaseModel):
    """Classifier verdict for one narrator output."""

    model_config = ConfigDict(protected_namespaces=())

    is_ending: bool = False
    response_type: ResponseType = ResponseType.GROUP
    target_players: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""
    degraded: bool = Field(
        default=False, description="True when the permissive default was used"
    )
    model_used: Optional[str] = None
    usage: Optional[TokenUsage] = None

    @classmethod
    def fallback(cls) -> "Classification":
        """Permissive default: keep the story going with a group reaction."""
        return cls(
            is_ending=False,
            response_type=ResponseType.GROUP,
            confidence=0.0,
            reasoning="Classification failed - using fallback",
            degraded=True,
        )


# =============================================================================
# Routing policies
# =============================================================================


@dataclass(frozen=True)
class GroupRouting:
    """Every player reacts independently; spokesperson synthesizes."""


@dataclass(frozen=True)
class DiscussionRouting:
    """Players deliberate sequentially; spokesperson synthesizes."""


@dataclass(frozen=True)
class DirectedRouting:
    """Only the named players answer, no synthesis."""

    targets: Tuple[str, ...]


@dataclass(frozen=True)
class PrivateRouting:
    """One player answers a secret aside.

    target is None when the classifier named nobody; the router then falls
    back to textual cues in the narrator output.
    """

    target: Optional[str]


@dataclass(frozen=True)
class NoResponse:
    """Pure narration."""


RoutingPolicy = Union[
    GroupRouting, DiscussionRouting, DirectedRouting, PrivateRouting, NoResponse
]


def routing_policy_for(classification: Classification) -> RoutingPolicy:
    """Map a classification onto its routing policy.

    Directed output with no named targets degrades to a group reaction.
    """
    response_type = classification.response_type
    targets = tuple(t for t in classification.target_players if t.strip())

    if response_type == ResponseType.GROUP:
        return GroupRouting()
    elif response_type == ResponseType.DISCUSSION:
        return DiscussionRouting()
    elif response_type == ResponseType.DIRECTED:
        return DirectedRouting(targets) if targets else GroupRouting()
    elif response_type == ResponseType.PRIVATE:
        return PrivateRouting(targets[0] if targets else None)
    elif response_type == ResponseType.NONE:
        return NoResponse()
    raise ValueError(f"Unknown response type: {response_type}")
