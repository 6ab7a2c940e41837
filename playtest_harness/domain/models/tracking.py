"""Bookkeeping models: private moments, transcript issues, token costs."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PrivateMoment(BaseModel):
    """A narrator aside addressed to exactly one player.

    payoff_detected is monotonic: once set it never reverts.
    """

    turn: int
    target: str
    content: str = Field(description="Narrator text that opened the moment")
    response: str = ""
    payoff_detected: bool = False
    payoff_turn: Optional[int] = None


class IssueKind(str, Enum):
    CONTRADICTION = "contradiction"
    LOOP = "loop"
    FORCED_SEGUE = "forced-segue"
    STUCK = "stuck"
    CONFUSION = "confusion"


class IssueSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class Issue(BaseModel):
    """A flagged problem in the transcript."""

    turn: int
    kind: IssueKind
    description: str
    severity: IssueSeverity
    related_content: Optional[str] = None


class TokenUsage(BaseModel):
    """Token counts for one or more model calls."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class CategoryCost(BaseModel):
    """Token totals and USD estimate for one cost category."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


class CostBreakdown(BaseModel):
    """Per-category costs for a whole session."""

    narrator: CategoryCost = Field(default_factory=CategoryCost)
    players: CategoryCost = Field(default_factory=CategoryCost)
    classification: CategoryCost = Field(default_factory=CategoryCost)
    total_cost_usd: float = 0.0
    total_tokens: int = 0
