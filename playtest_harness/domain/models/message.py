"""Transcript message model.

Turn 0 holds pre-game banter between players. Main-loop turns start at 1;
each holds exactly one narrator message followed by zero or more player or
spokesperson messages.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    """Who produced a message."""

    NARRATOR = "narrator"
    SPOKESPERSON = "spokesperson"
    PLAYER = "player"


class Message(BaseModel):
    """One entry in the conversation history."""

    role: MessageRole
    player: Optional[str] = Field(
        default=None, description="Player name for player/spokesperson messages"
    )
    content: str
    turn: int = Field(ge=0, description="0 = pre-game, 1+ = main loop")
    timestamp: float = Field(description="Unix epoch seconds")
    classification: Optional[str] = Field(
        default=None, description="Routing label assigned to narrator output"
    )
    reasoning: Optional[str] = Field(
        default=None, description="Reasoning trace returned by the model"
    )

    @property
    def is_narrator(self) -> bool:
        return self.role == MessageRole.NARRATOR
