"""Progress events for live displays of a running session.

A session reports what happens as it happens through an optional
callback. Events are informational only; nothing reads them back.
"""

from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProgressKind(str, Enum):
    GENERATING_GROUP = "generating-group"
    GROUP_READY = "group-ready"
    PRE_GAME = "pre-game"
    PRE_GAME_MESSAGE = "pre-game-message"
    TURN_START = "turn-start"
    NARRATOR_TURN = "narrator-turn"
    PLAYER_TURN = "player-turn"
    SPOKESPERSON_TURN = "spokesperson-turn"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressEvent(BaseModel):
    """One step of a session. Fields not relevant to the kind stay unset."""

    model_config = ConfigDict(frozen=True)

    kind: ProgressKind
    session_id: str
    turn: Optional[int] = None
    max_turns: Optional[int] = None
    player: Optional[str] = None
    content: Optional[str] = None
    players: List[str] = Field(default_factory=list)
    error: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


def emit_progress(
    callback: Optional[ProgressCallback], kind: ProgressKind, session_id: str, **fields
) -> None:
    """Build and deliver an event; no-op without a callback."""
    if callback is None:
        return
    callback(ProgressEvent(kind=kind, session_id=session_id, **fields))
