"""
Turn processing pipeline.

One narrator/player exchange is a fixed sequence of small stages, each
testable on its own: generate, classify, update world state, route,
commit characters, checkpoint, decide termination.
"""

from .base import TurnStage
from .context import TurnContext
from .pipeline import TurnPipeline
from .result import TurnResult

__all__ = [
    "TurnStage",
    "TurnContext",
    "TurnPipeline",
    "TurnResult",
]
