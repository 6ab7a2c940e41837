"""
Base class for turn pipeline stages.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .context import TurnContext


class TurnStage(ABC):
    """
    One step of a turn.

    process() reads what earlier stages left on the context, writes its own
    outputs and hands the context on.
    """

    @abstractmethod
    async def process(self, context: "TurnContext") -> "TurnContext":
        """Run the stage and return the updated context."""

    @property
    def stage_name(self) -> str:
        """Class name, used as the timing key and in logs."""
        return type(self).__name__
