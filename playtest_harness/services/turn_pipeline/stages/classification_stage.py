"""
Stage 2: Classify narrator output.

Labels the output (ending flag + response type), derives the routing policy
and appends the narrator message to the history with its routing label.
"""

import time
from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from playtest_harness.domain.models.classification import routing_policy_for
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.progress import ProgressKind, emit_progress
from playtest_harness.services.classifier_service import ClassifierService

if TYPE_CHECKING:
    from ..context import TurnContext
log = structlog.get_logger(__name__)


class ClassificationStage(TurnStage):
    """
    Classify narrator output and record the narrator message.

    Populates TurnContext.classification, routing_policy and narrator_message.
    The classifier never raises; a degraded classification routes to the group.
    """

    def __init__(self, classifier_service: ClassifierService):
        self.classifier = classifier_service

    async def process(self, context: "TurnContext") -> "TurnContext":
        state = context.state
        narrator_text = context.narrator_text

        classification = await self.classifier.classify(
            narrator_text, state.group.player_names
        )
        if classification.model_used is not None:
            state.cost_tracker.record(
                "classification", classification.model_used, classification.usage
            )

        message = Message(
            role=MessageRole.NARRATOR,
            content=narrator_text,
            turn=context.turn,
            timestamp=time.time(),
            classification=classification.response_type.value,
            reasoning=context.narrator_output.reasoning if context.narrator_output else None,
        )
        state.history.append(message)
        emit_progress(
            context.on_progress,
            ProgressKind.NARRATOR_TURN,
            context.session_id,
            turn=context.turn,
            content=narrator_text,
        )

        context.classification = classification
        context.routing_policy = routing_policy_for(classification)
        context.narrator_message = message
        return context
