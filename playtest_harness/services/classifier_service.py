"""
Narrator output classification.

Decides whether the story has ended and how players should respond, via a
schema-validated structured request tried across an ordered model chain.
When every model fails the classifier fails open: a group reaction, story
not ending, confidence 0. A session never ends or stalls because
classification broke.

Also provides the textual fallback for finding the target of a private
aside when the classifier names nobody.
"""

import re
from typing import List, Optional, Sequence

import structlog

from playtest_harness.core.exceptions import ClassificationDegraded, ModelsExhaustedError
from playtest_harness.domain.models.agent import GroupConfig, PlayerAgent
from playtest_harness.domain.models.classification import (
    Classification,
    ClassificationSchema,
)
from playtest_harness.llm.client import BackendRegistry, StructuredResult
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.classification import (
    CLASSIFICATION_SYSTEM_PROMPT,
    get_classification_user_prompt,
)

log = structlog.get_logger(__name__)

CLASSIFICATION_TEMPERATURE = 0.3

PRIVATE_TARGET_PATTERNS = (
    re.compile(r"\[to ([^\]]+) only\]", re.IGNORECASE),
    re.compile(r"\[([^,\]]+), you alone", re.IGNORECASE),
    re.compile(r"([^,\s]+), only you", re.IGNORECASE),
    re.compile(r"([^,\s]+) alone notices?", re.IGNORECASE),
)


def detect_private_target(text: str) -> Optional[str]:
    """Name of the player a private aside is addressed to, from textual cues."""
    for pattern in PRIVATE_TARGET_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip().strip("*_")
    return None


class ClassifierService:
    """Labels narrator output with an ending flag and a response type."""

    def __init__(
        self,
        registry: BackendRegistry,
        models: Sequence[str],
        retries_per_model: int = 1,
    ):
        """
        Args:
            registry: Backend registry
            models: Ordered candidate models, first is tried first
            retries_per_model: Attempts per candidate before moving on
        """
        if not models:
            raise ValueError("ClassifierService needs at least one model")
        self.registry = registry
        self.models = list(models)
        self.retries_per_model = retries_per_model

    async def classify(
        self, narrator_output: str, player_names: Sequence[str]
    ) -> Classification:
        """
        Classify one narrator output. Never raises for model failures.

        Args:
            narrator_output: Narrator text to classify
            player_names: Names of the players in scope

        Returns:
            Classification, or the permissive default with degraded=True
        """
        try:
            return await self._classify(narrator_output, player_names)
        except ClassificationDegraded as e:
            log.warning("classification_degraded", reason=e.message)
            return Classification.fallback()

    async def _classify(
        self, narrator_output: str, player_names: Sequence[str]
    ) -> Classification:
        prompt = get_classification_user_prompt(narrator_output, player_names)

        async def _invoke(model_id: str) -> StructuredResult[ClassificationSchema]:
            backend = self.registry.resolve(model_id)
            return await backend.invoke_structured(
                model_id,
                ClassificationSchema,
                prompt,
                system=CLASSIFICATION_SYSTEM_PROMPT,
                temperature=CLASSIFICATION_TEMPERATURE,
            )

        try:
            outcome = await with_model_fallback(
                self.models[0],
                _invoke,
                next_model_from(self.models),
                label="Classification",
                retries_per_model=self.retries_per_model,
            )
        except ModelsExhaustedError as e:
            raise ClassificationDegraded(str(e)) from e

        value = outcome.result.value
        classification = Classification(
            is_ending=value.is_ending,
            response_type=value.response_type,
            target_players=list(value.target_players or []),
            confidence=value.confidence,
            reasoning=value.reasoning,
            model_used=outcome.model_used,
            usage=outcome.result.usage,
        )
        log.info(
            "narrator_output_classified",
            response_type=classification.response_type.value,
            is_ending=classification.is_ending,
            targets=classification.target_players,
            confidence=classification.confidence,
            model=outcome.model_used,
        )
        return classification


def resolve_private_target(
    named_target: Optional[str], narrator_output: str, group: GroupConfig
) -> Optional[PlayerAgent]:
    """
    Resolve the single player a private aside is for.

    Tries the classifier's named target first, then textual cues in the
    narrator output. Names resolve through GroupConfig.find.
    """
    candidates: List[str] = []
    if named_target:
        candidates.append(named_target)
    detected = detect_private_target(narrator_output)
    if detected:
        candidates.append(detected)

    for candidate in candidates:
        agent = group.find(candidate)
        if agent is not None:
            return agent
    log.warning(
        "private_target_unresolved", named_target=named_target, detected=detected
    )
    return None
