"""
Narrator generation with a content-quality gate.

Each attempt goes through the model fallback layer. An attempt whose text
fails the quality gate is discarded and regenerated; after the last allowed
attempt the output is accepted whatever the gate says, so a turn is never
lost to a picky validator.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from playtest_harness.core.exceptions import GarbageOutputDetected
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.session import NarratorConfig
from playtest_harness.domain.models.tracking import TokenUsage
from playtest_harness.llm.client import (
    BackendRegistry,
    GenerationResult,
    SamplingParams,
    TokenCallback,
)
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.narrator import (
    build_narrator_messages,
    get_narrator_system_prompt,
)
from playtest_harness.services.protocols import IQualityGate

log = structlog.get_logger(__name__)


@dataclass
class NarratorOutput:
    """Accepted narrator text plus bookkeeping for the turn."""

    text: str
    model_used: str
    reasoning: Optional[str] = None
    attempts: int = 1
    quality_failures: List[str] = field(default_factory=list)
    usage: List[TokenUsage] = field(default_factory=list)
    models: List[str] = field(default_factory=list)


class NarratorService:
    """Generates narrator output from the narrator-visible history."""

    def __init__(
        self,
        registry: BackendRegistry,
        quality_gate: IQualityGate,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 3,
        max_quality_attempts: int = 3,
    ):
        """
        Args:
            registry: Backend registry
            quality_gate: Validator for narrator text
            fallback_models: Ordered models tried after the configured narrator
            retries_per_model: Attempts per model in the fallback layer
            max_quality_attempts: Generations before output is accepted as is
        """
        self.registry = registry
        self.quality_gate = quality_gate
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model
        self.max_quality_attempts = max_quality_attempts

    async def generate(
        self,
        narrator: NarratorConfig,
        system_prompt: str,
        history: Sequence[Message],
        story_guide: str = "",
        world_state_block: Optional[str] = None,
        on_token: Optional[TokenCallback] = None,
    ) -> NarratorOutput:
        """
        Generate the next narrator output.

        Args:
            narrator: Narrator model and sampling parameters
            system_prompt: Narrator system prompt
            history: Full conversation history (projected internally)
            story_guide: Optional story guide
            world_state_block: Optional [GAME STATE] block
            on_token: Optional streaming callback

        Returns:
            NarratorOutput with the accepted text

        Raises:
            ModelsExhaustedError: No model could produce any output
        """
        system = get_narrator_system_prompt(system_prompt, story_guide, world_state_block)
        messages = build_narrator_messages(history)
        sampling = SamplingParams(
            temperature=narrator.temperature, max_tokens=narrator.max_tokens
        )

        async def _invoke(model_id: str) -> GenerationResult:
            backend = self.registry.resolve(model_id)
            return await backend.invoke(model_id, system, messages, sampling, on_token)

        failures: List[str] = []
        usages: List[TokenUsage] = []
        models: List[str] = []
        for attempt in range(1, self.max_quality_attempts + 1):
            outcome = await with_model_fallback(
                narrator.model,
                _invoke,
                next_model_from(self.fallback_models),
                label="Narrator",
                retries_per_model=self.retries_per_model,
            )
            result = outcome.result
            usages.append(result.usage)
            models.append(outcome.model_used)

            try:
                self.quality_gate.enforce(result.text)
            except GarbageOutputDetected as e:
                failures.append(e.reason)
                if attempt < self.max_quality_attempts:
                    log.warning(
                        "narrator_output_rejected",
                        reason=e.reason,
                        attempt=attempt,
                        max_attempts=self.max_quality_attempts,
                        preview=result.text[:120],
                    )
                    continue
                log.warning(
                    "narrator_output_accepted_after_retries",
                    reason=e.reason,
                    attempts=attempt,
                )

            return NarratorOutput(
                text=result.text,
                model_used=outcome.model_used,
                reasoning=result.reasoning,
                attempts=attempt,
                quality_failures=failures,
                usage=usages,
                models=models,
            )

        raise AssertionError("unreachable")
