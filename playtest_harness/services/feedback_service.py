"""
Post-game player feedback.

After a completed session every agent is asked, out of character, to rate
the story and the narrator. Agents answer one at a time; an agent whose
model chain is exhausted is left out rather than failing the collection.
synthesize_feedback() folds the answers into a session-level summary.
"""

from collections import Counter
from typing import Dict, List, Sequence

import structlog

from playtest_harness.core.exceptions import ModelsExhaustedError
from playtest_harness.domain.models.agent import PlayerAgent
from playtest_harness.domain.models.feedback import (
    PacingRating,
    PlayerFeedback,
    PlayerFeedbackSchema,
    SessionFeedback,
)
from playtest_harness.domain.models.message import Message
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.feedback import (
    get_feedback_prompt,
    get_feedback_system_prompt,
)
from playtest_harness.services.cost_tracker import CostTracker

log = structlog.get_logger(__name__)

FEEDBACK_TEMPERATURE = 0.7

# Summary heuristics
LOW_NARRATOR_SCORE = 7
MOMENT_KEY_CHARS = 20
FRUSTRATION_KEY_CHARS = 30
MISSED_OPPORTUNITY_LIMIT = 3


class FeedbackService:
    """Interviews player agents once the game is over."""

    def __init__(
        self,
        registry: BackendRegistry,
        model: str,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 2,
    ):
        self.registry = registry
        self.model = model
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model

    async def collect_one(
        self,
        agent: PlayerAgent,
        history: Sequence[Message],
        cost_tracker: CostTracker,
    ) -> PlayerFeedback:
        """
        Ask one agent for feedback; usage is charged to the players category.

        Raises:
            ModelsExhaustedError: No model produced valid feedback
        """
        prompt = get_feedback_prompt(agent.name, agent.archetype, history)
        system = get_feedback_system_prompt(agent.system_prompt)

        async def _invoke(model_id: str):
            backend = self.registry.resolve(model_id)
            return await backend.invoke_structured(
                model_id,
                PlayerFeedbackSchema,
                prompt,
                system=system,
                temperature=FEEDBACK_TEMPERATURE,
            )

        outcome = await with_model_fallback(
            self.model,
            _invoke,
            next_model_from(self.fallback_models),
            label=f"{agent.name} feedback",
            retries_per_model=self.retries_per_model,
        )
        cost_tracker.record("players", outcome.model_used, outcome.result.usage)

        answers = outcome.result.value
        log.info(
            "feedback_collected",
            player=agent.name,
            narrator_score=answers.narrator_rating.score,
            highlight=answers.highlight.moment[:50],
        )
        return PlayerFeedback(
            agent_name=agent.name,
            archetype=agent.archetype,
            **answers.model_dump(),
        )

    async def collect(
        self,
        players: Sequence[PlayerAgent],
        history: Sequence[Message],
        cost_tracker: CostTracker,
    ) -> List[PlayerFeedback]:
        """Feedback from every agent that managed to answer, in player order."""
        feedback: List[PlayerFeedback] = []
        for agent in players:
            try:
                feedback.append(await self.collect_one(agent, history, cost_tracker))
            except ModelsExhaustedError as e:
                log.warning("feedback_agent_failed", player=agent.name, error=e.message[:200])
        return feedback


# =============================================================================
# Synthesis
# =============================================================================


def _unique(items: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(items))


def _shared_moments(feedback: Sequence[PlayerFeedback]) -> List[str]:
    """Highlights that overlap another player's highlight."""
    moments = [f.highlight.moment for f in feedback]
    lowered = [m.lower() for m in moments]
    shared = []
    for i, moment in enumerate(lowered):
        for j, other in enumerate(lowered):
            if i != j and (
                moment[:MOMENT_KEY_CHARS] in other or other[:MOMENT_KEY_CHARS] in moment
            ):
                shared.append(moments[i])
                break
    return shared


def _shared_frustrations(feedback: Sequence[PlayerFeedback]) -> List[str]:
    """Frustrations raised (by their opening words) more than once."""
    frustrations = [item for f in feedback for item in f.frustrations]
    counts = Counter(item.lower()[:FRUSTRATION_KEY_CHARS] for item in frustrations)
    shared: Dict[str, str] = {}
    for item in frustrations:
        key = item.lower()[:FRUSTRATION_KEY_CHARS]
        if counts[key] > 1 and key not in shared:
            shared[key] = item
    return list(shared.values())


def synthesize_feedback(
    session_id: str, feedback: Sequence[PlayerFeedback]
) -> SessionFeedback:
    """
    Summarize per-player feedback for the session.

    Narrator score is the mean rating. The pacing verdict is the most common
    rating (ties go to too-fast, then too-slow, then good).
    """
    if not feedback:
        return SessionFeedback(
            session_id=session_id,
            recommendations=["No player feedback was collected"],
        )

    count = len(feedback)
    narrator_score = sum(f.narrator_rating.score for f in feedback) / count
    shared_pain_points = _shared_frustrations(feedback)
    top_moments = _shared_moments(feedback) or [f.highlight.moment for f in feedback]

    votes = Counter(f.pacing.rating for f in feedback)
    winner = max(PacingRating, key=lambda rating: votes[rating])
    pacing_verdict = f"{winner.value} ({votes[winner]}/{count} agents)"

    recommendations: List[str] = []
    if narrator_score < LOW_NARRATOR_SCORE:
        recommendations.append("Narrator quality needs improvement: review negative feedback")
    if shared_pain_points:
        recommendations.append(
            f"Address shared frustrations: {', '.join(shared_pain_points[:2])}"
        )
    if sum(1 for f in feedback if not f.agency.felt_meaningful) > count / 2:
        recommendations.append("Improve player agency: choices feel meaningless to most players")
    if votes[PacingRating.TOO_FAST] > votes[PacingRating.GOOD]:
        recommendations.append("Slow down pacing: too rushed for most players")
    elif votes[PacingRating.TOO_SLOW] > votes[PacingRating.GOOD]:
        recommendations.append("Speed up pacing: too slow for most players")
    missed = _unique([item for f in feedback for item in f.missed_opportunities])
    if len(missed) > MISSED_OPPORTUNITY_LIMIT:
        recommendations.append(
            f"Consider enabling: {', '.join(missed[:MISSED_OPPORTUNITY_LIMIT])}"
        )

    log.info(
        "feedback_summary",
        narrator_score=round(narrator_score, 1),
        pacing=pacing_verdict,
        agency_meaningful=sum(1 for f in feedback if f.agency.felt_meaningful),
        players=count,
        recommendations=recommendations,
    )
    return SessionFeedback(
        session_id=session_id,
        players=list(feedback),
        top_moments=top_moments,
        shared_pain_points=shared_pain_points,
        narrator_score=narrator_score,
        narrator_strengths=_unique(
            [item for f in feedback for item in f.narrator_rating.positives]
        ),
        narrator_weaknesses=_unique(
            [item for f in feedback for item in f.narrator_rating.negatives]
        ),
        pacing_verdict=pacing_verdict,
        recommendations=recommendations,
    )
