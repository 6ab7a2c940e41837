"""
Transcript issue detection.

Read-only analysis over the whole conversation history. Running it twice on
the same history yields the same deterministic issues.

Detectors:
- Loops: narrator output nearly identical (Jaccard over word sets) to one
  of the previous few narrator outputs
- Forced segues: transition phrases that signal clumsy tangent recovery
- Stuck stretches: too many turns since the last story-advancing beat
- Confusion: several players in one turn saying they are lost
- Entity contradictions: tracked open/closed/locked states of named doors,
  gates and the like
- Semantic contradictions: LLM pass over a sampled transcript, skipped
  silently when the model chain is exhausted
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import structlog

from playtest_harness.core.config import IssueDetectionConfig
from playtest_harness.core.exceptions import ModelsExhaustedError
from playtest_harness.domain.models.classification import ResponseType
from playtest_harness.domain.models.message import Message
from playtest_harness.domain.models.tracking import (
    Issue,
    IssueKind,
    IssueSeverity,
    TokenUsage,
)
from playtest_harness.llm.client import BackendRegistry
from playtest_harness.llm.fallback import next_model_from, with_model_fallback
from playtest_harness.llm.prompts.issues import (
    ContradictionReport,
    get_contradiction_prompt,
)

log = structlog.get_logger(__name__)

FORCED_SEGUE_PATTERNS = (
    re.compile(r"\banyway\b", re.IGNORECASE),
    re.compile(r"\bback to the (story|narrative)\b", re.IGNORECASE),
    re.compile(r"\breturning to\b", re.IGNORECASE),
    re.compile(r"\bas I was saying\b", re.IGNORECASE),
    re.compile(r"\blet's get back\b", re.IGNORECASE),
    re.compile(r"\bbut back to\b", re.IGNORECASE),
)

CONFUSION_PATTERNS = (
    re.compile(r"\bI'?m (so |really |totally )?(confused|lost)\b", re.IGNORECASE),
    re.compile(r"\b(I )?don'?t (understand|get it)\b", re.IGNORECASE),
    re.compile(r"\bwait,? what\b", re.IGNORECASE),
    re.compile(r"\bwhat('s| is) (going on|happening)\b", re.IGNORECASE),
    re.compile(r"\bwhere are we\b", re.IGNORECASE),
)

ENTITY_STATE_PATTERN = re.compile(
    r"\bthe (\w+) (door|gate|hatch|chest|window)\s+"
    r"(?:is |stands |was |remains |swings |lies )?(open|closed|shut|locked|unlocked)\b",
    re.IGNORECASE,
)

# States from which "open" is a contradiction without an explained change
_SEALED_STATES = {"closed", "locked"}


def jaccard_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lowercased whitespace-separated word sets."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


@dataclass
class IssueReport:
    issues: List[Issue] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    model_used: Optional[str] = None


class IssueDetector:
    """Flags loops, segues, stuck stretches, confusion and contradictions in a transcript."""

    def __init__(
        self,
        config: Optional[IssueDetectionConfig] = None,
        registry: Optional[BackendRegistry] = None,
        model: Optional[str] = None,
        fallback_models: Sequence[str] = (),
        retries_per_model: int = 2,
    ):
        """
        Args:
            config: Thresholds (defaults match harness_config.yaml)
            registry: Backend registry; without it the semantic pass is skipped
            model: Model for the semantic contradiction pass
            fallback_models: Ordered fallbacks for the semantic pass
            retries_per_model: Attempts per model for the semantic pass
        """
        self.config = config or IssueDetectionConfig()
        self.registry = registry
        self.model = model
        self.fallback_models = list(fallback_models)
        self.retries_per_model = retries_per_model

    # ==========================================================================
    # Deterministic detectors
    # ==========================================================================

    def detect_loops(self, history: Sequence[Message]) -> List[Issue]:
        issues: List[Issue] = []
        narrator = _narrator_messages(history)
        window = self.config.loop_window
        for i, current in enumerate(narrator):
            for previous in narrator[max(0, i - window) : i]:
                if (
                    jaccard_similarity(current.content, previous.content)
                    > self.config.loop_similarity_threshold
                ):
                    issues.append(
                        Issue(
                            turn=current.turn,
                            kind=IssueKind.LOOP,
                            description=f"Narrator output very similar to turn {previous.turn}",
                            severity=IssueSeverity.ERROR,
                            related_content=previous.content,
                        )
                    )
        return issues

    def detect_forced_segues(self, history: Sequence[Message]) -> List[Issue]:
        issues: List[Issue] = []
        for message in _narrator_messages(history):
            if any(p.search(message.content) for p in FORCED_SEGUE_PATTERNS):
                issues.append(
                    Issue(
                        turn=message.turn,
                        kind=IssueKind.FORCED_SEGUE,
                        description="Narrator used forced transition language",
                        severity=IssueSeverity.WARNING,
                        related_content=message.content,
                    )
                )
        return issues

    def detect_stuck(self, history: Sequence[Message]) -> List[Issue]:
        """
        Flag narrator beats too far from the last story-advancing beat.

        A beat advances the story when it was routed as a plain group
        reaction, the routing label of ordinary forward-moving narration.
        Each stretch is reported once, at the turn it crosses the limit.
        """
        issues: List[Issue] = []
        last_advance = 0
        flagged = False
        for message in _narrator_messages(history):
            if message.classification == ResponseType.GROUP.value:
                last_advance = message.turn
                flagged = False
                continue
            gap = message.turn - last_advance
            if gap > self.config.stuck_turns and not flagged:
                flagged = True
                issues.append(
                    Issue(
                        turn=message.turn,
                        kind=IssueKind.STUCK,
                        description=f"No story progress for {gap} turns",
                        severity=IssueSeverity.WARNING,
                    )
                )
        return issues

    def detect_confusion(self, history: Sequence[Message]) -> List[Issue]:
        """Flag turns where several players say they are lost."""
        confused: Dict[int, List[str]] = {}
        for message in history:
            if message.is_narrator or message.turn < 1 or message.player is None:
                continue
            if any(p.search(message.content) for p in CONFUSION_PATTERNS):
                players = confused.setdefault(message.turn, [])
                if message.player not in players:
                    players.append(message.player)

        issues: List[Issue] = []
        for turn in sorted(confused):
            players = confused[turn]
            if len(players) >= self.config.confusion_min_players:
                issues.append(
                    Issue(
                        turn=turn,
                        kind=IssueKind.CONFUSION,
                        description=f"Players lost track of the scene: {', '.join(players)}",
                        severity=IssueSeverity.WARNING,
                    )
                )
        return issues

    def detect_entity_contradictions(self, history: Sequence[Message]) -> List[Issue]:
        """Track named entity states and flag open-after-closed/locked."""
        issues: List[Issue] = []
        states: Dict[str, str] = {}
        for message in _narrator_messages(history):
            for name, kind, state in ENTITY_STATE_PATTERN.findall(message.content):
                key = f"{name.lower()} {kind.lower()}"
                state = "closed" if state.lower() == "shut" else state.lower()
                previous = states.get(key)
                if state == "open" and previous in _SEALED_STATES:
                    issues.append(
                        Issue(
                            turn=message.turn,
                            kind=IssueKind.CONTRADICTION,
                            description=f"The {key} is open but was {previous}",
                            severity=IssueSeverity.ERROR,
                            related_content=message.content,
                        )
                    )
                states[key] = state
        return issues

    def detect_deterministic(self, history: Sequence[Message]) -> List[Issue]:
        """All non-LLM detectors, sorted by turn."""
        issues = (
            self.detect_entity_contradictions(history)
            + self.detect_loops(history)
            + self.detect_forced_segues(history)
            + self.detect_stuck(history)
            + self.detect_confusion(history)
        )
        return sorted(issues, key=lambda issue: issue.turn)

    # ==========================================================================
    # LLM-assisted pass
    # ==========================================================================

    def sample_for_semantic_pass(self, history: Sequence[Message]) -> List[Message]:
        narrator = _narrator_messages(history)
        stride = self.config.semantic_sample_stride
        return [
            m for i, m in enumerate(narrator) if i % stride == 0 or i == len(narrator) - 1
        ]

    async def detect_semantic_contradictions(
        self, history: Sequence[Message]
    ) -> IssueReport:
        """Semantic contradictions from a sampled transcript; empty on failure."""
        narrator = _narrator_messages(history)
        if (
            self.registry is None
            or self.model is None
            or len(narrator) <= self.config.semantic_min_messages
        ):
            return IssueReport()

        prompt = get_contradiction_prompt(self.sample_for_semantic_pass(history))
        registry = self.registry

        async def _invoke(model_id: str):
            backend = registry.resolve(model_id)
            return await backend.invoke_structured(
                model_id, ContradictionReport, prompt, temperature=0.2
            )

        try:
            outcome = await with_model_fallback(
                self.model,
                _invoke,
                next_model_from(self.fallback_models),
                label="Contradiction detection",
                retries_per_model=self.retries_per_model,
            )
        except ModelsExhaustedError as e:
            log.warning("semantic_contradiction_pass_skipped", error=str(e)[:200])
            return IssueReport()

        issues = [
            Issue(
                turn=finding.turn,
                kind=IssueKind.CONTRADICTION,
                description=finding.description,
                severity=IssueSeverity.ERROR,
            )
            for finding in outcome.result.value.contradictions
        ]
        return IssueReport(
            issues=issues, usage=outcome.result.usage, model_used=outcome.model_used
        )

    async def detect_all(
        self, history: Sequence[Message], include_semantic: bool = True
    ) -> IssueReport:
        """Deterministic issues plus, optionally, the semantic pass; sorted by turn."""
        issues = self.detect_deterministic(history)
        if not include_semantic:
            return IssueReport(issues=issues)

        semantic = await self.detect_semantic_contradictions(history)
        log.info(
            "issues_detected",
            deterministic=len(issues),
            semantic=len(semantic.issues),
        )
        return IssueReport(
            issues=sorted(issues + semantic.issues, key=lambda issue: issue.turn),
            usage=semantic.usage,
            model_used=semantic.model_used,
        )


def _narrator_messages(history: Sequence[Message]) -> List[Message]:
    return [m for m in history if m.is_narrator]
