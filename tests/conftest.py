"""
Shared test fixtures.

Every generative call goes through ScriptedBackend, a GenerativeBackend
that answers from test-supplied handlers and records what it was asked.
Backoff sleeps in the fallback layer are patched out for every test.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, patch

import pytest

from playtest_harness.core.archetype_loader import Archetype
from playtest_harness.core.config import HarnessConfig, Settings
from playtest_harness.core.exceptions import SchemaViolationError
from playtest_harness.domain.models.agent import (
    GroupConfig,
    PlayerAgent,
    PlayerIdentity,
    StoryContext,
)
from playtest_harness.domain.models.message import Message, MessageRole
from playtest_harness.domain.models.session import (
    GroupComposition,
    NarratorConfig,
    SessionConfig,
)
from playtest_harness.domain.models.tracking import TokenUsage
from playtest_harness.llm.client import (
    BackendRegistry,
    ChatMessage,
    GenerationResult,
    GenerativeBackend,
    SamplingParams,
    StructuredResult,
)
from playtest_harness.persistence.checkpoint_store import CheckpointStore
from playtest_harness.persistence.storage import FileCheckpointStorage
from playtest_harness.services.cost_tracker import CostTracker
from playtest_harness.services.private_moment_tracker import PrivateMomentTracker
from playtest_harness.services.session_state import SessionState

NARRATOR_MODEL = "stub/narrator"
PLAYER_MODEL = "stub/player"
CLASSIFIER_MODEL = "stub/classifier"
UTILITY_MODEL = "stub/utility"
CHARACTER_MODEL = "stub/character"
FEEDBACK_MODEL = "stub/feedback"

CALL_USAGE = TokenUsage(input_tokens=100, output_tokens=50)

_SPEAKER_RE = re.compile(r"You are (\w+)")


# =============================================================================
# Scripted backend
# =============================================================================


@dataclass
class TextCall:
    model_id: str
    system_prompt: str
    messages: List[ChatMessage]
    sampling: SamplingParams

    @property
    def speaker(self) -> Optional[str]:
        """Player name from a player system prompt ("You are Alex...")."""
        match = _SPEAKER_RE.search(self.system_prompt)
        return match.group(1) if match else None

    @property
    def last_user_message(self) -> str:
        users = [m.content for m in self.messages if m.role == "user"]
        return users[-1] if users else ""

    @property
    def transcript(self) -> str:
        return "\n".join(m.content for m in self.messages)


@dataclass
class StructuredCall:
    model_id: str
    schema_name: str
    prompt: str
    system: Optional[str]


TextHandler = Callable[[TextCall], Any]
StructuredHandler = Any


def default_text(call: TextCall) -> str:
    if call.model_id == NARRATOR_MODEL:
        return "The fog rolls in over the harbor as the lamp flickers."
    return f"{call.speaker or 'Someone'} says something thoughtful."


class ScriptedBackend(GenerativeBackend):
    """
    Backend answering from handlers.

    text: called with each TextCall; returns text or an exception instance
    structured: schema class name -> dict, model instance, exception
        instance, or a callable taking the StructuredCall and returning one
        of those
    """

    def __init__(
        self,
        text: Optional[TextHandler] = None,
        structured: Optional[Dict[str, StructuredHandler]] = None,
        usage: TokenUsage = CALL_USAGE,
    ):
        self.text = text or default_text
        self.structured = dict(structured or {})
        self.usage = usage
        self.calls: List[TextCall] = []
        self.structured_calls: List[StructuredCall] = []

    def calls_for(self, model_id: str) -> List[TextCall]:
        return [c for c in self.calls if c.model_id == model_id]

    def structured_calls_for(self, schema_name: str) -> List[StructuredCall]:
        return [c for c in self.structured_calls if c.schema_name == schema_name]

    async def invoke(
        self,
        model_id,
        system_prompt,
        messages,
        sampling,
        on_token=None,
    ) -> GenerationResult:
        call = TextCall(model_id, system_prompt, list(messages), sampling)
        self.calls.append(call)
        response = self.text(call)
        if isinstance(response, BaseException):
            raise response
        if on_token is not None:
            for word in response.split(" "):
                on_token(word)
        return GenerationResult(text=response, model=model_id, usage=self.usage)

    async def invoke_structured(
        self, model_id, schema, prompt, system=None, temperature=0.2
    ) -> StructuredResult:
        call = StructuredCall(model_id, schema.__name__, prompt, system)
        self.structured_calls.append(call)
        handler = self.structured.get(schema.__name__)
        if handler is None:
            raise SchemaViolationError(f"No scripted output for {schema.__name__}")
        value = handler(call) if callable(handler) else handler
        if isinstance(value, BaseException):
            raise value
        if isinstance(value, dict):
            value = schema.model_validate(value)
        return StructuredResult(value=value, model=model_id, usage=self.usage)


def narrator_script(texts: Sequence[str]) -> TextHandler:
    """Narrator answers texts in order (last one repeats); players use defaults."""
    remaining = list(texts)

    def _handler(call: TextCall) -> str:
        if call.model_id != NARRATOR_MODEL:
            return default_text(call)
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return _handler


def classify_by_text(rules: Dict[str, Dict[str, Any]], default: Optional[Dict[str, Any]] = None):
    """ClassificationSchema handler: first rule whose key appears in the prompt wins."""
    fallback = default or {"is_ending": False, "response_type": "group", "confidence": 0.9}

    def _handler(call: StructuredCall) -> Dict[str, Any]:
        for needle, verdict in rules.items():
            if needle in call.prompt:
                return {"confidence": 0.9, "is_ending": False, **verdict}
        return fallback

    return _handler


def identity_sequence(names: Sequence[str]):
    """GeneratedIdentity handler handing out names in order."""
    remaining = list(names)

    def _handler(call: StructuredCall) -> Dict[str, Any]:
        name = remaining.pop(0) if remaining else "Extra"
        return {
            "name": name,
            "group_role": "the planner",
            "relationships": {},
            "personal_reason": "loves mysteries",
            "current_state": "a little tired",
            "backstory": f"{name} works at a bookshop.",
        }

    return _handler


GROUP_CONTEXT = {
    "relationship": "College friends",
    "history": "known each other for ten years",
    "occasion": "monthly game night",
    "organizer": "Alex",
    "story_reason": "everyone likes ghost stories",
    "dynamic": "playful",
    "shared_memories": ["The camping trip in the rain"],
}


FEEDBACK_ANSWERS = {
    "highlight": {"moment": "The lamp going dark", "reason": "Real tension"},
    "agency": {"felt_meaningful": True, "example": "We chose to climb the tower"},
    "frustrations": [],
    "missed_opportunities": [],
    "pacing": {"rating": "good", "notes": "Steady"},
    "narrator_rating": {"score": 8, "positives": ["Atmosphere"], "negatives": []},
    "group_dynamics": "Everyone got a turn",
}

def default_structured() -> Dict[str, StructuredHandler]:
    return {
        "ClassificationSchema": classify_by_text({}),
        "WorldStateUpdate": {"location_changed": None},
        "CharacterExtraction": {"characters": []},
        "ContradictionReport": {"contradictions": []},
        "GroupContext": GROUP_CONTEXT,
        "GeneratedIdentity": identity_sequence(["Alex", "Sam", "Jordan"]),
        "PlayerFeedbackSchema": FEEDBACK_ANSWERS,
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    """Skip real backoff delays in the fallback layer."""
    with patch("playtest_harness.llm.fallback._sleep", new=AsyncMock()) as mock_sleep:
        yield mock_sleep


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        config_dir=tmp_path / "config",
        log_dir=tmp_path / "logs",
        checkpoint_dir=tmp_path / "sessions",
        checkpoint_db_path=tmp_path / "checkpoints.db",
        openrouter_api_key="test-key",
        default_narrator_model=NARRATOR_MODEL,
        narrator_fallback_models=[],
        player_fallback_models=[],
        classification_models=[CLASSIFIER_MODEL],
        utility_model=UTILITY_MODEL,
        character_model=CHARACTER_MODEL,
        feedback_model=FEEDBACK_MODEL,
        retries_per_model=2,
        classification_retries_per_model=1,
        narrator_quality_retries=2,
        default_max_turns=5,
        max_parallel_sessions=2,
    )


@pytest.fixture
def harness_config() -> HarnessConfig:
    return HarnessConfig()


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend(structured=default_structured())


@pytest.fixture
def registry(backend: ScriptedBackend) -> BackendRegistry:
    return BackendRegistry(default=backend)


@pytest.fixture
def archetypes() -> Dict[str, Archetype]:
    return {
        archetype_id: Archetype(
            id=archetype_id,
            name=archetype_id.title(),
            style=f"The {archetype_id}",
            patterns=["Asks questions"],
            model=PLAYER_MODEL,
        )
        for archetype_id in ("questioner", "joker", "explorer")
    }


def make_agent(name: str, archetype: str = "questioner") -> PlayerAgent:
    return PlayerAgent(
        archetype=archetype,
        name=name,
        model_id=PLAYER_MODEL,
        identity=PlayerIdentity(name=name),
        system_prompt=f"You are {name}, playing an interactive fiction game with friends.",
    )


@pytest.fixture
def group() -> GroupConfig:
    return GroupConfig(
        players=[
            make_agent("Alex", "questioner"),
            make_agent("Sam", "joker"),
            make_agent("Jordan", "explorer"),
        ],
        spokesperson="Alex",
    )


@pytest.fixture
def story() -> StoryContext:
    return StoryContext(story_id="lighthouse", title="The Last Keeper", genre="mystery")


@pytest.fixture
def session_config(group: GroupConfig, story: StoryContext) -> SessionConfig:
    return SessionConfig(
        session_id="sess-1",
        story=story,
        system_prompt="You narrate a ghost story on a remote island.",
        story_guide="The keeper vanished three nights ago.",
        narrator=NarratorConfig(model=NARRATOR_MODEL, temperature=0.7, max_tokens=500),
        group=GroupComposition(
            archetypes=tuple(p.archetype for p in group.players),
            player_names=tuple(group.player_names),
            spokesperson=group.spokesperson,
        ),
        max_turns=5,
        created_at=1_700_000_000.0,
    )


@pytest.fixture
def session_state(session_config, group, test_settings) -> SessionState:
    return SessionState(
        config=session_config,
        group=group,
        cost_tracker=CostTracker(test_settings),
        private_moments=PrivateMomentTracker(),
    )


@pytest.fixture
def checkpoint_store(tmp_path: Path) -> CheckpointStore:
    return CheckpointStore(FileCheckpointStorage(tmp_path / "sessions"))


def msg(
    role: MessageRole,
    content: str,
    turn: int,
    player: Optional[str] = None,
    classification: Optional[str] = None,
) -> Message:
    """Compact Message constructor for history fixtures."""
    return Message(
        role=role,
        player=player,
        content=content,
        turn=turn,
        timestamp=1_700_000_000.0 + turn,
        classification=classification,
    )


def make_executor(registry: BackendRegistry, store: CheckpointStore, issue_config=None):
    """TurnExecutor wired to registry with single-attempt retry budgets."""
    from playtest_harness.services.classifier_service import ClassifierService
    from playtest_harness.services.discussion_service import DiscussionService
    from playtest_harness.services.issue_detector import IssueDetector
    from playtest_harness.services.narrator_service import NarratorService
    from playtest_harness.services.player_service import PlayerService
    from playtest_harness.services.quality_gate import PatternQualityGate
    from playtest_harness.services.turn_executor import TurnExecutor
    from playtest_harness.services.world_state_service import WorldStateService

    players = PlayerService(registry, retries_per_model=1)
    return TurnExecutor(
        narrator_service=NarratorService(
            registry, PatternQualityGate(), retries_per_model=1, max_quality_attempts=2
        ),
        classifier_service=ClassifierService(registry, [CLASSIFIER_MODEL]),
        world_state_service=WorldStateService(
            registry, model=UTILITY_MODEL, retries_per_model=1
        ),
        player_service=players,
        discussion_service=DiscussionService(players),
        checkpoint_store=store,
        issue_detector=IssueDetector(issue_config),
    )
