"""Tests for the OpenRouter backend and backend registry."""

import json

import httpx
import pytest
from pydantic import BaseModel

from playtest_harness.core.exceptions import (
    ConfigurationError,
    LLMError,
    SchemaViolationError,
    TransientProviderError,
)
from playtest_harness.llm.client import (
    BackendRegistry,
    ChatMessage,
    OpenRouterBackend,
    SamplingParams,
    parse_json_object,
    split_reasoning,
)


class Verdict(BaseModel):
    label: str
    score: float


def completion(content: str, prompt_tokens: int = 12, completion_tokens: int = 7) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def make_backend(handler) -> OpenRouterBackend:
    return OpenRouterBackend(
        api_key="test-key",
        base_url="https://example.test/v1",
        transport=httpx.MockTransport(handler),
    )


class TestHelpers:
    def test_split_reasoning(self):
        """Should move <think> content out of the visible text."""
        text, reasoning = split_reasoning("<think>plan it</think>The door creaks.")
        assert text == "The door creaks."
        assert reasoning == "plan it"

    def test_split_reasoning_without_tags(self):
        assert split_reasoning("  Plain.  ") == ("Plain.", None)

    def test_parse_json_object_strips_fences(self):
        """Should accept fenced JSON."""
        assert parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}

    def test_parse_json_object_finds_embedded_object(self):
        assert parse_json_object('Sure! {"a": 2} Hope that helps.') == {"a": 2}

    def test_parse_json_object_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_json_object("no json here")


class TestOpenRouterBackend:
    """Tests for OpenRouterBackend over httpx.MockTransport."""

    def test_requires_api_key(self):
        """Should refuse to start without a key."""
        with pytest.raises(ConfigurationError, match="OPENROUTER_API_KEY"):
            OpenRouterBackend(api_key=None)

    async def test_invoke_sends_system_and_history(self):
        """Should prepend the system prompt and pass sampling parameters."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion("<think>hmm</think>You enter."))

        backend = make_backend(handler)
        result = await backend.invoke(
            "x-ai/grok-4",
            "You are the narrator.",
            [ChatMessage("user", "Hi")],
            SamplingParams(temperature=0.4, max_tokens=300),
        )

        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["messages"][0] == {
            "role": "system",
            "content": "You are the narrator.",
        }
        assert seen["body"]["temperature"] == 0.4
        assert seen["body"]["max_tokens"] == 300
        assert result.text == "You enter."
        assert result.reasoning == "hmm"
        assert result.usage.input_tokens == 12
        assert result.usage.output_tokens == 7

    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_transient_status_codes(self, status):
        """Should classify rate limits and server errors as transient."""
        backend = make_backend(lambda request: httpx.Response(status))
        with pytest.raises(TransientProviderError):
            await backend.invoke("m", "s", [ChatMessage("user", "Hi")], SamplingParams())

    async def test_client_error_is_not_transient(self):
        backend = make_backend(lambda request: httpx.Response(400))
        with pytest.raises(LLMError) as exc_info:
            await backend.invoke("m", "s", [ChatMessage("user", "Hi")], SamplingParams())
        assert not isinstance(exc_info.value, TransientProviderError)

    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        backend = make_backend(handler)
        with pytest.raises(TransientProviderError, match="timed out"):
            await backend.invoke("m", "s", [ChatMessage("user", "Hi")], SamplingParams())

    async def test_streaming_forwards_tokens(self):
        """Should call on_token per content delta and collect usage."""
        events = [
            {"choices": [{"delta": {"content": "The "}}]},
            {"choices": [{"delta": {"content": "tide"}}]},
            {"choices": [], "usage": {"prompt_tokens": 3, "completion_tokens": 2}},
        ]
        body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"
        backend = make_backend(lambda request: httpx.Response(200, content=body.encode()))
        tokens = []

        result = await backend.invoke(
            "m", "s", [ChatMessage("user", "Hi")], SamplingParams(), on_token=tokens.append
        )

        assert tokens == ["The ", "tide"]
        assert result.text == "The tide"
        assert result.usage.total_tokens == 5

    async def test_structured_output_validated(self):
        """Should parse and validate the JSON object against the schema."""
        backend = make_backend(
            lambda request: httpx.Response(
                200, json=completion('{"label": "group", "score": 0.8}')
            )
        )
        result = await backend.invoke_structured("m", Verdict, "Classify this")
        assert result.value == Verdict(label="group", score=0.8)
        assert result.model == "m"

    async def test_structured_output_schema_violation(self):
        """Should raise SchemaViolationError when fields are missing."""
        backend = make_backend(
            lambda request: httpx.Response(200, json=completion('{"label": "group"}'))
        )
        with pytest.raises(SchemaViolationError):
            await backend.invoke_structured("m", Verdict, "Classify this")


class TestBackendRegistry:
    def test_longest_prefix_wins(self):
        """Should pick the most specific registered prefix."""
        general, specific, default = object(), object(), object()
        registry = BackendRegistry(default=default)
        registry.register("openai/", general)
        registry.register("openai/gpt-5", specific)

        assert registry.resolve("openai/gpt-5-nano") is specific
        assert registry.resolve("openai/gpt-4o-mini") is general
        assert registry.resolve("x-ai/grok-4") is default

    def test_unresolvable_model(self):
        """Should raise ConfigurationError with no default and no match."""
        with pytest.raises(ConfigurationError):
            BackendRegistry().resolve("nobody/serves-this")
