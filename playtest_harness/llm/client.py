"""
Generative backends for narrator, player and helper model calls.

Provides:
- GenerativeBackend: the capability every provider implements
  (free-text invoke with optional streaming, and schema-validated
  structured output)
- OpenRouterBackend: OpenAI-compatible chat completions over httpx
- BackendRegistry: model id -> backend, so callers never dispatch on
  model-id strings themselves

Retry and model fallback live in llm.fallback; a backend makes exactly one
attempt per call and classifies failures as transient or not.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    Literal,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from playtest_harness.core.config import Settings
from playtest_harness.core.exceptions import (
    ConfigurationError,
    LLMError,
    SchemaViolationError,
    TransientProviderError,
)
from playtest_harness.domain.models.tracking import TokenUsage

log = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

TokenCallback = Callable[[str], None]

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL | re.IGNORECASE)


# =============================================================================
# Request / Response Types
# =============================================================================


@dataclass
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass
class SamplingParams:
    temperature: float = 0.7
    max_tokens: Optional[int] = None


@dataclass
class GenerationResult:
    """Standardized free-text generation result."""

    text: str
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    reasoning: Optional[str] = None
    latency_ms: float = 0.0


@dataclass
class StructuredResult(Generic[T]):
    """Schema-validated structured output."""

    value: T
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)


def split_reasoning(text: str) -> Tuple[str, Optional[str]]:
    """Separate <think>...</think> reasoning from the visible answer.

    Returns:
        (visible text, reasoning or None)
    """
    thoughts = [m.strip() for m in _THINK_RE.findall(text)]
    if not thoughts:
        return text.strip(), None
    visible = _THINK_RE.sub("", text).strip()
    return visible, "\n\n".join(t for t in thoughts if t) or None


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse a JSON object out of model output.

    Handles markdown code fences and leading/trailing chatter.

    Raises:
        ValueError: If no JSON object can be decoded
    """
    text = raw.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in response: {raw[:200]}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Expected JSON object, got {type(data).__name__}")
    return data


# =============================================================================
# Backend Interface
# =============================================================================


class GenerativeBackend(ABC):
    """Abstract capability for one provider."""

    @abstractmethod
    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        sampling: SamplingParams,
        on_token: Optional[TokenCallback] = None,
    ) -> GenerationResult:
        """
        Generate free text.

        Args:
            model_id: Provider model identifier
            system_prompt: System prompt
            messages: Alternating user/assistant history
            sampling: Temperature and token limit
            on_token: Called with each streamed text delta when given

        Returns:
            GenerationResult with visible text, optional reasoning and usage

        Raises:
            TransientProviderError: Timeout, rate limit or server error
            LLMError: Any other provider failure
        """

    @abstractmethod
    async def invoke_structured(
        self,
        model_id: str,
        schema: Type[T],
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
    ) -> StructuredResult[T]:
        """
        Generate a JSON object validated against schema.

        Raises:
            SchemaViolationError: Output does not match schema
            TransientProviderError: Timeout, rate limit or server error
            LLMError: Any other provider failure
        """


# =============================================================================
# OpenRouter (OpenAI-compatible) Backend
# =============================================================================


class OpenRouterBackend(GenerativeBackend):
    """
    OpenAI-compatible chat completions client.

    Works against OpenRouter or any endpoint with the same wire format.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_key: Bearer token for the endpoint
            base_url: Base URL (".../v1")
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not api_key:
            raise ConfigurationError(
                "OPENROUTER_API_KEY is required for the OpenRouter backend"
            )
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def invoke(
        self,
        model_id: str,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        sampling: SamplingParams,
        on_token: Optional[TokenCallback] = None,
    ) -> GenerationResult:
        payload: Dict[str, Any] = {
            "model": model_id,
            "messages": [{"role": "system", "content": system_prompt}]
            + [{"role": m.role, "content": m.content} for m in messages],
            "temperature": sampling.temperature,
        }
        if sampling.max_tokens is not None:
            payload["max_tokens"] = sampling.max_tokens

        start = time.perf_counter()
        log.debug(
            "llm_call_start",
            model=model_id,
            message_count=len(messages),
            system_length=len(system_prompt),
            streaming=on_token is not None,
        )

        if on_token is not None:
            content, usage, reasoning_field = await self._stream(payload, on_token)
        else:
            data = await self._post(payload)
            message = (data.get("choices") or [{}])[0].get("message", {}) or {}
            content = message.get("content") or ""
            reasoning_field = message.get("reasoning")
            usage = _usage_from(data.get("usage"))

        text, reasoning = split_reasoning(content)
        latency_ms = (time.perf_counter() - start) * 1000

        log.info(
            "llm_call_complete",
            model=model_id,
            latency_ms=round(latency_ms, 2),
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )

        return GenerationResult(
            text=text,
            model=model_id,
            usage=usage,
            reasoning=reasoning or reasoning_field,
            latency_ms=latency_ms,
        )

    async def invoke_structured(
        self,
        model_id: str,
        schema: Type[T],
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
    ) -> StructuredResult[T]:
        schema_json = json.dumps(schema.model_json_schema(), indent=2)
        instructions = (
            f"{prompt}\n\n"
            f"Respond with a single JSON object matching this JSON schema:\n"
            f"{schema_json}"
        )
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": instructions})

        data = await self._post(
            {
                "model": model_id,
                "messages": messages,
                "temperature": temperature,
                "response_format": {"type": "json_object"},
            }
        )
        content = (data.get("choices") or [{}])[0].get("message", {}).get(
            "content"
        ) or ""
        content, _ = split_reasoning(content)

        try:
            value = schema.model_validate(parse_json_object(content))
        except (ValueError, ValidationError) as e:
            log.warning(
                "structured_output_invalid",
                model=model_id,
                schema=schema.__name__,
                error=str(e)[:300],
            )
            raise SchemaViolationError(
                f"{model_id} returned output not matching {schema.__name__}: {e}"
            ) from e

        return StructuredResult(
            value=value, model=model_id, usage=_usage_from(data.get("usage"))
        )

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                )
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as e:
            log.warning("llm_timeout", model=payload["model"], timeout=self.timeout)
            raise TransientProviderError(
                f"{payload['model']} timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise _classify_status(payload["model"], e) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"{payload['model']} transport error: {e}"
            ) from e

    async def _stream(
        self, payload: Dict[str, Any], on_token: TokenCallback
    ) -> Tuple[str, TokenUsage, Optional[str]]:
        """Consume an SSE stream, forwarding content deltas to on_token."""
        payload = {
            **payload,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        parts: List[str] = []
        reasoning_parts: List[str] = []
        usage = TokenUsage()

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    headers=self._headers(),
                    json=payload,
                ) as response:
                    if response.is_error:
                        await response.aread()
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        chunk = line[5:].strip()
                        if chunk == "[DONE]":
                            break
                        try:
                            event = json.loads(chunk)
                        except json.JSONDecodeError:
                            log.debug("stream_chunk_unparseable", chunk=chunk[:100])
                            continue
                        if event.get("usage"):
                            usage = _usage_from(event["usage"])
                        for choice in event.get("choices") or []:
                            delta = choice.get("delta") or {}
                            if delta.get("reasoning"):
                                reasoning_parts.append(delta["reasoning"])
                            if delta.get("content"):
                                parts.append(delta["content"])
                                on_token(delta["content"])
        except httpx.TimeoutException as e:
            raise TransientProviderError(
                f"{payload['model']} stream timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise _classify_status(payload["model"], e) from e
        except httpx.TransportError as e:
            raise TransientProviderError(
                f"{payload['model']} stream transport error: {e}"
            ) from e

        return "".join(parts), usage, "".join(reasoning_parts) or None


def _usage_from(raw: Optional[Dict[str, Any]]) -> TokenUsage:
    raw = raw or {}
    return TokenUsage(
        input_tokens=int(raw.get("prompt_tokens", 0) or 0),
        output_tokens=int(raw.get("completion_tokens", 0) or 0),
    )


def _classify_status(model_id: str, error: httpx.HTTPStatusError) -> LLMError:
    status_code = error.response.status_code
    if status_code == 429 or status_code >= 500:
        log.warning("llm_transient_http_error", model=model_id, status_code=status_code)
        return TransientProviderError(f"{model_id} returned HTTP {status_code}")
    log.error("llm_http_error", model=model_id, status_code=status_code)
    return LLMError(f"{model_id} returned HTTP {status_code}")


# =============================================================================
# Registry
# =============================================================================


class BackendRegistry:
    """Resolves a model id to the backend that serves it.

    Registrations are by model-id prefix ("anthropic/", "openai/gpt-5");
    the longest matching prefix wins, then the default backend.
    """

    def __init__(self, default: Optional[GenerativeBackend] = None):
        self._default = default
        self._by_prefix: Dict[str, GenerativeBackend] = {}

    def register(self, prefix: str, backend: GenerativeBackend) -> None:
        self._by_prefix[prefix] = backend

    def resolve(self, model_id: str) -> GenerativeBackend:
        matches = [p for p in self._by_prefix if model_id.startswith(p)]
        if matches:
            return self._by_prefix[max(matches, key=len)]
        if self._default is not None:
            return self._default
        raise ConfigurationError(f"No generative backend registered for {model_id}")


def build_default_registry(config: Settings) -> BackendRegistry:
    """Registry with OpenRouter serving every model id."""
    backend = OpenRouterBackend(
        api_key=config.openrouter_api_key,
        base_url=config.openrouter_base_url,
        timeout=config.request_timeout,
    )
    log.info("backend_registry_initialized", base_url=config.openrouter_base_url)
    return BackendRegistry(default=backend)
