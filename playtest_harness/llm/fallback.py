"""
Retry with ordered model fallback.

Every generative call in the harness goes through with_model_fallback:
the current model is retried up to its budget with exponential backoff and
jitter, then the next untried candidate takes over. Callers either get the
first success or exactly one ModelsExhaustedError.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

import structlog

from playtest_harness.core.exceptions import ModelsExhaustedError

log = structlog.get_logger(__name__)

T = TypeVar("T")

NextModel = Callable[[Sequence[str]], Optional[str]]

BASE_DELAY_SECONDS = 2.0
MAX_DELAY_SECONDS = 30.0
JITTER_RATIO = 0.3


@dataclass
class FallbackResult(Generic[T]):
    result: T
    model_used: str
    attempts: int


def fallback_delay(
    attempt: int,
    base_delay: float = BASE_DELAY_SECONDS,
    max_delay: float = MAX_DELAY_SECONDS,
) -> float:
    """Backoff before retry number attempt (0-based): base * 2^attempt + up to 30% jitter, capped."""
    exponential = base_delay * (2**attempt)
    jitter = random.random() * JITTER_RATIO * exponential
    return min(exponential + jitter, max_delay)


def next_model_from(chain: Sequence[str]) -> NextModel:
    """Selection function returning the first model in chain not yet tried."""
    candidates = list(chain)

    def _next(tried: Sequence[str]) -> Optional[str]:
        for model in candidates:
            if model not in tried:
                return model
        return None

    return _next


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def with_model_fallback(
    initial_model: str,
    invoke: Callable[[str], Awaitable[T]],
    next_model: NextModel,
    label: str,
    retries_per_model: int = 3,
    base_delay: float = BASE_DELAY_SECONDS,
    max_delay: float = MAX_DELAY_SECONDS,
) -> FallbackResult[T]:
    """
    Run invoke against initial_model, then fallbacks, until one succeeds.

    Args:
        initial_model: First model id to try
        invoke: Async call taking a model id
        next_model: Picks the next model given the ids tried so far
        label: Name of the call for logs and the terminal error
        retries_per_model: Attempts per model before moving on
        base_delay: Backoff base in seconds
        max_delay: Backoff cap in seconds

    Returns:
        FallbackResult with the result, the model that produced it and the
        total number of attempts

    Raises:
        ModelsExhaustedError: Every candidate failed its full budget
    """
    tried: List[str] = []
    current: Optional[str] = initial_model
    last_error: Optional[BaseException] = None
    total_attempts = 0

    while current is not None:
        for attempt in range(1, retries_per_model + 1):
            if attempt > 1:
                delay = fallback_delay(attempt - 2, base_delay, max_delay)
                log.debug(
                    "model_retry_backoff",
                    label=label,
                    model=current,
                    attempt=attempt,
                    delay_seconds=round(delay, 2),
                )
                await _sleep(delay)

            total_attempts += 1
            try:
                result = await invoke(current)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                log.warning(
                    "model_attempt_failed",
                    label=label,
                    model=current,
                    attempt=attempt,
                    retries_per_model=retries_per_model,
                    error_type=type(e).__name__,
                    error=str(e)[:300],
                )
                continue

            if current != initial_model:
                log.info(
                    "model_fallback_succeeded",
                    label=label,
                    initial_model=initial_model,
                    model=current,
                    attempts=total_attempts,
                )
            return FallbackResult(
                result=result, model_used=current, attempts=total_attempts
            )

        tried.append(current)
        current = next_model(tried)
        if current in tried:
            current = None
        if current is not None:
            log.warning(
                "model_fallback", label=label, tried=list(tried), next_model=current
            )

    log.error(
        "models_exhausted",
        label=label,
        tried=tried,
        attempts=total_attempts,
        error=str(last_error)[:300] if last_error else None,
    )
    raise ModelsExhaustedError(label, tried, last_error) from last_error
