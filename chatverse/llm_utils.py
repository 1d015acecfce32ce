"""Helper utilities for backend text generation, error classification and retries."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Awaitable, Callable, Optional, TypeVar

from mirascope import llm
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .local_llm import LocalLLMError, call_ollama_chat
from .logging_utils import debug_llm_enabled, log_error
from .schemas import LLMConfig

T = TypeVar("T")

LLM_TIMEOUT_SECONDS = 120.0

# Failure signatures worth retrying. Anything else fails on the first attempt.
TRANSIENT_ERROR_PATTERNS = (
    re.compile(r"rate limit", re.IGNORECASE),
    re.compile(r"quota", re.IGNORECASE),
    re.compile(r"timeout", re.IGNORECASE),
    re.compile(r"\b429\b"),
    re.compile(r"\b502\b"),
    re.compile(r"\b503\b"),
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"temporarily unavailable", re.IGNORECASE),
)


class GenerationError(RuntimeError):
    """Raised when the backend produced no usable text.

    ``transient`` marks failures that are worth retrying (rate limits, timeouts,
    gateway errors). It is derived from the message when not given explicitly.
    """

    def __init__(self, message: str, *, transient: Optional[bool] = None) -> None:
        super().__init__(message)
        self.transient = _matches_transient(message) if transient is None else transient


def _matches_transient(text: str) -> bool:
    return any(pattern.search(text) for pattern in TRANSIENT_ERROR_PATTERNS)


def _status_of(exc: BaseException) -> Optional[str]:
    """Best-effort HTTP status lookup across provider SDK exception shapes."""
    for attr in ("status_code", "status", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return str(value)
    response = getattr(exc, "response", None)
    if response is not None:
        value = getattr(response, "status_code", None) or getattr(response, "status", None)
        if value is not None:
            return str(value)
    return None


def is_transient_error(exc: BaseException) -> bool:
    """Classify an exception as retryable by its message or HTTP status."""
    if isinstance(exc, GenerationError):
        return exc.transient
    if isinstance(exc, asyncio.TimeoutError):
        return True
    if _matches_transient(str(exc)):
        return True
    status = _status_of(exc)
    return status is not None and _matches_transient(status)


def combine_prompts(system_prompt: str, user_prompt: str) -> str:
    """Single-prompt form used for hosted providers."""
    sections: list[str] = []
    if system_prompt:
        sections.append(system_prompt)
    sections.append(f"User: {user_prompt}")
    sections.append("Assistant:")
    return "\n\n".join(sections)


def _call_params(sampling: LLMConfig) -> dict[str, Any]:
    params: dict[str, Any] = {
        "temperature": sampling.temperature,
        "max_tokens": sampling.max_output_tokens,
        "top_p": sampling.top_p,
    }
    return {key: value for key, value in params.items() if value is not None}


def _ollama_options(sampling: LLMConfig) -> dict[str, Any]:
    return {
        "temperature": sampling.temperature,
        "num_predict": sampling.max_output_tokens,
        "top_p": sampling.top_p,
        "top_k": sampling.top_k,
    }


async def generate_text(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    sampling: LLMConfig,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> str:
    """Make one backend call and return the stripped reply text.

    Hosted providers go through Mirascope; ``ollama`` uses the local REST
    helper. Every failure surfaces as GenerationError so callers only deal
    with one exception type.
    """

    system_prompt = system_prompt.strip()
    user_prompt = user_prompt.strip()
    use_local_llm = llm_provider.lower() == "ollama"

    if debug_llm_enabled():
        print(f"\n{'=' * 80}")
        print(f"[LLM REQUEST] {llm_provider}/{sampling.model}")
        print(f"{'-' * 80}\n[SYSTEM PROMPT]\n{system_prompt}")
        print(f"{'-' * 80}\n[USER PROMPT]\n{user_prompt}\n{'=' * 80}\n")

    try:
        if use_local_llm:
            raw = await asyncio.wait_for(
                call_ollama_chat(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    llm_model=sampling.model,
                    options=_ollama_options(sampling),
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        else:
            @llm.call(
                provider=llm_provider,
                model=sampling.model,
                call_params=_call_params(sampling),
            )
            async def _invoke(prompt: str) -> str:
                return prompt

            response = await asyncio.wait_for(
                _invoke(combine_prompts(system_prompt, user_prompt)),
                timeout=timeout,
            )
            raw = response.content
    except asyncio.TimeoutError as exc:
        raise GenerationError(
            f"Provider call timeout after {int(timeout)}s", transient=True
        ) from exc
    except LocalLLMError as exc:
        raise GenerationError(
            f"Local LLM provider error ({llm_provider}): {exc}", transient=is_transient_error(exc)
        ) from exc
    except GenerationError:
        raise
    except Exception as exc:
        raise GenerationError(
            f"{llm_provider} API error: {exc}", transient=is_transient_error(exc)
        ) from exc

    content = (raw or "").strip() if isinstance(raw, str) else ""
    if debug_llm_enabled():
        print(f"[LLM RESPONSE] {content!r}")
    if not content:
        raise GenerationError(f"Empty response from {llm_provider}", transient=False)
    return content


def _log_retry(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay_ms = int((retry_state.next_action.sleep if retry_state.next_action else 0) * 1000)
        log_error(
            f"[{label}] Retry {retry_state.attempt_number}/{max_attempts} "
            f"after {delay_ms}ms due to: {exc}"
        )

    return _before_sleep


async def call_with_backoff(
    request_fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "LLM",
) -> T:
    """Run ``request_fn`` with exponential backoff for transient failures.

    Waits ``2**n`` seconds (n = 0, 1, ...) plus up to one second of jitter
    between attempts. Non-transient errors propagate immediately; once the
    attempts are exhausted the last error is re-raised.
    """

    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, exp_base=2) + wait_random(0, 1),
        sleep=sleep,
        before_sleep=_log_retry(label, max_attempts),
        reraise=True,
    ):
        with attempt:
            return await request_fn()

    # AsyncRetrying with reraise=True always exits via return or raise.
    raise RuntimeError("LLM retry mechanism exited unexpectedly")
