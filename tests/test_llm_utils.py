"""Unit tests for backend text generation and the retry helper."""

import asyncio
from types import SimpleNamespace

import pytest

from chatverse.llm_utils import (
    GenerationError,
    call_with_backoff,
    generate_text,
    is_transient_error,
)
from chatverse.local_llm import LocalLLMError
from chatverse.schemas import LLMConfig


def fake_mirascope(recorded: dict, reply="Hey, just go talk to her!", error: Exception | None = None):
    def fake_decorator(*, provider, model, call_params):
        recorded["provider"] = provider
        recorded["model"] = model
        recorded["call_params"] = call_params

        def wrapper(fn):
            async def inner(prompt: str):
                recorded["prompt"] = prompt
                if error is not None:
                    raise error
                return SimpleNamespace(content=reply)

            return inner

        return wrapper

    return fake_decorator


@pytest.mark.asyncio
async def test_generate_text_uses_mirascope_for_hosted_providers(monkeypatch):
    recorded: dict = {}
    monkeypatch.setattr("chatverse.llm_utils.llm.call", fake_mirascope(recorded, reply="  Sure thing, dude.  "))

    result = await generate_text(
        system_prompt="System context",
        user_prompt="What now?",
        llm_provider="google",
        sampling=LLMConfig(model="gemini-2.5-flash", temperature=0.9, max_output_tokens=140, top_p=0.95),
    )

    assert result == "Sure thing, dude."
    assert recorded["provider"] == "google"
    assert recorded["model"] == "gemini-2.5-flash"
    assert recorded["call_params"] == {"temperature": 0.9, "max_tokens": 140, "top_p": 0.95}
    assert recorded["prompt"] == "System context\n\nUser: What now?\n\nAssistant:"


@pytest.mark.asyncio
async def test_generate_text_wraps_sdk_errors(monkeypatch):
    recorded: dict = {}
    monkeypatch.setattr(
        "chatverse.llm_utils.llm.call",
        fake_mirascope(recorded, error=RuntimeError("429 Too Many Requests")),
    )

    with pytest.raises(GenerationError) as excinfo:
        await generate_text(
            system_prompt="s", user_prompt="u", llm_provider="openai", sampling=LLMConfig(model="gpt-4o-mini")
        )
    assert excinfo.value.transient is True


@pytest.mark.asyncio
async def test_empty_reply_is_non_transient_failure(monkeypatch):
    monkeypatch.setattr("chatverse.llm_utils.llm.call", fake_mirascope({}, reply="   "))

    with pytest.raises(GenerationError) as excinfo:
        await generate_text(
            system_prompt="s", user_prompt="u", llm_provider="openai", sampling=LLMConfig(model="gpt-4o-mini")
        )
    assert excinfo.value.transient is False


@pytest.mark.asyncio
async def test_generate_text_routes_ollama_to_local_helper(monkeypatch):
    captured: dict = {}

    async def fake_ollama(**kwargs):
        captured.update(kwargs)
        return "Local model says hi there"

    monkeypatch.setattr("chatverse.llm_utils.call_ollama_chat", fake_ollama)

    result = await generate_text(
        system_prompt="System",
        user_prompt="User",
        llm_provider="ollama",
        sampling=LLMConfig(model="llama3.1", temperature=0.5, max_output_tokens=100, top_k=20),
    )

    assert result == "Local model says hi there"
    assert captured["llm_model"] == "llama3.1"
    assert captured["options"]["num_predict"] == 100
    assert captured["options"]["top_k"] == 20


@pytest.mark.asyncio
async def test_local_llm_errors_become_generation_errors(monkeypatch):
    async def fake_ollama(**kwargs):
        raise LocalLLMError("Could not reach Ollama at http://x (network error): refused")

    monkeypatch.setattr("chatverse.llm_utils.call_ollama_chat", fake_ollama)

    with pytest.raises(GenerationError) as excinfo:
        await generate_text(system_prompt="s", user_prompt="u", llm_provider="ollama", sampling=LLMConfig(model="m"))
    assert excinfo.value.transient is True


@pytest.mark.asyncio
async def test_generate_text_times_out_as_transient(monkeypatch):
    async def slow_ollama(**kwargs):
        await asyncio.sleep(1)
        return "too late to matter"

    monkeypatch.setattr("chatverse.llm_utils.call_ollama_chat", slow_ollama)

    with pytest.raises(GenerationError) as excinfo:
        await generate_text(
            system_prompt="s", user_prompt="u", llm_provider="ollama", sampling=LLMConfig(model="m"), timeout=0.01
        )
    assert excinfo.value.transient is True
    assert "timeout" in str(excinfo.value)


def test_is_transient_error_classification():
    assert is_transient_error(RuntimeError("Rate limit exceeded"))
    assert is_transient_error(RuntimeError("quota exhausted"))
    assert is_transient_error(RuntimeError("HTTP 503 from upstream"))
    assert is_transient_error(asyncio.TimeoutError())

    class StatusError(Exception):
        status_code = 429

    assert is_transient_error(StatusError("boom"))
    assert not is_transient_error(ValueError("invalid api key"))
    assert not is_transient_error(GenerationError("rate limit", transient=False))


@pytest.mark.asyncio
async def test_call_with_backoff_retries_transient_failures():
    sleeps: list[float] = []
    attempts = 0

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    async def flaky() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise GenerationError("rate limit hit")
        return "finally worked"

    result = await call_with_backoff(flaky, max_attempts=3, sleep=fake_sleep)

    assert result == "finally worked"
    assert attempts == 3
    assert len(sleeps) == 2
    # 2**0 and 2**1 seconds plus up to one second of jitter.
    assert 1 <= sleeps[0] <= 2
    assert 2 <= sleeps[1] <= 3


@pytest.mark.asyncio
async def test_call_with_backoff_gives_up_after_max_attempts():
    attempts = 0

    async def fake_sleep(seconds: float) -> None:
        return None

    async def always_busy() -> str:
        nonlocal attempts
        attempts += 1
        raise GenerationError("503 service unavailable")

    with pytest.raises(GenerationError):
        await call_with_backoff(always_busy, max_attempts=3, sleep=fake_sleep)
    assert attempts == 3


@pytest.mark.asyncio
async def test_call_with_backoff_does_not_retry_permanent_failures():
    attempts = 0

    async def fake_sleep(seconds: float) -> None:  # pragma: no cover - must not be called
        raise AssertionError("should not sleep")

    async def broken() -> str:
        nonlocal attempts
        attempts += 1
        raise GenerationError("invalid api key", transient=False)

    with pytest.raises(GenerationError):
        await call_with_backoff(broken, max_attempts=3, sleep=fake_sleep)
    assert attempts == 1
