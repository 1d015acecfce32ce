"""Ollama backend for agents running against a locally hosted model.

The REST call is blocking urllib run in a worker thread. Failures surface as
LocalLLMError with the HTTP ``status`` when one is known, so the retry layer
can tell a busy server (429/502/503, connection refused) from a bad request.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional
from urllib import error, request

from .config import Config

_CHAT_ENDPOINT = "/api/chat"

# Ollama's names for the sampling knobs an LLMConfig carries.
SAMPLING_OPTION_NAMES = ("temperature", "num_predict", "top_p", "top_k")


class LocalLLMError(RuntimeError):
    """Raised when a local model call fails or returns nothing usable."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def build_chat_payload(
    system_prompt: str,
    user_prompt: str,
    model: str,
    options: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Non-streaming ``/api/chat`` body; unset sampling options are omitted."""
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": user_prompt})

    payload: dict[str, Any] = {"model": model, "messages": messages, "stream": False}
    sampling = {
        name: value
        for name, value in (options or {}).items()
        if name in SAMPLING_OPTION_NAMES and value is not None
    }
    if sampling:
        payload["options"] = sampling
    return payload


def extract_reply(raw: str) -> str:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned non-JSON response.") from exc
    content = (parsed.get("message") or {}).get("content")
    if not content:
        raise LocalLLMError("Ollama response did not include assistant content.")
    return content


def _perform_ollama_request(payload: dict[str, Any], base_url: str, timeout: float) -> str:
    url = f"{base_url}{_CHAT_ENDPOINT}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(
            f"Ollama returned HTTP {exc.code} for {payload['model']}: {body or exc.reason}",
            status=exc.code,
        ) from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url} (network error): {exc.reason}") from exc
    return extract_reply(raw)


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    options: Optional[dict[str, Any]] = None,
    base_url: Optional[str] = None,
    timeout: float = 120.0,
) -> str:
    """Send one persona prompt plus user turn to Ollama and return the reply text."""
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Cannot call Ollama with an empty user prompt.")

    payload = build_chat_payload(system_prompt.strip(), user_prompt, llm_model, options)
    resolved_base = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")
    return await asyncio.to_thread(_perform_ollama_request, payload, resolved_base, timeout)


__all__ = ["LocalLLMError", "build_chat_payload", "call_ollama_chat", "extract_reply"]
