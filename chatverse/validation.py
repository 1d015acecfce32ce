"""Acceptance checks for generated replies."""

from __future__ import annotations

import re
from typing import Any, Optional

MIN_RESPONSE_CHARS = 10
MAX_RESPONSE_CHARS = 750

# Refusals and assistant meta-talk break the illusion of a human chat member.
REFUSAL_PATTERNS = (
    re.compile(r"I'm sorry, but I can't", re.IGNORECASE),
    re.compile(r"I cannot assist", re.IGNORECASE),
    re.compile(r"As an AI", re.IGNORECASE),
    re.compile(r"I'm an AI assistant", re.IGNORECASE),
)


class ResponseValidationError(ValueError):
    """Raised when a generated reply is rejected."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid response: {reason}")


def rejection_reason(response: Any) -> Optional[str]:
    """Return why ``response`` is unacceptable, or None if it passes."""
    if not isinstance(response, str) or not response:
        return "empty or non-string response"
    length = len(response)
    if length < MIN_RESPONSE_CHARS or length > MAX_RESPONSE_CHARS:
        return f"length {length} outside {MIN_RESPONSE_CHARS}-{MAX_RESPONSE_CHARS} chars"
    for pattern in REFUSAL_PATTERNS:
        if pattern.search(response):
            return f"matches refusal pattern '{pattern.pattern}'"
    return None


def validate_response(response: Any) -> bool:
    return rejection_reason(response) is None


def ensure_valid_response(response: Any) -> str:
    """Return ``response`` unchanged or raise ResponseValidationError."""
    reason = rejection_reason(response)
    if reason is not None:
        raise ResponseValidationError(reason)
    return response
