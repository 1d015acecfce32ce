"""Console logging for Chatverse.

Every line is a ``print`` prefixed with a short tag so the kind of event is
readable without color: ``[•]`` selection and timing decisions, ``[AI]``
provider calls, ``[!]`` errors, retries and fallbacks, ``[✓]`` completed
work, ``[i]`` info and stats. Set ``CHATVERSE_NO_COLOR`` to drop the ANSI
codes (useful when piping output or asserting on it in tests).
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    BLUE = "\033[94m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    CYAN = "\033[96m"

    BOLD = "\033[1m"
    RESET = "\033[0m"


LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colors_enabled() -> bool:
    return not os.getenv("CHATVERSE_NO_COLOR")


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap ``text`` in ANSI codes, or return it unchanged when colors are off."""
    if not colors_enabled():
        return text
    prefix = (Color.BOLD.value if bold else "") + color.value
    return f"{prefix}{text}{Color.RESET.value}"


def _emit(tag: str, color: Color, message: str) -> None:
    print(colored(f"{tag} {message}", color))


def log_deterministic(message: str) -> None:
    """Cooldown skips, probability draws, delays, responder picks."""
    _emit(LOG_TAG_DETERMINISTIC, Color.BLUE, message)


def log_llm(message: str) -> None:
    _emit(LOG_TAG_LLM, Color.YELLOW, message)


def log_error(message: str) -> None:
    _emit(LOG_TAG_ERROR, Color.RED, message)


def log_success(message: str) -> None:
    _emit(LOG_TAG_SUCCESS, Color.GREEN, message)


def log_info(message: str) -> None:
    _emit(LOG_TAG_INFO, Color.CYAN, message)


def debug_llm_enabled() -> bool:
    """True when ``DEBUG_LLM`` asks for full prompt and response dumps."""
    return os.getenv("DEBUG_LLM", "").lower() in ("1", "true", "yes")
