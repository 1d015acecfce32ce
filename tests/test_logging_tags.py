"""Tests for the tag-prefixed console logging helpers."""

import contextlib
import io

from chatverse.logging_utils import (
    Color,
    colored,
    debug_llm_enabled,
    log_deterministic,
    log_error,
    log_info,
    log_llm,
    log_success,
)


def capture(fn, message: str) -> str:
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        fn(message)
    return buf.getvalue()


def test_each_helper_uses_its_tag(monkeypatch):
    monkeypatch.setenv("CHATVERSE_NO_COLOR", "1")
    assert capture(log_deterministic, "[Will] delay 2000ms") == "[•] [Will] delay 2000ms\n"
    assert capture(log_llm, "[Will] Generating") == "[AI] [Will] Generating\n"
    assert capture(log_error, "[Will] fallback") == "[!] [Will] fallback\n"
    assert capture(log_success, "[Will] done") == "[✓] [Will] done\n"
    assert capture(log_info, "[Stats] ok") == "[i] [Stats] ok\n"


def test_colors_applied_unless_disabled(monkeypatch):
    monkeypatch.delenv("CHATVERSE_NO_COLOR", raising=False)
    text = colored("hello", Color.RED, bold=True)
    assert text == f"{Color.BOLD.value}{Color.RED.value}hello{Color.RESET.value}"

    monkeypatch.setenv("CHATVERSE_NO_COLOR", "1")
    assert colored("hello", Color.RED) == "hello"


def test_debug_llm_flag(monkeypatch):
    monkeypatch.delenv("DEBUG_LLM", raising=False)
    assert debug_llm_enabled() is False
    monkeypatch.setenv("DEBUG_LLM", "true")
    assert debug_llm_enabled() is True
