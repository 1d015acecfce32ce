import pytest

from chatverse.validation import (
    ResponseValidationError,
    ensure_valid_response,
    rejection_reason,
    validate_response,
)


@pytest.mark.parametrize(
    "length, accepted",
    [(9, False), (10, True), (750, True), (751, False)],
)
def test_length_boundaries(length, accepted):
    assert validate_response("x" * length) is accepted


@pytest.mark.parametrize(
    "text",
    [
        "I'm sorry, but I can't help with that one.",
        "Honestly I cannot assist with this request.",
        "As an AI, I don't date, but here are some tips.",
        "Well, i'm an ai assistant so take this with salt.",
    ],
)
def test_refusal_patterns_are_rejected(text):
    assert validate_response(text) is False
    assert "refusal" in rejection_reason(text)


def test_non_string_and_empty_are_rejected():
    assert validate_response(None) is False
    assert validate_response("") is False
    assert validate_response(42) is False


def test_ensure_valid_response_raises_with_reason():
    assert ensure_valid_response("Sounds like a plan, go for it.") == "Sounds like a plan, go for it."
    with pytest.raises(ResponseValidationError) as excinfo:
        ensure_valid_response("too short")
    assert "length 9" in excinfo.value.reason
