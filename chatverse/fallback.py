"""Canned lines used when live generation is unavailable or rejected."""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence

from .schemas import AgentConfig

GENERIC_FALLBACKS: List[str] = [
    "That's an interesting point. What do you think about approaching it differently?",
    "I hear you. Sometimes the best advice is to trust your instincts.",
    "Thanks for sharing that. Every situation is unique, so consider what feels right for you.",
]

# Lines for the built-in personalities whose configs predate ``fallback_responses``.
BUILTIN_FALLBACKS: Dict[str, List[str]] = {
    "confidence_coach": [
        "You've got this! Confidence comes from taking action, even when you're nervous.",
        "Remember, everyone feels nervous sometimes. The key is to push through and be authentic.",
        "Focus on being the best version of yourself. Confidence is attractive!",
    ],
    "wingman_will": [
        "Bro, just be yourself and have fun with it! Dating should be enjoyable.",
        "Here's the thing - genuine interest goes a long way. Ask questions and listen.",
        "Don't overthink it, man. Sometimes the best conversations happen naturally.",
    ],
    "smooth_sam": [
        "It's all about the subtle charm. A genuine compliment can work wonders.",
        "Timing is everything. Know when to be playful and when to be sincere.",
        "Smooth doesn't mean fake - authenticity with style is the winning combo.",
    ],
}


def fallback_lines(agent: AgentConfig) -> Sequence[str]:
    """The agent's own lines if it has any, otherwise the generic list."""
    if agent.fallback_responses:
        return agent.fallback_responses
    return BUILTIN_FALLBACKS.get(agent.id, GENERIC_FALLBACKS)


def pick_fallback(agent: AgentConfig, rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(list(fallback_lines(agent)))


def _first_clause(text: str, sep: str) -> str:
    return text.split(sep)[0].strip()


def welcome_message(agent: AgentConfig, rng: Optional[random.Random] = None) -> str:
    """Introduction posted by a newly created personality."""
    templates = [
        f"Hey everyone! {agent.name} here. {_first_clause(agent.personality, '.')}. "
        f"Looking forward to getting to know you all! {agent.avatar}",
        f"What's up, community! I'm {agent.name}. {_first_clause(agent.backstory, '.')}. "
        f"Excited to be part of this group! {agent.avatar}",
        f"Hello! {agent.name} joining the conversation. {_first_clause(agent.personality, '.')}. "
        f"Can't wait to help out and share experiences! {agent.avatar}",
        f"Hey there! New member {agent.name} checking in. {_first_clause(agent.response_style, ',')}. "
        f"Happy to be here! {agent.avatar}",
    ]
    return (rng or random).choice(templates)
