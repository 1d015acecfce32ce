"""Prompt assembly for agent replies.

Pure functions: given an agent's persona, the room's recent history and what
the agent remembers about a user, produce the system prompt and the user turn
sent to the text-generation backend. Nothing here performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Sequence

from .schemas import AgentConfig, MemoryRecord, Message, utc_now

RECENT_MESSAGE_LIMIT = 5
RECENT_CONVERSATION_LIMIT = 5
SUMMARY_PREVIEW_CHARS = 80
RESPONSE_CHAR_CEILING = 750
RESPONSE_CHAR_TARGET = 400

USER_CONTEXT_HEADER = "CONTEXT ABOUT THIS USER:"


@dataclass
class PromptTemplate:
    """Represents a templated prompt with ``{placeholder}`` slots."""

    name: str
    system: str
    description: str = ""


DEFAULT_PERSONA_TEMPLATE = PromptTemplate(
    name="persona",
    system=(
        "You are {name}, a regular in the \"{community_name}\" group chat.\n"
        "Personality: {personality}\n"
        "Backstory: {backstory}\n"
        "Response style: {responseStyle}\n"
        "Stay in character. Talk like a real person texting friends, never like an assistant."
    ),
    description="Persona preamble used when an agent has no custom template.",
)


def _brevity_rules() -> str:
    return (
        "Your response must be very short, like a text message. 1-2 sentences max. "
        f"Never exceed {RESPONSE_CHAR_CEILING} characters and aim for well under "
        f"{RESPONSE_CHAR_TARGET}."
    )


def render_template(template: str, values: Dict[str, str]) -> str:
    """Substitute ``{key}`` placeholders with plain-text values.

    Unknown placeholders are left untouched and no escaping is applied, so
    persona text containing braces passes through verbatim.
    """
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace("{" + key + "}", value)
    return rendered


def format_recent_messages(
    messages: Sequence[Message], limit: int = RECENT_MESSAGE_LIMIT
) -> str:
    """Render the last ``limit`` messages as ``author: content`` lines, oldest first."""
    if limit <= 0:
        return ""
    return "\n".join(f"{msg.author}: {msg.content}" for msg in list(messages)[-limit:])


def build_system_prompt(
    agent: AgentConfig,
    community_name: str,
    recent_messages: Sequence[Message] = (),
) -> str:
    """Build the system prompt for one agent reply."""
    template = agent.llm_config.system_prompt_template or DEFAULT_PERSONA_TEMPLATE.system
    persona = render_template(
        template,
        {
            "name": agent.name,
            "personality": agent.personality,
            "backstory": agent.backstory,
            "responseStyle": agent.response_style,
            "community_name": community_name,
        },
    )
    recent = format_recent_messages(recent_messages)
    return f"{persona}\n\nRecent conversation:\n{recent}\n\n{_brevity_rules()}"


def time_ago(timestamp: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Coarse recency label: ``N day(s) ago``, ``N hour(s) ago`` or ``recently``."""
    if timestamp is None:
        return "recently"
    now = now or utc_now()
    # Hand-edited or older blobs may carry naive timestamps; treat them as UTC.
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hours = int((now - timestamp).total_seconds() // 3600)
    days = hours // 24
    if days > 0:
        return f"{days} day{'s' if days > 1 else ''} ago"
    if hours > 0:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return "recently"


def _summarize(text: str) -> str:
    text = text.strip()
    if len(text) > SUMMARY_PREVIEW_CHARS:
        return text[: SUMMARY_PREVIEW_CHARS - 3] + "..."
    return text


def build_memory_context(
    record: Optional[MemoryRecord],
    user_id: str,
    now: Optional[datetime] = None,
) -> str:
    """Describe what the agent remembers about ``user_id``.

    Returns an empty string when the agent has never profiled this user. Only
    fields that are present are rendered.
    """
    if record is None or user_id not in record.user_profiles:
        return ""

    profile = record.user_profiles[user_id]
    lines: list[str] = []

    if profile.preferences:
        lines.append(f"User interests: {', '.join(profile.preferences)}")
    if profile.relationship_status:
        lines.append(f"Relationship status: {profile.relationship_status}")
    if profile.personality_traits:
        lines.append(f"User traits: {', '.join(profile.personality_traits)}")

    recent = [c for c in record.conversations if c.user_id == user_id][-RECENT_CONVERSATION_LIMIT:]
    if recent:
        lines.append("")
        lines.append("Recent conversation history:")
        for index, conv in enumerate(recent, 1):
            summary = conv.summary or _summarize(conv.message)
            lines.append(f"{index}. {time_ago(conv.timestamp, now)}: {summary}")

    interaction_count = record.interaction_counts.get(user_id, 0)
    if interaction_count > 0:
        lines.append("")
        lines.append(f"Interaction history: {interaction_count} previous conversations")

    relationship = record.relationships.get(user_id)
    if relationship is not None:
        lines.append(
            f"Relationship level: {relationship.relationship_type} (trust: {relationship.trust_level})"
        )

    return "\n".join(lines).strip()


def enhance_user_message(message: str, context: str = "") -> str:
    """Append a delimited user-context block to the raw message when available."""
    if not context:
        return message
    return f"{message}\n\n{USER_CONTEXT_HEADER}\n{context}"


def build_user_turn(
    message: str,
    record: Optional[MemoryRecord],
    user_id: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Convenience wrapper: raw message plus remembered context for ``user_id``."""
    if not user_id:
        return message
    return enhance_user_message(message, build_memory_context(record, user_id, now))


def mentions(text: str, names: Iterable[str]) -> list[str]:
    """Return the names that appear case-insensitively in ``text``."""
    lowered = text.lower()
    return [name for name in names if name and name.lower() in lowered]
