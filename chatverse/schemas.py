"""
Pydantic schemas for the Chatverse chat simulation.

All data structures shared between the orchestrator, the provider lane, the
memory store and the service facade are defined here.

Design Philosophy:
- Agent configs are data (JSON-friendly) so communities can be defined in files
- Camel-case keys from older config files are accepted as aliases
- Messages are immutable once created; room history is append-only
- Memory records are plain models so any blob store can persist them
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


def utc_now() -> datetime:
    """Timezone-aware current time used for every persisted timestamp."""
    return datetime.now(timezone.utc)


# ============================================================================
# Agent (Personality) Schemas
# ============================================================================


class LLMConfig(BaseModel):
    """Sampling configuration passed to the text-generation backend.

    Only ``model``, ``temperature`` and ``max_output_tokens`` are required by the
    config validator; nucleus/top-k sampling is optional because not every
    provider honors them.
    """

    model_config = ConfigDict(populate_by_name=True)

    model: str = Field(..., description="Provider model identifier")
    temperature: float = Field(0.8, ge=0.0, le=2.0)
    max_output_tokens: int = Field(
        150,
        gt=0,
        validation_alias=AliasChoices("max_output_tokens", "maxOutputTokens"),
    )
    top_p: Optional[float] = Field(
        None, ge=0.0, le=1.0, validation_alias=AliasChoices("top_p", "topP")
    )
    top_k: Optional[int] = Field(None, gt=0, validation_alias=AliasChoices("top_k", "topK"))
    # Optional persona template with {name}/{personality}/{backstory}/{responseStyle}
    # placeholders. When absent the built-in template is used.
    system_prompt_template: Optional[str] = None


class BehaviorConfig(BaseModel):
    """Parameters that decide whether and when an agent answers a message."""

    model_config = ConfigDict(populate_by_name=True)

    response_probability: float = Field(..., ge=0.0, le=1.0)
    min_delay_ms: int = Field(..., ge=0)
    max_delay_ms: int = Field(..., ge=0)
    # Informational only; the orchestrator never reads it.
    chattiness_level: int = Field(5, ge=0, le=10)
    empathy_level: int = Field(7, ge=0, le=10)
    recent_response_cooldown_ms: int = Field(
        30_000,
        ge=0,
        validation_alias=AliasChoices(
            "recent_response_cooldown_ms", "recent_response_cooldown"
        ),
    )

    @model_validator(mode="after")
    def _check_delay_bounds(self) -> "BehaviorConfig":
        if self.min_delay_ms > self.max_delay_ms:
            raise ValueError(
                f"min_delay_ms ({self.min_delay_ms}) must not exceed max_delay_ms ({self.max_delay_ms})"
            )
        return self


class AgentConfig(BaseModel):
    """A configured AI personality (WHO the agent is and HOW it behaves).

    Identity and persona fields feed the prompt builder; ``llm_config`` feeds the
    provider; ``behavior_config`` feeds the orchestrator's selection and delay
    logic. ``relationships`` lists known associates and is informational.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Stable slug, unique within a room")
    name: str = Field(..., min_length=1, description="Display name, used for mention detection")
    avatar: str = Field("🤖", description="Short emoji or image reference")
    personality: str = Field(..., description="Free-text trait description")
    backstory: str = Field("", description="Background narrative")
    response_style: str = Field(
        "", validation_alias=AliasChoices("response_style", "responseStyle")
    )
    llm_config: LLMConfig
    behavior_config: BehaviorConfig
    relationships: List[str] = Field(default_factory=list)
    # Canned lines used when live generation fails; empty means the generic list.
    fallback_responses: List[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


# ============================================================================
# Room and Message Schemas
# ============================================================================


class MessageKind(str, Enum):
    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"


class Message(BaseModel):
    """A single chat message. Frozen: history entries are never edited."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    author: str = Field(..., description="Agent id or human display name")
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    kind: MessageKind = MessageKind.HUMAN


class Room(BaseModel):
    """A chat room (community) definition. History lives on the RoomSession."""

    id: str
    name: str
    description: str = ""
    members: List[str] = Field(default_factory=list, description="Ordered member agent ids")


# ============================================================================
# Memory Schemas
# ============================================================================


class ConversationRecord(BaseModel):
    user_id: str
    message: str
    context: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)


class UserProfile(BaseModel):
    """What an agent remembers about a user. Unknown keys are kept as extras."""

    model_config = ConfigDict(extra="allow")

    display_name: Optional[str] = None
    last_message: Optional[str] = None
    preferences: List[str] = Field(default_factory=list)
    relationship_status: Optional[str] = None
    personality_traits: List[str] = Field(default_factory=list)
    last_seen_at: Optional[datetime] = None


class RelationshipInfo(BaseModel):
    relationship_type: str = "new"
    trust_level: float = Field(0.5, ge=0.0, le=1.0)


class MemoryRecord(BaseModel):
    """Everything one agent remembers inside one room."""

    conversations: List[ConversationRecord] = Field(default_factory=list)
    user_profiles: Dict[str, UserProfile] = Field(default_factory=dict)
    relationships: Dict[str, RelationshipInfo] = Field(default_factory=dict)
    # Lifetime interaction totals per user; not trimmed with conversations.
    interaction_counts: Dict[str, int] = Field(default_factory=dict)
