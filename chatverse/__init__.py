"""
Chatverse - simulated group chat with LLM-driven AI personalities.

Humans post into rooms; a cast of configured personalities decides who
answers, how fast, and with what, through a shared rate-limited provider
lane with caching, validation and canned fallbacks.

Every component takes its collaborators (provider, clock, randomness,
storage) through its constructor; ``Config`` only supplies defaults.
"""

__version__ = "0.1.0"

# Facade
from .service import ChatService

# Orchestration
from .orchestrator import (
    AgentOrchestrator,
    OrchestrationResult,
    ResponderPlan,
    analyze_urgency,
    compose_probability,
    compute_delay,
)
from .responder import AgentResponder, GenerationStats, Reply, ReplySource
from .room import RoomSession
from .delivery import DeliveryQueue, PendingDelivery

# Provider lane and text handling
from .provider import ProviderClient
from .llm_utils import GenerationError
from .cache import ResponseCache
from .validation import ResponseValidationError, validate_response
from .fallback import pick_fallback, welcome_message

# Memory and storage
from .memory import MemoryStore
from .persistence import (
    MemoryBackend,
    InMemoryBackend,
    JsonFileBackend,
    PersistenceError,
)

# Configuration and communities
from .config import Config
from .community import (
    ConfigError,
    build_default_community,
    build_room,
    load_agent_config_files,
    validate_agent_config,
)

# Core schemas
from .schemas import (
    AgentConfig,
    BehaviorConfig,
    LLMConfig,
    Message,
    MessageKind,
    Room,
    MemoryRecord,
    ConversationRecord,
    UserProfile,
    RelationshipInfo,
)

__all__ = [
    "ChatService",
    "AgentOrchestrator",
    "OrchestrationResult",
    "ResponderPlan",
    "analyze_urgency",
    "compose_probability",
    "compute_delay",
    "AgentResponder",
    "GenerationStats",
    "Reply",
    "ReplySource",
    "RoomSession",
    "DeliveryQueue",
    "PendingDelivery",
    "ProviderClient",
    "GenerationError",
    "ResponseCache",
    "ResponseValidationError",
    "validate_response",
    "pick_fallback",
    "welcome_message",
    "MemoryStore",
    "MemoryBackend",
    "InMemoryBackend",
    "JsonFileBackend",
    "PersistenceError",
    "Config",
    "ConfigError",
    "build_default_community",
    "build_room",
    "load_agent_config_files",
    "validate_agent_config",
    "AgentConfig",
    "BehaviorConfig",
    "LLMConfig",
    "Message",
    "MessageKind",
    "Room",
    "MemoryRecord",
    "ConversationRecord",
    "UserProfile",
    "RelationshipInfo",
]
