"""
Community (room) definitions and agent config loading.

Agent configs arrive as plain dicts (inline definitions, JSON files, or the
"create personality" request) and are validated here before they can join a
room. A config missing a required field raises ConfigError and that agent is
left out of the room entirely; it is never patched with defaults.

Config file structure (``{AGENT_CONFIG_DIR}/{agent_id}.json``):
```json
{
  "id": "wingman_will",
  "name": "Wingman_Will",
  "personality": "...",
  "llm_config": {"model": "gemini-2.5-flash", "temperature": 0.9, "maxOutputTokens": 140},
  "behavior_config": {"response_probability": 0.85, "min_delay_ms": 1500, "max_delay_ms": 6000}
}
```

File configs take precedence over inline ones; ``llm_config`` and
``behavior_config`` are merged key by key.
"""

import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .config import Config
from .logging_utils import log_error, log_info, log_success
from .room import RoomSession
from .schemas import AgentConfig, Message, MessageKind, Room, utc_now

REQUIRED_FIELDS = ("id", "name", "personality", "llm_config", "behavior_config")
# Each entry lists accepted spellings of one required key.
REQUIRED_LLM_FIELDS = (("model",), ("temperature",), ("max_output_tokens", "maxOutputTokens"))
REQUIRED_BEHAVIOR_FIELDS = (("response_probability",), ("min_delay_ms",), ("max_delay_ms",))


class ConfigError(ValueError):
    """Raised when an agent config is missing a required field or is malformed."""

    def __init__(self, agent_id: Optional[str], field: str, detail: str = "") -> None:
        self.agent_id = agent_id
        self.field = field
        message = f"Invalid config for agent '{agent_id or '?'}': {field}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


def validate_agent_config(raw: Mapping[str, Any]) -> AgentConfig:
    """Check required fields, then build the AgentConfig model.

    Raises:
        ConfigError: If a required field is absent or a value fails validation
    """
    agent_id = raw.get("id")
    for name in REQUIRED_FIELDS:
        if not raw.get(name):
            raise ConfigError(agent_id, f"missing required field '{name}'")

    for section, required in (
        ("llm_config", REQUIRED_LLM_FIELDS),
        ("behavior_config", REQUIRED_BEHAVIOR_FIELDS),
    ):
        block = raw[section]
        if not isinstance(block, Mapping):
            raise ConfigError(agent_id, f"'{section}' must be an object")
        for spellings in required:
            if all(block.get(key) is None for key in spellings):
                raise ConfigError(agent_id, f"missing {section} field '{spellings[0]}'")

    try:
        return AgentConfig.model_validate(dict(raw))
    except ValidationError as exc:
        first = exc.errors(include_url=False)[0]
        loc = ".".join(str(part) for part in first.get("loc", [])) or "root"
        raise ConfigError(agent_id, loc, first.get("msg", "invalid value")) from exc


def merge_configs(inline: Mapping[str, Any], file_config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Overlay a file config on an inline config (file wins, nested blocks merged)."""
    if not file_config:
        return dict(inline)
    merged: Dict[str, Any] = {**inline, **file_config}
    for section in ("llm_config", "behavior_config"):
        merged[section] = {**(inline.get(section) or {}), **(file_config.get(section) or {})}
    return merged


def load_agent_config_files(config_dir: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """Read every ``*.json`` in ``config_dir`` into raw dicts keyed by file stem.

    Unreadable files are logged and skipped; validation happens later so the
    raw dicts can still be merged with inline definitions.
    """
    config_dir = config_dir or Config.AGENT_CONFIG_DIR
    if config_dir is None or not config_dir.is_dir():
        return {}

    configs: Dict[str, Dict[str, Any]] = {}
    for path in sorted(config_dir.glob("*.json")):
        try:
            configs[path.stem] = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log_error(f"[Config] Could not read {path.name}: {exc}")
            continue
        log_info(f"[Config] Loaded config file {path.name}")
    return configs


def build_agents(
    inline_configs: Mapping[str, Mapping[str, Any]],
    file_configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> List[AgentConfig]:
    """Validate every config, dropping (and logging) the invalid ones."""
    file_configs = file_configs or {}
    agents: List[AgentConfig] = []
    for agent_id in list(inline_configs) + [k for k in file_configs if k not in inline_configs]:
        raw = merge_configs(inline_configs.get(agent_id, {}), file_configs.get(agent_id))
        try:
            agents.append(validate_agent_config(raw))
        except ConfigError as exc:
            log_error(f"[Config] {exc}; agent excluded")
    log_success(f"[Config] {len(agents)} agent configurations ready")
    return agents


def slugify_agent_name(name: str) -> str:
    """Agent id derived from a display name: lowercase, non-alphanumerics to ``_``."""
    return "".join(char if char.isascii() and char.isalnum() else "_" for char in name.lower())


# ============================================================================
# Default community: "Dating Advice Bros"
# ============================================================================

DEFAULT_ROOM_ID = "late-night-coders"
DEFAULT_MODEL = "gemini-2.5-flash"


def _persona(
    agent_id: str,
    name: str,
    avatar: str,
    personality: str,
    backstory: str,
    response_style: str,
    relationships: List[str],
    llm: Dict[str, Any],
    behavior: Dict[str, Any],
) -> Dict[str, Any]:
    return {
        "id": agent_id,
        "name": name,
        "avatar": avatar,
        "personality": personality,
        "backstory": backstory,
        "response_style": response_style,
        "relationships": relationships,
        "llm_config": {"model": DEFAULT_MODEL, **llm},
        "behavior_config": behavior,
    }


DEFAULT_AGENT_CONFIGS: Dict[str, Dict[str, Any]] = {
    "confidence_coach": _persona(
        "confidence_coach", "Confidence_Coach", "💪",
        "Former shy guy who learned confidence through practice. Gives practical advice on building self-esteem.",
        "Used to be terrified of talking to girls. Now married with great social skills. Remembers the struggle.",
        "Encouraging, shares transformation stories, focuses on building confidence step by step",
        ["wingman_will", "honest_harry"],
        {"temperature": 0.8, "max_output_tokens": 150, "top_p": 0.9, "top_k": 40},
        {"response_probability": 0.75, "min_delay_ms": 2000, "max_delay_ms": 8000,
         "chattiness_level": 7, "recent_response_cooldown_ms": 30000},
    ),
    "wingman_will": _persona(
        "wingman_will", "Wingman_Will", "😎",
        "Natural social butterfly who loves helping friends succeed with dating. Great at reading situations.",
        "Always been the guy who helps his friends get dates. Genuinely wants everyone to find love.",
        "Casual, bro-like but supportive, gives tactical advice, uses \"dude\" a lot",
        ["confidence_coach", "smooth_sam"],
        {"temperature": 0.9, "max_output_tokens": 140, "top_p": 0.95, "top_k": 40},
        {"response_probability": 0.85, "min_delay_ms": 1500, "max_delay_ms": 6000,
         "chattiness_level": 9, "recent_response_cooldown_ms": 20000},
    ),
    "smooth_sam": _persona(
        "smooth_sam", "Smooth_Sam", "😏",
        "Charming guy who knows how to talk to women. Focuses on being genuine rather than pickup lines.",
        "Learned that authenticity beats tricks. Had to unlearn a lot of bad dating advice.",
        "Smooth but genuine, anti-pickup artist, emphasizes being yourself",
        ["wingman_will", "relationship_rick"],
        {"temperature": 0.7, "max_output_tokens": 160, "top_p": 0.85, "top_k": 30},
        {"response_probability": 0.65, "min_delay_ms": 3000, "max_delay_ms": 10000,
         "chattiness_level": 6, "recent_response_cooldown_ms": 45000},
    ),
    "relationship_rick": _persona(
        "relationship_rick", "Relationship_Rick", "❤️",
        "Focuses on building meaningful connections. Married his college sweetheart after asking her out nervously.",
        "Believes in taking things slow and building real relationships. Very romantic at heart.",
        "Thoughtful, romantic, focuses on emotional connection over tactics",
        ["smooth_sam", "honest_harry"],
        {"temperature": 0.6, "max_output_tokens": 170, "top_p": 0.8, "top_k": 25},
        {"response_probability": 0.60, "min_delay_ms": 4000, "max_delay_ms": 12000,
         "chattiness_level": 5, "recent_response_cooldown_ms": 60000},
    ),
    "honest_harry": _persona(
        "honest_harry", "Honest_Harry", "🤔",
        "Gives brutally honest but caring advice. Calls out bad ideas but always offers better alternatives.",
        "Learned from many dating mistakes. Now gives the advice he wishes he had gotten.",
        "Direct, honest, sometimes tough love, but always constructive",
        ["confidence_coach", "anxiety_andy"],
        {"temperature": 0.5, "max_output_tokens": 140, "top_p": 0.7, "top_k": 20},
        {"response_probability": 0.70, "min_delay_ms": 2500, "max_delay_ms": 7000,
         "chattiness_level": 8, "recent_response_cooldown_ms": 25000},
    ),
    "anxiety_andy": _persona(
        "anxiety_andy", "Anxiety_Andy", "😰",
        "Deals with social anxiety but has learned coping strategies. Very empathetic to nervousness.",
        "Struggled with anxiety for years. Found ways to manage it and still date successfully.",
        "Understanding, shares anxiety management tips, very relatable to nervous guys",
        ["honest_harry", "confidence_coach"],
        {"temperature": 0.8, "max_output_tokens": 160, "top_p": 0.85, "top_k": 35},
        {"response_probability": 0.55, "min_delay_ms": 3500, "max_delay_ms": 9000,
         "chattiness_level": 4, "recent_response_cooldown_ms": 90000},
    ),
}


def _seed_messages() -> List[Message]:
    now = utc_now()
    seeds = [
        ("confidence_coach", 3600,
         "Hey everyone! 👋 Welcome to Dating Advice Bros. This is a safe space to get real advice about dating and relationships."),
        ("wingman_will", 3500,
         "Yo! Just helped my buddy Jake get a date with his crush. Feeling good about spreading the love 😎"),
        ("anxiety_andy", 3400,
         "That's awesome Will! I'm still working up the courage to text this girl back 😅 Baby steps though!"),
    ]
    return [
        Message(author=author, content=content, kind=MessageKind.AGENT,
                timestamp=now - timedelta(seconds=seconds_ago))
        for author, seconds_ago, content in seeds
    ]


def build_default_community(
    file_configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
    *,
    with_seed_messages: bool = True,
) -> RoomSession:
    """The built-in room with its six personalities and welcome chatter."""
    agents = build_agents(DEFAULT_AGENT_CONFIGS, file_configs)
    room = Room(
        id=DEFAULT_ROOM_ID,
        name="Dating Advice Bros",
        description="A supportive community for dating advice and building confidence",
    )
    return RoomSession(room, agents, history=_seed_messages() if with_seed_messages else None)


def build_room(
    room_id: str,
    name: str,
    agent_configs: Iterable[Mapping[str, Any]],
    *,
    description: str = "",
) -> RoomSession:
    """Build a room from raw agent configs, excluding invalid ones."""
    inline = {
        str(raw.get("id") or f"unnamed_{index}"): raw for index, raw in enumerate(agent_configs)
    }
    return RoomSession(Room(id=room_id, name=name, description=description), build_agents(inline))
