"""
Chatverse Configuration

Loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


SUPPORTED_PROVIDERS = ("google", "openai", "anthropic", "ollama")


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Provider Configuration
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "google")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gemini-2.5-flash")

    # API Keys. Gemini keys are accepted under either name.
    GOOGLE_API_KEY: str | None = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")

    # Local Ollama server (no key required)
    OLLAMA_BASE_URL: str = os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434")

    # Provider request lane
    PROVIDER_MIN_INTERVAL_MS: int = int(os.getenv("PROVIDER_MIN_INTERVAL_MS", "100"))
    PROVIDER_MAX_ATTEMPTS: int = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "3"))
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "120"))

    # Response cache
    CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "300"))
    CACHE_SWEEP_INTERVAL_SECONDS: float = float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "300"))

    # Storage
    MEMORY_STORE_DIR: Path = Path(os.getenv("MEMORY_STORE_DIR", "memory-store"))
    AGENT_CONFIG_DIR: Path | None = (
        Path(os.environ["AGENT_CONFIG_DIR"]) if os.getenv("AGENT_CONFIG_DIR") else None
    )

    @classmethod
    def api_key_for(cls, provider: str) -> str | None:
        """Return the credential for a provider, or None when it is not set.

        Ollama runs locally without a key, so a placeholder is returned for it.
        """
        provider = provider.lower()
        if provider == "ollama":
            return "not-needed"
        if provider == "google":
            return cls.GOOGLE_API_KEY
        if provider == "openai":
            return cls.OPENAI_API_KEY
        if provider == "anthropic":
            return cls.ANTHROPIC_API_KEY
        return None

    @classmethod
    def validate(cls) -> None:
        """Validate configuration and raise errors if values are unusable."""
        if cls.LLM_PROVIDER.lower() not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported LLM_PROVIDER '{cls.LLM_PROVIDER}'. "
                f"Choose one of: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        if cls.PROVIDER_MAX_ATTEMPTS < 1:
            raise ValueError("PROVIDER_MAX_ATTEMPTS must be at least 1")

    @classmethod
    def display(cls) -> str:
        """Return a formatted string showing current configuration."""
        key_state = "set" if cls.api_key_for(cls.LLM_PROVIDER) else "missing"
        lines = [
            "Chatverse Configuration:",
            f"  LLM Provider: {cls.LLM_PROVIDER} (key {key_state})",
            f"  LLM Model: {cls.LLM_MODEL}",
            f"  Request spacing: {cls.PROVIDER_MIN_INTERVAL_MS}ms",
            f"  Cache TTL: {int(cls.CACHE_TTL_SECONDS)}s",
            f"  Memory store: {cls.MEMORY_STORE_DIR}",
        ]
        return "\n".join(lines)
