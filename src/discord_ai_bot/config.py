"""
Configuration management for the Discord AI Bot.

This module handles all configuration loading from environment variables,
validation, and provides typed configuration objects for use throughout
the application.

The configuration is loaded from environment variables and .env files,
with sensible defaults for development and clear documentation for
production deployment.
"""

from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant in a Discord server. "
    "Be friendly, concise, and helpful. "
    "If you're unsure about something, say so rather than guessing."
)


class DatabaseConfig(BaseSettings):
    """Database configuration settings."""

    url: str = Field(
        default="sqlite:///./bot_prompts.db",
        description="Database connection URL"
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL queries to logs"
    )

    model_config = SettingsConfigDict(env_prefix="DATABASE_", extra="ignore")


class DiscordConfig(BaseSettings):
    """Discord bot configuration settings."""

    token: str = Field(
        default="",
        description="Discord bot token from Developer Portal"
    )
    command_prefix: str = Field(
        default="!",
        description="Command prefix for text commands"
    )
    admin_users: str = Field(
        default="",
        description="Comma-separated Discord user IDs allowed to run admin commands"
    )
    status_refresh_minutes: float = Field(
        default=5.0,
        gt=0,
        description="How often the bot presence is refreshed"
    )

    model_config = SettingsConfigDict(env_prefix="DISCORD_", extra="ignore")

    @property
    def admin_user_ids(self) -> List[str]:
        """Admin user IDs as a list of strings."""
        return [uid.strip() for uid in self.admin_users.split(",") if uid.strip()]


class GroqConfig(BaseSettings):
    """Primary provider (Groq chat completions) settings."""

    api_key: Optional[str] = Field(
        default=None,
        description="Groq API key"
    )
    base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Groq API base URL"
    )
    model_name: str = Field(
        default="llama-3.1-8b-instant",
        description="Name of the model to use"
    )
    max_tokens: int = Field(
        default=4000,
        gt=0,
        le=4000,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )
    top_p: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Nucleus sampling parameter"
    )
    timeout: float = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds"
    )
    max_context_tokens: int = Field(
        default=4096,
        gt=0,
        description="Context size the trimming budget is derived from, in estimated tokens"
    )
    context_budget_ratio: float = Field(
        default=0.7,
        gt=0.0,
        le=1.0,
        description="Share of the context size usable by prompt history"
    )

    model_config = SettingsConfigDict(env_prefix="GROQ_", extra="ignore")


class HuggingFaceConfig(BaseSettings):
    """Fallback provider (Hugging Face text generation) settings."""

    api_key: Optional[str] = Field(
        default=None,
        description="Hugging Face API token"
    )
    base_url: str = Field(
        default="https://api-inference.huggingface.co",
        description="Inference API base URL"
    )
    model_name: str = Field(
        default="meta-llama/Llama-3.1-8B-Instruct",
        description="Model repository id"
    )
    inference_provider: Optional[str] = Field(
        default="groq",
        description="Inference provider routed through Hugging Face (None for HF itself)"
    )
    max_new_tokens: int = Field(
        default=2000,
        gt=0,
        le=2000,
        description="Maximum tokens to generate"
    )
    temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature"
    )
    top_p: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Nucleus sampling parameter"
    )
    timeout: float = Field(
        default=60,
        gt=0,
        description="Request timeout in seconds"
    )
    max_context_chars: int = Field(
        default=16384,
        gt=0,
        description="Context size the trimming budget is derived from, in characters"
    )
    context_budget_ratio: float = Field(
        default=0.7,
        gt=0.0,
        le=1.0,
        description="Share of the context size usable by prompt history"
    )
    wait_for_model: bool = Field(
        default=True,
        description="Ask the API to wait for cold models instead of failing fast"
    )

    model_config = SettingsConfigDict(env_prefix="HUGGINGFACE_", extra="ignore")


class RateLimitConfig(BaseSettings):
    """Per-user and global quota settings."""

    user_max_messages: int = Field(
        default=10,
        gt=0,
        description="Messages a user may send per window"
    )
    user_window_seconds: float = Field(
        default=60,
        gt=0,
        description="Length of the per-user window"
    )
    global_daily_limit: int = Field(
        default=1000,
        gt=0,
        description="Primary provider requests allowed per UTC day"
    )
    cleanup_interval_seconds: float = Field(
        default=3600,
        gt=0,
        description="How often stale user limits are swept"
    )
    user_state_ttl_seconds: float = Field(
        default=86400,
        gt=0,
        description="Age after which a user's rate state is dropped"
    )

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")


class ConversationConfig(BaseSettings):
    """Conversation management configuration."""

    max_context_messages: int = Field(
        default=10,
        gt=0,
        description="Maximum turns kept per user"
    )
    timeout_seconds: float = Field(
        default=3600,
        gt=0,
        description="Idle time after which a conversation expires"
    )
    cleanup_interval_seconds: float = Field(
        default=600,
        gt=0,
        description="How often expired conversations are swept"
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="Default system prompt for conversations"
    )
    system_prompt_file: Optional[str] = Field(
        default=None,
        description="Path to file containing system prompt"
    )
    prompt_lookup_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for a custom prompt lookup"
    )
    sticky_fallback: bool = Field(
        default=False,
        description="Keep using the fallback provider after a failover until reset"
    )

    model_config = SettingsConfigDict(env_prefix="CONVERSATION_", extra="ignore")

    def get_system_prompt(self) -> str:
        """Get the system prompt, loading from file if specified."""
        if self.system_prompt_file:
            prompt_file = Path(self.system_prompt_file)
            try:
                if prompt_file.exists():
                    return prompt_file.read_text(encoding="utf-8").strip()
            except OSError:
                # Fall back to direct system_prompt if file loading fails
                pass
        return self.system_prompt


class MonitoringConfig(BaseSettings):
    """Monitoring and admin HTTP server settings."""

    enabled: bool = Field(
        default=True,
        description="Start the monitoring server with the bot"
    )
    host: str = Field(
        default="0.0.0.0",
        description="Interface to bind"
    )
    port: int = Field(
        default=5000,
        gt=0,
        lt=65536,
        description="Port to bind"
    )
    api_key: Optional[str] = Field(
        default=None,
        description="Bearer token for admin endpoints (generated when unset)"
    )

    model_config = SettingsConfigDict(env_prefix="MONITORING_", extra="ignore")


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(
        default="INFO",
        description="Logging level"
    )
    format: str = Field(
        default="json",
        description="Log format: 'json' or 'text'"
    )

    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in {"json", "text"}:
            raise ValueError("Log format must be 'json' or 'text'")
        return v


class AppConfig(BaseSettings):
    """Main application configuration."""

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    groq: GroqConfig = Field(default_factory=GroqConfig)
    huggingface: HuggingFaceConfig = Field(default_factory=HuggingFaceConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(extra="ignore")


def load_config() -> AppConfig:
    """
    Load and validate application configuration.

    This function loads configuration from environment variables and .env files,
    validates all settings, and returns a fully configured AppConfig instance.

    Returns:
        AppConfig: Validated application configuration

    Raises:
        ValidationError: If configuration is invalid

    Example:
        ```python
        config = load_config()
        print(f"Primary model: {config.groq.model_name}")
        ```
    """
    env_file = Path(".env")
    if env_file.exists():
        from dotenv import load_dotenv
        load_dotenv(env_file)

    return AppConfig()
