# -*- coding: utf-8 -*-
"""Location: ./chatwarden/config.py
Copyright 2026
SPDX-License-Identifier: Apache-2.0

Configuration settings for chatwarden.

Values are read from environment variables (or a ``.env`` file) using
pydantic-settings. Components never read the environment directly; the
composition root hands them the values they need.

Examples:
    >>> from chatwarden.config import Settings
    >>> s = Settings(_env_file=None, command_prefix="?")
    >>> s.command_prefix
    '?'
    >>> s.script_limits().timeout_ms
    3000
"""

# Standard
from functools import lru_cache
import logging
from typing import List, Literal, Optional

# Third-Party
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# First-Party
from chatwarden.models import ScriptLimits

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """chatwarden configuration."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore")

    # Chat platform
    bot_token: Optional[str] = Field(default=None, description="Chat platform bot token")
    update_status_interval_seconds: float = Field(default=60.0, gt=0, description="Presence refresh interval")

    # Storage
    database_url: str = Field(default="sqlite+aiosqlite:///./chatwarden.db", description="SQLAlchemy async database URL")
    database_echo: bool = False

    # Parsing
    command_prefix: str = Field(default="!", description="Prefix that marks a message as a command")
    prefixless_commands: bool = Field(default=False, description="Match commands by name without a prefix")

    # Authorization
    init_allow_commands: List[str] = Field(default_factory=lambda: ["help", "roll", "py", "emoji"], description="Built-ins granted to everyone when a tenant joins")
    allow_builtin_shadowing: bool = Field(default=False, description="Allow custom commands to take built-in names")

    # Sandbox
    sandbox_timeout_ms: int = Field(default=3000, gt=0)
    sandbox_max_memory_mb: int = Field(default=128, ge=32)
    sandbox_max_output_chars: int = Field(default=1900, gt=0)
    sandbox_pool_size: int = Field(default=4, ge=1)
    sandbox_per_tenant_concurrency: int = Field(default=1, ge=1)
    sandbox_python_path: Optional[str] = None

    # Emoji statistics
    emoji_autosave_interval_seconds: float = Field(default=300.0, gt=0)
    emoji_top_limit: int = Field(default=10, ge=1)

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    log_to_file: bool = False
    log_file: Optional[str] = None
    log_folder: Optional[str] = None

    @field_validator("command_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        """Reject prefixes that contain whitespace.

        Args:
            value: Configured prefix.

        Returns:
            str: The prefix unchanged.

        Raises:
            ValueError: If the prefix contains whitespace.
        """
        if any(ch.isspace() for ch in value):
            raise ValueError("command_prefix must not contain whitespace")
        return value

    @field_validator("init_allow_commands")
    @classmethod
    def _normalize_init_allow(cls, value: List[str]) -> List[str]:
        """Strip and de-duplicate command names, keeping order."""
        seen: List[str] = []
        for name in value:
            cleaned = str(name).strip()
            if cleaned and cleaned not in seen:
                seen.append(cleaned)
        return seen

    def script_limits(self) -> ScriptLimits:
        """Default limits for sandboxed scripts.

        Returns:
            ScriptLimits: Limits built from the sandbox settings.
        """
        return ScriptLimits(
            timeout_ms=self.sandbox_timeout_ms,
            max_memory_mb=self.sandbox_max_memory_mb,
            max_output_chars=self.sandbox_max_output_chars,
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: The process-wide settings.
    """
    return Settings()
