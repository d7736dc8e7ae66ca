"""
Application settings and configuration

Uses pydantic-settings for type-safe configuration via environment variables.
All settings use CHATDOC_ prefix (e.g., CHATDOC_ACTIVE_PROVIDER=openai).

Settings can also be loaded from a .env file in the project root.

These settings are the lowest two tiers of the configuration layering:
the compiled defaults (field defaults below) and whatever the environment
overrides. Session/global config, alias config and the document config
block are layered on top by lib.layering.
"""

from typing import Any, Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Application configuration via environment variables.

    Environment variables use CHATDOC_ prefix.

    Examples:
        CHATDOC_DEFAULT_SYSTEM_PROMPT="You are terse."
        CHATDOC_AUTO_TITLE=false
        CHATDOC_MODEL=gpt-4o
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATDOC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Parser configuration
    default_system_prompt: str = Field(
        default="You are a general assistant.",
        description="System prompt prepended when a document declares no system message",
    )

    auto_title: bool = Field(
        default=True,
        description="Ask the model to propose a title when the document title is unset",
    )

    title_placeholder: str = Field(
        default="Untitled",
        description="Header title value that counts as 'no title yet'",
    )

    # Provider configuration
    providers: List[str] = Field(
        default=["openai", "openrouter", "ollama", "google"],
        description="Provider names accepted by the UI selection manager",
    )

    # Compiled request defaults
    provider: str = Field(
        default="openrouter",
        description="Default provider for chat requests",
    )

    model: str = Field(
        default="google/gemini-2.0-flash-001",
        description="Default model for chat requests",
    )

    temperature: float = Field(
        default=0.7,
        description="Default sampling temperature",
    )

    max_tokens: int = Field(
        default=10000,
        description="Default maximum token count for a response",
    )

    expand_placeholders: bool = Field(
        default=False,
        description="Replace $FILE_CONTENTS in user messages with the document preamble",
    )

    # Block expansion configuration
    timestamp_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="strftime format used in completed block markers",
    )

    # Output configuration
    verbosity: int = Field(
        default=1,
        description="Default logging verbosity (1=normal, 2=verbose, 3=debug)",
    )

    def defaults_make(self) -> Dict[str, Any]:
        """
        Build the compiled-defaults tier of the configuration layering.

        Returns:
            Flat dict with the request keys a document config block may
            override (provider, model, temperature, max_tokens,
            expand_placeholders)

        Example:
            >>> AppSettings().defaults_make()['max_tokens']
            10000
        """
        return {
            "provider": self.provider,
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "expand_placeholders": self.expand_placeholders,
        }

    def systemPrompt_make(self, untitled: bool) -> str:
        """
        Default system prompt, with the auto-title request appended when the
        document has no title yet and auto-titling is enabled.
        """
        from ..models.markers import AUTO_TITLE_INSTRUCTION

        if self.auto_title and untitled:
            return self.default_system_prompt + AUTO_TITLE_INSTRUCTION
        return self.default_system_prompt


# Singleton instance - import this in your code
appsettings = AppSettings()
