"""
LLM configuration for propbot.
"""

from dataclasses import dataclass, field
from typing import Optional
import os

from .base import BaseConfig


@dataclass
class LLMConfig(BaseConfig):
    """
    Configuration for the completion service behind the response assembler.

    Attributes:
        api_key: OpenAI API key
        api_base: Optional base URL (OpenAI-compatible gateways)
        model: Chat model name
        temperature: Sampling temperature
        max_tokens: Completion token limit
        timeout_seconds: Request timeout
    """
    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY")
    )
    api_base: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL")
    )
    model: str = field(
        default_factory=lambda: os.getenv("PROPBOT_MODEL", "gpt-4o-mini")
    )
    temperature: float = 0.1
    max_tokens: int = 800
    timeout_seconds: float = 60.0

    @property
    def is_configured(self) -> bool:
        """Check if an API key is available."""
        return bool(self.api_key)
