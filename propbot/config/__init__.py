"""
Settings for propbot, one dataclass per section:
- CacheConfig: Response cache tiers
- ContextConfig: Intent detection and context reduction
- LLMConfig: Completion service settings
- BotConfig: Telegram transport settings

Usage:
    from propbot.config import load_settings

    settings = load_settings("propbot.yaml")
    cache = ResponseCache(settings.cache)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .base import BaseConfig
from .cache import CacheConfig
from .context import ContextConfig
from .llm import LLMConfig
from .bot import BotConfig

# Repository-relative locations for data and logs
PROJECT_ROOT = Path(__file__).parent.parent.parent
DATA_DIR = PROJECT_ROOT / "data"
OUTPUTS_DIR = PROJECT_ROOT / "outputs"

# Environment prefixes, e.g. PROPBOT_CACHE_EXACT_TTL=120
ENV_PREFIXES = {
    'cache': "PROPBOT_CACHE_",
    'context': "PROPBOT_CONTEXT_",
    'llm': "PROPBOT_LLM_",
    'bot': "PROPBOT_BOT_",
}


@dataclass
class Settings:
    """Bundle of every config section."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    bot: BotConfig = field(default_factory=BotConfig)


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Build settings from an optional YAML file, then apply environment overrides.

    The YAML file has one top-level section per config class
    (cache, context, llm, bot); missing sections keep their defaults.
    """
    sections = {
        'cache': CacheConfig,
        'context': ContextConfig,
        'llm': LLMConfig,
        'bot': BotConfig,
    }

    loaded = {}
    for name, config_cls in sections.items():
        config = config_cls.from_yaml(path, section=name) if path else config_cls()
        loaded[name] = config.with_env(ENV_PREFIXES[name])

    return Settings(**loaded)


__all__ = [
    'BaseConfig',
    'CacheConfig',
    'ContextConfig',
    'LLMConfig',
    'BotConfig',
    'Settings',
    'load_settings',
    'ENV_PREFIXES',
    'PROJECT_ROOT',
    'DATA_DIR',
    'OUTPUTS_DIR',
]
