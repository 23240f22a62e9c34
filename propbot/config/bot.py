"""
Telegram bot configuration.
"""

from dataclasses import dataclass, field
from typing import Optional
import os

from .base import BaseConfig


@dataclass
class BotConfig(BaseConfig):
    """
    Attributes:
        telegram_token: Bot token from BotFather
        database_path: SQLite file with firm data
        seed_data_path: YAML file loaded into an empty database on startup
        log_level: Root log level
    """
    telegram_token: Optional[str] = field(
        default_factory=lambda: os.getenv("TELEGRAM_BOT_TOKEN")
    )
    database_path: str = "data/propfirms.db"
    seed_data_path: Optional[str] = "data/firm_data.yaml"
    log_level: str = "INFO"
