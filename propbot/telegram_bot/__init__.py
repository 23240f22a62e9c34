"""
Telegram transport for the answer pipeline.
"""

from .bot import PropBot, build_bot, resolve_firm, split_message


__all__ = [
    'PropBot',
    'build_bot',
    'resolve_firm',
    'split_message',
]
