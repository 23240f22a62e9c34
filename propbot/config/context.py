"""
Intent detection and context reduction configuration.
"""

from dataclasses import dataclass

from .base import BaseConfig


@dataclass
class ContextConfig(BaseConfig):
    """
    Configuration for the intent classifier and the context filter.

    Attributes:
        confidence_floor: Intents scoring below this fall back to "general"
        min_context_tokens: Filtered payloads estimated below this trigger the safe rebuild
        chars_per_token: Token estimate heuristic

        faq_min_relevant: Fewer keyword-matching FAQs than this triggers a backfill
        faq_backfill: How many non-matching FAQs a backfill may add
        faq_cap: Maximum FAQs kept for a specific intent

        general_row_limit: Rows per table kept for the "general" intent
        safe_row_limit: Rows per table kept by the safe rebuild
        safe_faq_limit: FAQs kept by the safe rebuild
    """
    confidence_floor: float = 0.05  # was 0.10, too many questions fell back to general
    min_context_tokens: int = 200
    chars_per_token: int = 4

    # FAQ relevance filtering
    faq_min_relevant: int = 3
    faq_backfill: int = 5
    faq_cap: int = 8

    # Row caps
    general_row_limit: int = 3
    safe_row_limit: int = 8
    safe_faq_limit: int = 10
