"""
Cache configuration for propbot.
"""

from dataclasses import dataclass

from .base import BaseConfig


@dataclass
class CacheConfig(BaseConfig):
    """
    Configuration for the three-tier response cache.

    Attributes:
        enabled: Enable caching
        exact_ttl: TTL for L1 exact-match entries (seconds)
        semantic_ttl: TTL for L2 similarity entries (seconds)
        similarity_threshold: L2 hits need a cosine similarity strictly above this
        sweep_interval: Seconds between background sweeps of L1/L2
        max_question_length: Normalized questions are cut to this many chars
        min_word_length: Words shorter than this are left out of L2 embeddings
        semantic_same_firm_only: When a firm is given, only compare against that firm's entries
        seed_precomputed: Load the canned L3 answers on construction
    """
    enabled: bool = True

    # TTL settings (seconds)
    exact_ttl: int = 600  # 10 minutes
    semantic_ttl: int = 1800  # 30 minutes

    # Semantic cache
    similarity_threshold: float = 0.75
    semantic_same_firm_only: bool = True

    # Housekeeping
    sweep_interval: int = 300  # 5 minutes
    max_question_length: int = 200
    min_word_length: int = 4

    # Precomputed cache
    seed_precomputed: bool = True
