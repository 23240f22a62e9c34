"""
Response caching for propbot.

Main components:
- ResponseCache: L1 exact / L2 semantic / L3 precomputed tiers
- CacheEntry, CacheHit: stored and returned values
- normalize_question, make_cache_key, build_embedding, cosine_similarity: key and similarity helpers
"""

from ..config.cache import CacheConfig
from .engine import (
    ResponseCache,
    CacheEntry,
    CacheHit,
    CacheMetrics,
    CacheTier,
    TierStore,
    normalize_question,
    make_cache_key,
    build_embedding,
    cosine_similarity,
)
from .precomputed import COMMON_PATTERNS, PRECOMPUTED_QUERIES, match_pattern


__all__ = [
    'ResponseCache',
    'CacheConfig',
    'CacheEntry',
    'CacheHit',
    'CacheMetrics',
    'CacheTier',
    'TierStore',
    'normalize_question',
    'make_cache_key',
    'build_embedding',
    'cosine_similarity',
    'COMMON_PATTERNS',
    'PRECOMPUTED_QUERIES',
    'match_pattern',
]
