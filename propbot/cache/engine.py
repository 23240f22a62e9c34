"""
Three-tier response cache.

Sits in front of the expensive "fetch firm data + call the LLM" path:
1. L1 exact match - md5 of normalized question + firm, short TTL
2. L2 semantic - bag-of-words cosine similarity against every live entry, longer TTL
3. L3 precomputed - pattern + firm -> canned answer, never expires

Lookups go L1 -> L2 -> L3 and stop at the first hit. Every fresh answer is
written to L1 and L2; L3 keeps the first answer seen for a pattern/firm pair.

Expiry is lazy: reads drop stale entries and a background sweep removes
the rest. clear_all() empties L1 and L2 only.

L2 is a linear scan over all entries. That keeps best-match semantics
exact and is fine at chatbot scale; a nearest-neighbour index can replace
lookup_by_similarity() without changing tier precedence.
"""

import asyncio
import hashlib
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..config import CacheConfig
from ..text_utils import fold_accents
from ..logger import get_logger
from .precomputed import (
    COMMON_PATTERNS,
    PRECOMPUTED_QUERIES,
    match_pattern,
    matching_patterns,
    precomputed_key,
)


logger = get_logger(__name__)

_PUNCTUATION_RE = re.compile(r"[¿?¡!]")
_WHITESPACE_RE = re.compile(r"\s+")


class CacheTier(str, Enum):
    EXACT = "exact"
    SEMANTIC = "semantic"
    PRECOMPUTED = "precomputed"


def normalize_question(question: Optional[str], max_length: int = 200) -> str:
    """
    Lower-case, fold accents, drop ¿?¡!, collapse whitespace and cut to max_length.

    normalize_question(normalize_question(q)) == normalize_question(q)
    """
    text = fold_accents((question or "").lower()).lower()
    text = _PUNCTUATION_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:max_length].rstrip()


def make_cache_key(normalized_question: str, firm: Optional[str] = None, namespace: str = "") -> str:
    """Content-addressed key for a normalized question and firm."""
    key_string = f"{namespace}{normalized_question}_{firm or 'general'}"
    return hashlib.md5(key_string.encode("utf-8")).hexdigest()


def build_embedding(normalized_question: str, min_word_length: int = 4) -> Dict[str, int]:
    """Term-frequency vector of the question, short words left out."""
    embedding: Dict[str, int] = {}
    for word in normalized_question.split(" "):
        if len(word) >= min_word_length:
            embedding[word] = embedding.get(word, 0) + 1
    return embedding


def cosine_similarity(a: Dict[str, int], b: Dict[str, int]) -> float:
    """Cosine similarity of two sparse term-frequency vectors."""
    if not a or not b:
        return 0.0

    vocabulary = list(set(a) | set(b))
    v1 = np.array([a.get(word, 0) for word in vocabulary], dtype=float)
    v2 = np.array([b.get(word, 0) for word in vocabulary], dtype=float)

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    return float(np.dot(v1, v2) / (norm1 * norm2))


@dataclass
class CacheEntry:
    """One cached answer."""
    key: str
    response: Any
    question: str
    firm: Optional[str]
    created_at: Optional[float]
    ttl: Optional[float]  # None = never expires
    access_count: int = 0
    embedding: Optional[Dict[str, int]] = None
    pattern: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        """Entries without a usable created_at count as expired."""
        if self.ttl is None:
            return False
        if not isinstance(self.created_at, (int, float)):
            return True
        return now - self.created_at > self.ttl


@dataclass
class CacheHit:
    """What get() returns on a hit."""
    response: Any
    tier: CacheTier
    key: str
    similarity: Optional[float] = None
    pattern: Optional[str] = None


@dataclass
class CacheMetrics:
    total_queries: int = 0
    exact_hits: int = 0
    semantic_hits: int = 0
    precomputed_hits: int = 0
    misses: int = 0
    avg_response_time_ms: float = 0.0


class TierStore:
    """
    In-memory store for one TTL tier.

    Plain dict keyed by cache key; expiry is checked on read and by sweep().
    """

    def __init__(self, name: str, ttl: Optional[float], clock: Callable[[], float]):
        self.name = name
        self.ttl = ttl
        self.clock = clock
        self.entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        """Live entry for key, or None. Stale entries are dropped."""
        entry = self.entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(self.clock()):
            del self.entries[key]
            return None

        return entry

    def put(self, entry: CacheEntry):
        self.entries[entry.key] = entry

    def delete(self, key: str):
        self.entries.pop(key, None)

    def live_entries(self) -> Iterable[CacheEntry]:
        """Yield live entries, dropping stale ones on the way."""
        now = self.clock()
        for key, entry in list(self.entries.items()):
            if entry.is_expired(now):
                del self.entries[key]
                continue
            yield entry

    def sweep(self) -> int:
        """Remove every stale entry, return how many were removed."""
        now = self.clock()
        stale = [key for key, entry in self.entries.items() if entry.is_expired(now)]
        for key in stale:
            del self.entries[key]
        return len(stale)

    def clear(self):
        self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)


class ResponseCache:
    """
    Multi-tier cache for bot answers.

    One instance per process, owned by whatever handles requests. Call
    start() inside a running event loop to get periodic sweeps and stop()
    on shutdown.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        precomputed: Optional[List[Dict[str, str]]] = None,
        patterns: Optional[List[str]] = None,
    ):
        """
        Initialize cache.

        Args:
            config: Cache configuration
            clock: Time source in seconds, used for TTLs
            precomputed: Seed answers for L3 (defaults to PRECOMPUTED_QUERIES)
            patterns: L3 trigger patterns (defaults to COMMON_PATTERNS)
        """
        self.config = config or CacheConfig()
        self.clock = clock
        self.patterns = list(patterns if patterns is not None else COMMON_PATTERNS)

        self.exact = TierStore("L1", self.config.exact_ttl, clock)
        self.semantic = TierStore("L2", self.config.semantic_ttl, clock)
        self.precomputed: Dict[str, CacheEntry] = {}

        self.metrics = CacheMetrics()
        self._started_at = clock()
        self._sweep_task: Optional[asyncio.Task] = None

        if self.config.seed_precomputed:
            self.initialize_precomputed(
                precomputed if precomputed is not None else PRECOMPUTED_QUERIES
            )

        logger.info(
            f"ResponseCache initialized: L1 ttl={self.config.exact_ttl}s, "
            f"L2 ttl={self.config.semantic_ttl}s (threshold {self.config.similarity_threshold}), "
            f"L3 entries={len(self.precomputed)}"
        )

    def normalize(self, question: Optional[str]) -> str:
        return normalize_question(question, self.config.max_question_length)

    # Lookup
    def get(self, question: str, firm: Optional[str] = None) -> Optional[CacheHit]:
        """
        Look the question up in L1, L2 and L3, in that order.

        Returns:
            CacheHit from the first tier that has an answer, else None
        """
        if not self.config.enabled:
            return None

        start = time.perf_counter()
        self.metrics.total_queries += 1

        normalized = self.normalize(question)
        key = make_cache_key(normalized, firm)

        hit = (
            self._get_exact(key)
            or self._get_semantic(normalized, firm)
            or self._get_precomputed(normalized, firm)
        )

        if hit is None:
            self.metrics.misses += 1
        elif hit.tier == CacheTier.EXACT:
            self.metrics.exact_hits += 1
        elif hit.tier == CacheTier.SEMANTIC:
            self.metrics.semantic_hits += 1
        else:
            self.metrics.precomputed_hits += 1

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._record_time(elapsed_ms)

        if hit:
            details = ""
            if hit.similarity is not None:
                details = f" similarity={hit.similarity:.2f}"
            elif hit.pattern:
                details = f" pattern='{hit.pattern}'"
            logger.info(f"Cache {hit.tier.value.upper()} HIT{details}: {(question or '')[:50]} ({elapsed_ms:.1f}ms)")
        else:
            logger.info(f"Cache MISS: {(question or '')[:50]} (firm: {firm or 'general'})")

        return hit

    def _get_exact(self, key: str) -> Optional[CacheHit]:
        entry = self.exact.get(key)
        if entry is None:
            return None
        entry.access_count += 1
        return CacheHit(response=entry.response, tier=CacheTier.EXACT, key=key)

    def _get_semantic(self, normalized: str, firm: Optional[str]) -> Optional[CacheHit]:
        embedding = build_embedding(normalized, self.config.min_word_length)
        match = self.lookup_by_similarity(embedding, firm, self.config.similarity_threshold)
        if match is None:
            return None

        entry, similarity = match
        entry.access_count += 1
        return CacheHit(
            response=entry.response,
            tier=CacheTier.SEMANTIC,
            key=entry.key,
            similarity=round(similarity, 2),
        )

    def lookup_by_similarity(
        self,
        embedding: Dict[str, int],
        firm: Optional[str],
        floor: float,
    ) -> Optional[Tuple[CacheEntry, float]]:
        """
        Best L2 candidate whose similarity is strictly above floor.

        When a firm is given (and semantic_same_firm_only is set) only that
        firm's entries are compared.
        """
        if not embedding:
            return None

        best_entry = None
        best_similarity = floor

        for entry in self.semantic.live_entries():
            if firm and self.config.semantic_same_firm_only and entry.firm != firm:
                continue

            similarity = cosine_similarity(embedding, entry.embedding or {})
            if similarity > best_similarity:
                best_similarity = similarity
                best_entry = entry

        if best_entry is None:
            return None
        return best_entry, best_similarity

    def _get_precomputed(self, normalized: str, firm: Optional[str]) -> Optional[CacheHit]:
        for pattern in matching_patterns(normalized, self.patterns):
            key = precomputed_key(pattern, firm)
            entry = self.precomputed.get(key)
            if entry is not None:
                entry.access_count += 1
                return CacheHit(
                    response=entry.response,
                    tier=CacheTier.PRECOMPUTED,
                    key=key,
                    pattern=pattern,
                )
        return None

    # Store
    def set(self, question: str, firm: Optional[str], response: Any) -> bool:
        """
        Store a fresh answer in every tier.

        Only complete answers belong here; empty responses are refused.

        Returns:
            True if the answer was stored
        """
        if not self.config.enabled:
            return False
        if response is None or (isinstance(response, str) and not response.strip()):
            logger.warning(f"Refusing to cache empty response for: {(question or '')[:50]}")
            return False

        normalized = self.normalize(question)
        now = self.clock()

        key = make_cache_key(normalized, firm)
        self.exact.put(CacheEntry(
            key=key,
            response=response,
            question=normalized,
            firm=firm,
            created_at=now,
            ttl=self.config.exact_ttl,
        ))

        semantic_key = make_cache_key(normalized, firm, namespace="semantic_")
        self.semantic.put(CacheEntry(
            key=semantic_key,
            response=response,
            question=normalized,
            firm=firm,
            created_at=now,
            ttl=self.config.semantic_ttl,
            embedding=build_embedding(normalized, self.config.min_word_length),
        ))

        stored_l3 = self.update_precomputed(normalized, firm, response)

        logger.info(
            f"Cache SET: {(question or '')[:50]} (firm: {firm or 'general'}, "
            f"layers: L1+L2{'+L3' if stored_l3 else ''})"
        )
        return True

    def update_precomputed(self, normalized: str, firm: Optional[str], response: Any) -> bool:
        """Store the answer in L3 if it matches a pattern that has no answer yet."""
        pattern = match_pattern(normalized, self.patterns)
        if pattern is None:
            return False

        key = precomputed_key(pattern, firm)
        if key in self.precomputed:
            return False

        self.precomputed[key] = CacheEntry(
            key=key,
            response=response,
            question=normalized,
            firm=firm,
            created_at=self.clock(),
            ttl=None,
            pattern=pattern,
        )
        return True

    def initialize_precomputed(self, queries: List[Dict[str, str]]):
        """Seed L3 with canned answers."""
        now = self.clock()
        for query in queries:
            firm = query.get('firm')
            firm = None if firm in (None, 'general') else firm
            key = precomputed_key(query['pattern'], firm)
            self.precomputed[key] = CacheEntry(
                key=key,
                response=query['response'],
                question=query['pattern'],
                firm=firm,
                created_at=now,
                ttl=None,
                pattern=query['pattern'],
            )

        logger.info(f"Precomputed cache initialized: {len(queries)} entries")

    # Housekeeping
    def cleanup(self) -> int:
        """Drop stale L1/L2 entries. L3 is never swept."""
        evicted = self.exact.sweep() + self.semantic.sweep()
        logger.info(
            f"Cache cleanup: {evicted} evicted, sizes L1={len(self.exact)} "
            f"L2={len(self.semantic)} L3={len(self.precomputed)}"
        )
        return evicted

    def clear_all(self):
        """Empty L1 and L2. Precomputed answers stay."""
        self.exact.clear()
        self.semantic.clear()
        logger.info("Cache cleared (except precomputed)")

    async def start(self):
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Cache sweep started (every {self.config.sweep_interval}s)")

    async def stop(self):
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Cache sweep stopped")

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                self.cleanup()
            except Exception as e:
                logger.error(f"Cache cleanup failed: {e}")

    # Metrics
    def _record_time(self, elapsed_ms: float):
        n = self.metrics.total_queries
        self.metrics.avg_response_time_ms += (elapsed_ms - self.metrics.avg_response_time_ms) / n

    def get_metrics(self) -> Dict[str, Any]:
        """Counters plus derived hit rate and tier sizes."""
        m = self.metrics
        total = m.total_queries
        hit_rate = (total - m.misses) / total if total > 0 else 0.0

        return {
            'total_queries': total,
            'exact_hits': m.exact_hits,
            'semantic_hits': m.semantic_hits,
            'precomputed_hits': m.precomputed_hits,
            'misses': m.misses,
            'hit_rate': hit_rate,
            'avg_response_time_ms': round(m.avg_response_time_ms, 2),
            'sizes': {
                'exact': len(self.exact),
                'semantic': len(self.semantic),
                'precomputed': len(self.precomputed),
            },
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            'enabled': self.config.enabled,
            'layers': 3,
            'sweep_running': self.is_running,
            'sweep_interval': self.config.sweep_interval,
            'uptime': round(self.clock() - self._started_at),
            'metrics': self.get_metrics(),
        }
