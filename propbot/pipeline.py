"""
Answer pipeline.

question -> cache (L1 -> L2 -> L3) -> hit: done
                                   -> miss: fetch firm rows -> intent + context filter
                                            -> LLM -> store in cache -> done

Only complete answers are cached. Database and LLM failures propagate as
UpstreamError subclasses; what the user sees is up to the transport.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .assistant import ResponseAssembler, build_system_prompt, build_user_prompt
from .cache import ResponseCache
from .context_filter import ContextFilter
from .data import FirmDataSource
from .errors import DataSourceError
from .firms import FIRMS, Firm
from .logger import get_logger


logger = get_logger(__name__)


@dataclass
class AnswerMetrics:
    original_tokens: int
    optimized_tokens: int
    elapsed_ms: float
    safeguard_activated: bool = False


@dataclass
class AnswerResult:
    """Answer plus the numbers the transport may want to log."""
    response_text: str
    intent_type: str
    token_reduction_percent: float
    metrics: AnswerMetrics
    cache_tier: Optional[str] = None
    firm: Optional[str] = None

    @property
    def from_cache(self) -> bool:
        return self.cache_tier is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'responseText': self.response_text,
            'intentType': self.intent_type,
            'tokenReductionPercent': self.token_reduction_percent,
            'metrics': {
                'originalTokens': self.metrics.original_tokens,
                'optimizedTokens': self.metrics.optimized_tokens,
                'elapsedMs': self.metrics.elapsed_ms,
                'safeguardActivated': self.metrics.safeguard_activated,
            },
            'cacheTier': self.cache_tier,
            'firm': self.firm,
        }


class AnswerPipeline:
    """Cache-fronted question answering for one process."""

    def __init__(
        self,
        cache: ResponseCache,
        data_source: FirmDataSource,
        assembler: ResponseAssembler,
        context_filter: Optional[ContextFilter] = None,
        firms: Dict[str, Firm] = FIRMS,
    ):
        self.cache = cache
        self.data_source = data_source
        self.assembler = assembler
        self.context_filter = context_filter or ContextFilter()
        self.firms = firms

    async def answer(self, question: str, firm: Optional[str] = None) -> AnswerResult:
        """
        Answer a question, from cache when possible.

        Args:
            question: user question
            firm: firm slug the question is about, None for all firms

        Raises:
            DataSourceError: firm data could not be fetched
            LLMError: the completion failed
        """
        start = time.perf_counter()

        hit = self.cache.get(question, firm)
        if hit is not None:
            intent = self.context_filter.classifier.detect_intent(question)
            return AnswerResult(
                response_text=hit.response,
                intent_type=intent.type.value,
                token_reduction_percent=0.0,
                metrics=AnswerMetrics(
                    original_tokens=0,
                    optimized_tokens=0,
                    elapsed_ms=(time.perf_counter() - start) * 1000,
                ),
                cache_tier=hit.tier.value,
                firm=firm,
            )

        try:
            rows = await self.data_source.fetch_rows(firm)
        except DataSourceError:
            raise
        except Exception as e:
            logger.error(f"Firm data fetch failed for {firm or 'all firms'}: {e}")
            raise DataSourceError(f"Firm data fetch failed: {e}") from e

        firm_info = self.firms.get(firm) if firm else None
        optimized = self.context_filter.optimize(
            question, rows, firm_name=firm_info.name if firm_info else None
        )

        response_text = await self.assembler.complete(
            build_system_prompt(firm_info),
            build_user_prompt(question, optimized.context_text),
        )

        self.cache.set(question, firm, response_text)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Answered in {elapsed_ms:.0f}ms: intent={optimized.intent.type.value}, "
            f"reduction={optimized.token_reduction_percent}%"
        )

        return AnswerResult(
            response_text=response_text,
            intent_type=optimized.intent.type.value,
            token_reduction_percent=optimized.token_reduction_percent,
            metrics=AnswerMetrics(
                original_tokens=optimized.metrics.original_tokens,
                optimized_tokens=optimized.metrics.optimized_tokens,
                elapsed_ms=elapsed_ms,
                safeguard_activated=optimized.metrics.safeguard_activated,
            ),
            firm=firm,
        )
