"""
Context Filter - shrink firm data to what the detected intent needs

Problem:
Sending every row of every table to the LLM is slow and expensive, and the
model answers worse when the prompt is full of unrelated data.

Solution:
1. Detect the intent of the question (pricing, payout, drawdown...)
2. Keep only the tables and fields that intent lists as relevant
3. Keep only FAQs that mention the intent's keywords (with a backfill)
4. If the result is too small to ground an answer, rebuild it with a
   wider, safer selection

Example:
"cuanto cuesta la cuenta de 100k en apex?" -> pricing
account_plans rows keep id, name, evaluation_fee, activation_fee,
account_size, price_total; payout_policies and trading_rules are dropped.
"""
import json
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .config import ContextConfig
from .intent_classifier import INTENT_PROFILES, IntentClassifier, IntentProfile, IntentResult, IntentType
from .text_utils import fold
from .logger import get_logger


logger = get_logger(__name__)


@dataclass
class SourceRow:
    """A database row tagged with the table it came from."""
    table: str
    fields: Dict[str, Any]


Row = Union[SourceRow, Mapping[str, Any]]


# First matching rule wins; used only for rows that arrive untagged
TABLE_RULES: List[Tuple[str, Callable[[Mapping[str, Any]], bool]]] = [
    ('account_plans', lambda r: 'evaluation_fee' in r or 'account_size' in r),
    ('trading_rules', lambda r: 'max_drawdown' in r or 'daily_drawdown' in r),
    ('payout_policies', lambda r: 'profit_split_phase1' in r or 'payout_frequency' in r),
    ('faqs', lambda r: 'question' in r and ('answer' in r or 'answer_md' in r)),
    ('platforms', lambda r: 'platform_type' in r),
    ('discounts', lambda r: 'code' in r and 'percentage' in r),
]

# Fields kept for the "general" intent
GENERAL_FIELDS: Dict[str, List[str]] = {
    'account_plans': ['name', 'display_name', 'account_size', 'evaluation_fee', 'price_monthly',
                      'profit_target', 'drawdown_max', 'drawdown_type'],
    'trading_rules': ['rule_name', 'max_drawdown', 'daily_drawdown', 'value_text', 'value_numeric'],
    'payout_policies': ['policy_name', 'profit_split_phase2', 'payout_frequency', 'minimum_payout', 'description'],
    'faqs': ['question', 'answer', 'answer_md', 'slug'],
}

# Tables the safe rebuild keeps in full: the core tables plus any table an
# intent profile asks for
SAFE_TABLES: Tuple[str, ...] = tuple(dict.fromkeys(
    ['account_plans', 'trading_rules', 'payout_policies', 'faqs', 'platforms', 'discounts']
    + [table for profile in INTENT_PROFILES for table in profile.required_fields]
    + list(GENERAL_FIELDS)
))

TABLE_TITLES = {
    'account_plans': '📊 Planes de Cuenta',
    'trading_rules': '📋 Reglas de Trading',
    'payout_policies': '💰 Políticas de Pago',
    'faqs': '❓ Preguntas Frecuentes',
    'platforms': '🖥️ Plataformas',
    'discounts': '🎯 Descuentos Activos',
    'firm_platforms': '🔧 Plataformas Disponibles',
    'data_feeds': '📡 Feeds de Datos',
    'prop_firms': '🏢 Firmas',
    'restrictions': '🚫 Restricciones',
}


def infer_table(row: Mapping[str, Any]) -> str:
    """Guess the source table of an untagged row from the fields it has."""
    for table, matches in TABLE_RULES:
        if matches(row):
            return table
    return 'unknown'


def _unpack(row: Row) -> Tuple[str, Dict[str, Any]]:
    if isinstance(row, SourceRow):
        return row.table, dict(row.fields)
    return infer_table(row), dict(row)


def group_by_table(rows: Iterable[Row]) -> Dict[str, List[Dict[str, Any]]]:
    """Group a mixed list of rows by source table, keeping input order."""
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows or []:
        table, fields = _unpack(row)
        grouped.setdefault(table, []).append(fields)
    return grouped


def project_record(record: Mapping[str, Any], fields: List[str]) -> Dict[str, Any]:
    """Keep id plus the listed fields; None values are skipped."""
    projected = {}
    if record.get('id') is not None:
        projected['id'] = record['id']
    for name in fields:
        value = record.get(name)
        if value is not None:
            projected[name] = value
    return projected


def has_content(record: Mapping[str, Any]) -> bool:
    """A record with nothing besides its id carries no information."""
    return any(key != 'id' for key in record)


def faq_text(faq: Mapping[str, Any]) -> str:
    answer = faq.get('answer') or faq.get('answer_md') or ''
    return f"{faq.get('question') or ''} {answer}"


def serialized_size(data: Any) -> int:
    """Length of the compact JSON form, the size the LLM would see."""
    return len(json.dumps(data, ensure_ascii=False, default=str, separators=(',', ':')))


def estimate_tokens(text_or_size: Union[str, int], chars_per_token: int = 4) -> int:
    """Rough token estimate: one token per `chars_per_token` characters."""
    size = text_or_size if isinstance(text_or_size, int) else len(text_or_size or '')
    return math.ceil(size / chars_per_token)


@dataclass
class ContextMetrics:
    original_tokens: int
    optimized_tokens: int
    elapsed_ms: float
    safeguard_activated: bool = False


@dataclass
class OptimizedContext:
    """Result of ContextFilter.optimize()."""
    intent: IntentResult
    data: Dict[str, List[Dict[str, Any]]]
    context_text: str
    token_reduction_percent: float
    metrics: ContextMetrics


@dataclass
class OptimizerStats:
    total_optimizations: int = 0
    avg_token_reduction: float = 0.0
    safeguard_activations: int = 0
    intent_distribution: Dict[str, int] = field(default_factory=dict)


class ContextFilter:
    """Intent-driven reduction of firm data before the LLM call."""

    def __init__(self, config: Optional[ContextConfig] = None,
                 classifier: Optional[IntentClassifier] = None):
        """
        Args:
            config: caps and thresholds
            classifier: intent classifier (built from config when omitted)
        """
        self.config = config or ContextConfig()
        self.classifier = classifier or IntentClassifier(
            confidence_floor=self.config.confidence_floor
        )
        self.stats = OptimizerStats()

    def filter_by_intent(self, rows: Iterable[Row], intent_type) -> Dict[str, List[Dict[str, Any]]]:
        """
        Project rows onto the fields the intent needs.

        Args:
            rows: mixed rows from any tables
            intent_type: IntentType or its string value

        Returns:
            {table: [filtered records]}, tables the intent does not list are dropped
        """
        profile = self.classifier.get_profile(intent_type)
        grouped = group_by_table(rows)

        if profile.type == IntentType.GENERAL or not profile.required_fields:
            return self.filter_general(grouped)

        filtered: Dict[str, List[Dict[str, Any]]] = {}
        raw_faqs: List[Dict[str, Any]] = []

        for table, records in grouped.items():
            fields = profile.required_fields.get(table)
            if not fields:
                continue

            kept = []
            for record in records:
                projected = project_record(record, fields)
                if has_content(projected):
                    kept.append(projected)
                    if table == 'faqs':
                        raw_faqs.append(record)
            if kept:
                filtered[table] = kept

        if 'faqs' in filtered:
            filtered['faqs'] = self.filter_relevant_faqs(filtered['faqs'], profile, raw_faqs)
            if not filtered['faqs']:
                del filtered['faqs']

        return filtered

    def filter_relevant_faqs(self, faqs: List[Dict[str, Any]], profile: IntentProfile,
                             source: Optional[List[Dict[str, Any]]] = None) -> List[Dict[str, Any]]:
        """
        Keep FAQs that mention one of the intent's keywords.

        Fewer than faq_min_relevant matches are topped up with non-matching
        FAQs so the answer is never starved of FAQ content.

        Args:
            faqs: projected FAQ records
            profile: active intent profile
            source: unprojected rows aligned with faqs, used for the text match
        """
        keywords = [fold(kw) for kw in profile.keywords]
        texts = [fold(faq_text(raw)) for raw in (source or faqs)]

        relevant, others = [], []
        for faq, text in zip(faqs, texts):
            if any(kw in text for kw in keywords):
                relevant.append(faq)
            else:
                others.append(faq)

        cap = self.config.faq_cap
        if len(relevant) < self.config.faq_min_relevant:
            return (relevant + others[:self.config.faq_backfill])[:cap]
        return relevant[:cap]

    def filter_general(self, grouped: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, Any]]]:
        """Fixed useful fields per table, a few rows each, no relevance filtering."""
        filtered = {}
        limit = self.config.general_row_limit

        for table, fields in GENERAL_FIELDS.items():
            records = grouped.get(table)
            if not records:
                continue
            kept = [p for p in (project_record(r, fields) for r in records) if has_content(p)]
            if kept:
                filtered[table] = kept[:limit]

        return filtered

    def safe_filter(self, rows: Iterable[Row], intent_type=None) -> Dict[str, List[Dict[str, Any]]]:
        """
        Less aggressive rebuild used when filtering left too little content.

        Keeps every field of the rows of all known tables, with higher row
        caps and FAQs at full text. The result always contains, in full, the
        records filter_by_intent() keeps for the same intent: tables the
        intent requires are not capped, and rows are ordered so the ones the
        intent filter would pick come first.
        """
        profile = self.classifier.get_profile(intent_type)
        general = profile.type == IntentType.GENERAL or not profile.required_fields
        grouped = group_by_table(rows)
        filtered = {}

        tables = list(dict.fromkeys(list(profile.required_fields) + list(SAFE_TABLES)))
        for table in tables:
            records = grouped.get(table)
            if not records:
                continue

            selected = (GENERAL_FIELDS if general else profile.required_fields).get(table)
            if selected:
                records = self._rank_rows(table, records, selected, profile)

            if table == 'faqs':
                limit = max(self.config.safe_faq_limit, self.config.faq_cap, self.config.general_row_limit)
            elif table in profile.required_fields:
                limit = len(records)
            else:
                limit = max(self.config.safe_row_limit, self.config.general_row_limit)

            filtered[table] = [
                {k: v for k, v in record.items() if v is not None}
                for record in records[:limit]
            ]

        logger.info(
            f"Safe filtering applied: {sum(len(v) for v in filtered.values())} rows "
            f"in {len(filtered)} tables (intent: {profile.type.value})"
        )
        return filtered

    @staticmethod
    def _rank_rows(table: str, records: List[Dict[str, Any]], fields: List[str],
                   profile: IntentProfile) -> List[Dict[str, Any]]:
        """Stable sort: keyword-matching FAQs, then rows with content, then id-only rows."""
        keywords = [fold(kw) for kw in profile.keywords]

        def rank(record):
            if not has_content(project_record(record, fields)):
                return 2
            if table == 'faqs' and any(kw in fold(faq_text(record)) for kw in keywords):
                return 0
            return 1

        return sorted(records, key=rank)

    def optimize(self, question: str, rows: Iterable[Row],
                 firm_name: Optional[str] = None) -> OptimizedContext:
        """
        Detect intent, filter the rows and build the prompt body.

        Args:
            question: user question
            rows: firm data rows
            firm_name: display name for the prompt header

        Returns:
            OptimizedContext with the filtered data, prompt text and token metrics
        """
        start = time.perf_counter()
        rows = list(rows or [])
        cpt = self.config.chars_per_token

        intent = self.classifier.detect_intent(question)
        filtered = self.filter_by_intent(rows, intent.type)

        original_size = serialized_size([_unpack(r)[1] for r in rows])
        optimized_size = serialized_size(filtered)
        optimized_tokens = estimate_tokens(optimized_size, cpt)
        safeguard = False

        if optimized_tokens < self.config.min_context_tokens:
            logger.warning(
                f"Over-reduction detected ({optimized_tokens} < {self.config.min_context_tokens} tokens), "
                f"falling back to safe filtering"
            )
            safe = self.safe_filter(rows, intent.type)
            safe_size = serialized_size(safe)
            if safe_size > optimized_size:
                filtered, optimized_size = safe, safe_size
            else:
                logger.info("Safe filtering found nothing more, keeping the intent filter result")
            optimized_tokens = estimate_tokens(optimized_size, cpt)
            safeguard = True

        reduction = 0.0
        if original_size:
            reduction = round((original_size - optimized_size) / original_size * 100, 1)

        self._update_stats(intent.type, reduction, safeguard)

        profile = self.classifier.get_profile(intent.type)
        context_text = build_context_text(filtered, profile, firm_name)
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"Context optimized: intent={intent.type.value}, "
            f"{estimate_tokens(original_size, cpt)} -> {optimized_tokens} tokens ({reduction}%), "
            f"{elapsed_ms:.1f}ms"
        )

        return OptimizedContext(
            intent=intent,
            data=filtered,
            context_text=context_text,
            token_reduction_percent=reduction,
            metrics=ContextMetrics(
                original_tokens=estimate_tokens(original_size, cpt),
                optimized_tokens=optimized_tokens,
                elapsed_ms=elapsed_ms,
                safeguard_activated=safeguard,
            ),
        )

    def _update_stats(self, intent_type: IntentType, reduction: float, safeguard: bool):
        stats = self.stats
        stats.total_optimizations += 1
        stats.avg_token_reduction += (reduction - stats.avg_token_reduction) / stats.total_optimizations
        if safeguard:
            stats.safeguard_activations += 1
        key = getattr(intent_type, 'value', str(intent_type))
        stats.intent_distribution[key] = stats.intent_distribution.get(key, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        """Running optimizer statistics."""
        return {
            'total_optimizations': self.stats.total_optimizations,
            'avg_token_reduction': round(self.stats.avg_token_reduction, 1),
            'safeguard_activations': self.stats.safeguard_activations,
            'intent_distribution': dict(self.stats.intent_distribution),
        }


def build_context_text(filtered: Dict[str, List[Dict[str, Any]]], profile: IntentProfile,
                       firm_name: Optional[str] = None) -> str:
    """Render filtered tables as the data section of the user prompt."""
    label = profile.context_label
    parts = [f"Información de {firm_name or 'las firmas'} sobre {label}:\n"]

    for table, records in filtered.items():
        if not records:
            continue
        parts.append(f"{TABLE_TITLES.get(table, table)}:")
        if table == 'faqs':
            for faq in records:
                answer = faq.get('answer') or faq.get('answer_md') or ''
                parts.append(f"P: {faq.get('question', '')}\nR: {answer}\n")
        else:
            parts.append(json.dumps(records, ensure_ascii=False, indent=2, default=str) + "\n")

    parts.append(f"Responde basándote SOLO en la información proporcionada sobre {label}.")
    return "\n".join(parts)
