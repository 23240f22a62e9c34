"""
Intent detection for prop-firm questions.

Every intent profile carries a list of Spanish trigger keywords. A question
scores hits / len(keywords) against each profile; the best score wins and
anything under the confidence floor falls back to "general".

The profile table also says which database fields matter for each intent,
which is what the context filter uses to shrink the LLM payload.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .text_utils import fold
from .logger import get_logger


logger = get_logger(__name__)


class IntentType(str, Enum):
    """Intent categories, in tie-break order."""
    PRICING = "pricing"
    PLANS = "plans"
    PAYOUT = "payout"
    DRAWDOWN = "drawdown"
    RULES = "rules"
    PLATFORMS = "platforms"
    COMPARISON = "comparison"
    GENERAL = "general"


@dataclass(frozen=True)
class IntentProfile:
    """Keywords and relevant fields for one intent."""
    type: IntentType
    keywords: Tuple[str, ...]
    required_fields: Dict[str, List[str]]
    context_label: str


@dataclass
class IntentResult:
    """Outcome of detect_intent()."""
    type: IntentType
    confidence: float
    matched_keywords: List[str] = field(default_factory=list)

    @property
    def is_general(self) -> bool:
        return self.type == IntentType.GENERAL


INTENT_PROFILES: Tuple[IntentProfile, ...] = (
    IntentProfile(
        type=IntentType.PRICING,
        keywords=(
            'precio', 'costo', 'cuánto cuesta', 'cuesta', 'valor', 'pagar', 'costar',
            'cobran', 'tarifa', 'fee', 'gratis', 'gratuito', 'descuento', 'oferta',
        ),
        required_fields={
            'account_plans': ['name', 'evaluation_fee', 'activation_fee', 'account_size', 'price_total'],
            'faqs': ['question', 'answer'],
            'discounts': ['code', 'percentage', 'description', 'requirements'],
        },
        context_label="precios y costos de cuentas",
    ),
    IntentProfile(
        type=IntentType.PLANS,
        keywords=(
            'plan', 'planes', 'cuenta', 'cuentas', 'tipo', 'tipos', 'opciones',
            'tamaño', 'size', 'disponibles', 'ofrece', 'tiene',
        ),
        required_fields={
            'account_plans': ['name', 'account_size', 'max_contracts', 'profit_target', 'drawdown_type', 'evaluation_fee'],
            'faqs': ['question', 'answer'],
            'prop_firms': ['name', 'description'],
        },
        context_label="planes y tipos de cuentas disponibles",
    ),
    IntentProfile(
        type=IntentType.PAYOUT,
        keywords=(
            'retiro', 'retirar', 'pago', 'payout', 'cobrar', 'ganancia', 'profit',
            'split', 'reparto', 'porcentaje', 'cuando', 'frecuencia',
        ),
        required_fields={
            'payout_policies': ['profit_split_phase1', 'profit_split_phase2', 'minimum_payout', 'payout_frequency', 'payout_methods'],
            'faqs': ['question', 'answer'],
            'trading_rules': ['can_trade_news', 'can_hold_overnight'],
        },
        context_label="políticas de retiro y pagos",
    ),
    IntentProfile(
        type=IntentType.DRAWDOWN,
        keywords=(
            'drawdown', 'pérdida', 'límite', 'máximo', 'diario', 'trailing',
            'balance', 'riesgo', 'perder', 'loss',
        ),
        required_fields={
            'trading_rules': ['max_drawdown', 'daily_drawdown', 'trailing_drawdown', 'drawdown_type', 'balance_based_drawdown'],
            'account_plans': ['drawdown_type', 'trailing_threshold'],
            'faqs': ['question', 'answer'],
        },
        context_label="límites de pérdida y drawdown",
    ),
    IntentProfile(
        type=IntentType.RULES,
        keywords=(
            'regla', 'reglas', 'permitido', 'prohibido', 'puedo', 'restricción',
            'norma', 'requisito', 'overnight', 'news', 'noticia',
        ),
        required_fields={
            'trading_rules': ['can_trade_news', 'can_hold_overnight', 'can_trade_weekends', 'minimum_days', 'consistency_rule'],
            'faqs': ['question', 'answer'],
            'restrictions': ['country', 'restriction_type', 'notes'],
        },
        context_label="reglas de trading y restricciones",
    ),
    IntentProfile(
        type=IntentType.PLATFORMS,
        keywords=(
            'plataforma', 'platform', 'metatrader', 'ninjatrader', 'tradovate',
            'rithmic', 'cqg', 'software', 'broker',
        ),
        required_fields={
            'platforms': ['name', 'type', 'supported_markets'],
            'firm_platforms': ['is_available', 'additional_cost'],
            'data_feeds': ['name', 'type', 'cost'],
            'faqs': ['question', 'answer'],
        },
        context_label="plataformas de trading disponibles",
    ),
    IntentProfile(
        type=IntentType.COMPARISON,
        keywords=(
            'mejor', 'peor', 'comparar', 'versus', 'vs', 'diferencia', 'ventaja',
            'desventaja', 'recomendar', 'cual',
        ),
        required_fields={
            # a bit of everything, still filtered
            'account_plans': ['name', 'evaluation_fee', 'account_size', 'profit_target', 'drawdown_type'],
            'trading_rules': ['max_drawdown', 'daily_drawdown', 'can_trade_news'],
            'payout_policies': ['profit_split_phase2', 'payout_frequency'],
            'faqs': ['question', 'answer'],
        },
        context_label="comparación entre firmas",
    ),
    IntentProfile(
        type=IntentType.GENERAL,
        keywords=(),
        required_fields={},
        context_label="información general",
    ),
)

_PROFILES_BY_TYPE: Dict[IntentType, IntentProfile] = {p.type: p for p in INTENT_PROFILES}


class IntentClassifier:
    """Keyword-scoring intent classifier."""

    def __init__(self, confidence_floor: float = 0.05,
                 profiles: Tuple[IntentProfile, ...] = INTENT_PROFILES):
        """
        Args:
            confidence_floor: winners scoring below this become "general"
            profiles: profile table, iteration order breaks ties
        """
        self.confidence_floor = confidence_floor
        self.profiles = profiles
        self._by_type = {p.type: p for p in profiles}
        # Folded once so "cuánto cuesta" also matches "cuanto cuesta"
        self._folded_keywords = {
            p.type: [(kw, fold(kw)) for kw in p.keywords] for p in profiles
        }

    def detect_intent(self, question: Optional[str]) -> IntentResult:
        """
        Classify a question.

        Args:
            question: raw question text

        Returns:
            IntentResult, type is never None and confidence is in [0, 1]
        """
        text = fold(question or "")

        best = IntentResult(type=IntentType.GENERAL, confidence=0.0)

        for profile in self.profiles:
            keywords = self._folded_keywords[profile.type]
            if not keywords:
                continue

            matched = [original for original, folded in keywords if folded in text]
            confidence = len(matched) / len(keywords)

            # strictly greater: ties keep the first-declared profile
            if confidence > best.confidence:
                best = IntentResult(type=profile.type, confidence=confidence,
                                    matched_keywords=matched)

        if best.confidence < self.confidence_floor:
            best.type = IntentType.GENERAL

        logger.debug(
            f"Intent '{best.type.value}' ({best.confidence:.1%}, floor {self.confidence_floor:.0%}) "
            f"for: {(question or '')[:50]}"
        )
        return best

    def get_profile(self, intent_type) -> IntentProfile:
        """Profile for an intent type or name; unknown names map to general."""
        try:
            key = IntentType(intent_type)
        except ValueError:
            key = IntentType.GENERAL
        return self._by_type.get(key) or _PROFILES_BY_TYPE[IntentType.GENERAL]
