"""
Precomputed (L3) answers and the trigger patterns that select them.

A pattern matches a normalized question when any of its words appears in
it as a substring, so "cuanto cuesta" matches "cuanto vale" through "cuanto".
"""
from typing import Dict, Iterator, List, Optional


COMMON_PATTERNS: List[str] = [
    'precios', 'precio', 'costo', 'cuanto cuesta',
    'planes', 'cuentas', 'account plans',
    'reglas', 'trading rules', 'drawdown',
    'retiros', 'payout', 'profit split',
    'plataformas', 'platforms', 'metatrader',
    'comisiones', 'fees', 'spread',
    'evaluacion', 'challenge', 'funded',
    'mejor', 'comparar', 'diferencia',
    'principiante', 'beginner', 'empezar',
]


PRECOMPUTED_QUERIES: List[Dict[str, str]] = [
    {
        'pattern': 'precios',
        'firm': 'apex',
        'response': (
            '🟠 <b>APEX - Precios de Cuentas</b>\n\n'
            '💰 <b>EVALUACIÓN (Pago Único):</b>\n'
            '• $25K: $159\n• $50K: $199\n• $100K: $349\n• $300K: $949\n\n'
            '🎯 <b>Safety Net disponible</b>: Umbral de retiro reducido para cuentas grandes.\n\n'
            '📞 <b>¿Dudas?</b> Contacta: support@apextrader.com\n\n'
            '🔗 <b>Link oficial:</b> https://apextrader.com'
        ),
    },
    {
        'pattern': 'precios',
        'firm': 'bulenox',
        'response': (
            '🔵 <b>BULENOX - Precios Mensuales</b>\n\n'
            '💰 <b>OPCIÓN 1 (Trailing Drawdown):</b>\n'
            '• $25K: $145/mes\n• $50K: $175/mes\n• $100K: $275/mes\n\n'
            '💰 <b>OPCIÓN 2 (EOD Drawdown):</b>\n'
            '• $25K: $125/mes\n• $50K: $155/mes\n• $100K: $255/mes\n\n'
            '📞 <b>¿Dudas?</b> Contacta: support@bulenox.com\n\n'
            '🔗 <b>Link oficial:</b> https://bulenox.com'
        ),
    },
    {
        'pattern': 'principiante',
        'firm': 'general',
        'response': (
            '🎯 <b>Para Principiantes - Top 3:</b>\n\n'
            '1️⃣ <b>🟠 APEX</b> - Pago único, Safety Net\n'
            '2️⃣ <b>🔵 BULENOX</b> - Flexible, mensual\n'
            '3️⃣ <b>🟢 TAKEPROFIT</b> - Reglas simples\n\n'
            '💡 <b>Recomendación:</b> Empieza con cuentas pequeñas ($25K-$50K) para ganar experiencia.\n\n'
            '📚 <b>Próximo paso:</b> Estudia las reglas específicas de tu elección.'
        ),
    },
]


def matches_pattern(normalized_question: str, pattern: str) -> bool:
    """True if any word of the pattern occurs in the question."""
    return any(word in normalized_question for word in pattern.split())


def matching_patterns(normalized_question: str, patterns: Optional[List[str]] = None) -> Iterator[str]:
    """Patterns matching the question, in list order."""
    for pattern in patterns if patterns is not None else COMMON_PATTERNS:
        if matches_pattern(normalized_question, pattern):
            yield pattern


def match_pattern(normalized_question: str, patterns: Optional[List[str]] = None) -> Optional[str]:
    """First matching pattern, or None."""
    return next(matching_patterns(normalized_question, patterns), None)


def precomputed_key(pattern: str, firm: Optional[str]) -> str:
    return f"{pattern}_{firm or 'general'}"
