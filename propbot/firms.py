"""
Supported prop-trading firms.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from .text_utils import fold


@dataclass(frozen=True)
class Firm:
    slug: str
    name: str
    color: str


FIRMS: Dict[str, Firm] = {
    'apex': Firm('apex', 'Apex Trader Funding', '🟠'),
    'bulenox': Firm('bulenox', 'Bulenox Capital', '🔵'),
    'takeprofit': Firm('takeprofit', 'TakeProfit Trader', '🟢'),
    'mff': Firm('mff', 'MyFundedFutures', '🟡'),
    'alpha': Firm('alpha', 'Alpha Futures', '🔴'),
    'tradeify': Firm('tradeify', 'Tradeify', '⚪'),
    'vision': Firm('vision', 'Vision Trade Futures', '🟣'),
}


def get_firm(slug: Optional[str]) -> Optional[Firm]:
    return FIRMS.get(slug) if slug else None


def detect_firm(question: str, firms: Dict[str, Firm] = FIRMS) -> Optional[str]:
    """Slug of the first firm named in the question (slug, full name or name without spaces)."""
    text = fold(question)

    for slug, firm in firms.items():
        name = fold(firm.name)
        if slug in text or name in text or name.replace(' ', '') in text:
            return slug

    return None
