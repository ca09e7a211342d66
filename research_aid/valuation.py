"""Relative valuation against a comps table."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

import numpy as np

from research_aid.comps import Overrides, apply_overrides
from research_aid.entities import CompsRow

# Multiples the calculator values the anchor on
VALUATION_MULTIPLES = {
    'pe_ratio': 'P/E',
    'ev_ebitda': 'EV/EBITDA',
}

# Every numeric column shown in the comps table footer
MEDIAN_COLUMNS = ('market_cap', 'ev', 'revenue', 'ebitda', 'pe_ratio', 'ev_ebitda', 'ev_revenue')


def median(values: Iterable[float]) -> Optional[float]:
    """
    Median of values: middle element for odd counts, mean of the two middle
    elements for even counts.

    Returns None for an empty input.
    """
    data = [float(v) for v in values]
    if not data:
        return None
    return float(np.median(data))


@dataclass
class MultipleValuation:
    """
    The anchor's position on one multiple versus the comps median.

    premium_pct is positive when the anchor trades above its peers
    (a premium) and negative for a discount. Any field is None when it
    cannot be computed; zero is never used as a stand-in.
    """
    multiple: str
    label: str
    anchor_multiple: Optional[float] = None
    median: Optional[float] = None
    premium_pct: Optional[float] = None
    implied_price: Optional[float] = None

    @property
    def is_premium(self) -> Optional[bool]:
        if self.premium_pct is None:
            return None
        return self.premium_pct > 0


@dataclass
class RelativeValuation:
    """Relative valuation of an anchor across all valuation multiples."""
    anchor_ticker: str
    current_price: float
    row_count: int
    multiples: Dict[str, MultipleValuation]

    def get(self, multiple: str) -> MultipleValuation:
        return self.multiples[multiple]


def _value_on_multiple(
    multiple: str,
    anchor: Optional[CompsRow],
    rows: List[CompsRow],
    current_price: float
) -> MultipleValuation:
    result = MultipleValuation(multiple=multiple, label=VALUATION_MULTIPLES[multiple])

    if anchor is None:
        return result

    anchor_value = getattr(anchor, multiple)
    result.anchor_multiple = anchor_value if anchor_value > 0 else None
    # Undefined below two rows or at zero
    peer_median = median(getattr(r, multiple) for r in rows)
    result.median = peer_median if len(rows) >= 2 and peer_median else None

    if result.anchor_multiple is None or result.median is None:
        return result

    result.premium_pct = (result.anchor_multiple / result.median - 1) * 100
    if current_price and current_price > 0:
        result.implied_price = current_price * (result.median / result.anchor_multiple)
    return result


def calculate_relative_valuation(
    rows: Iterable[CompsRow],
    anchor_ticker: str,
    current_price: float,
    overrides: Optional[Overrides] = None
) -> RelativeValuation:
    """
    Value the anchor relative to the comps table.

    For each valuation multiple independently, the median is taken over all
    rows (anchor included), then:

        premium_pct   = (anchor_multiple / median - 1) * 100
        implied_price = current_price * (median / anchor_multiple)

    Preconditions:
    - rows holds at most one row per ticker

    Postconditions:
    - Overrides are applied before any arithmetic
    - premium_pct and implied_price are None when there are fewer than
      two rows, the anchor row is missing, the anchor multiple is 0,
      or the median is 0
    - median is None when there are fewer than two rows or it would be 0;
      column_medians still reports raw footer values

    Args:
        rows: Comps table, anchor row included
        anchor_ticker: Ticker of the anchor
        current_price: Anchor's current share price
        overrides: Optional manual multiple overrides (ticker -> values)

    Returns:
        RelativeValuation keyed by multiple
    """
    effective = apply_overrides(rows, overrides)
    anchor_ticker = anchor_ticker.strip().upper()
    anchor = next((r for r in effective if r.ticker == anchor_ticker), None)

    return RelativeValuation(
        anchor_ticker=anchor_ticker,
        current_price=current_price,
        row_count=len(effective),
        multiples={
            m: _value_on_multiple(m, anchor, effective, current_price)
            for m in VALUATION_MULTIPLES
        }
    )


def column_medians(rows: Iterable[CompsRow]) -> Dict[str, Optional[float]]:
    """Median of every numeric comps column (None for an empty table)."""
    rows = list(rows)
    return {col: median(getattr(r, col) for r in rows) for col in MEDIAN_COLUMNS}
