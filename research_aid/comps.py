"""Comparable-companies selection, multiple overrides and CSV export."""

from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional

from research_aid.entities import CompsRow, Stock, WorkingSet

# Same-sector peers are capped here
MAX_PEERS = 7
# If same-sector selection is short of this, fill from any sector
MIN_PEERS = 6

OVERRIDABLE_MULTIPLES = ('pe_ratio', 'ev_ebitda', 'ev_revenue')

CSV_HEADERS = [
    "Ticker", "Name", "Mkt Cap ($B)", "EV ($B)", "Revenue ($B)",
    "EBITDA ($B)", "P/E", "EV/EBITDA", "EV/Rev",
]

Overrides = Dict[str, Dict[str, float]]


def select_comps(anchor_ticker: str, pool: List[Stock]) -> WorkingSet:
    """
    Pick a peer group for an anchor by sector, then market-cap proximity.

    Preconditions:
    - anchor_ticker is present in pool

    Postconditions:
    - Up to MAX_PEERS same-sector peers, nearest market cap first
    - If fewer than MIN_PEERS were found, filled up to MIN_PEERS from the
      whole pool (any sector), again nearest market cap first
    - Zero-market-cap candidates and the anchor are never selected
    - Equal distances keep pool order

    Args:
        anchor_ticker: Ticker of the anchor stock
        pool: Candidate stocks, anchor included

    Returns:
        WorkingSet with the anchor and selected peers

    Raises:
        ValueError: If the anchor is not in the pool
    """
    anchor_ticker = anchor_ticker.strip().upper()
    anchor = next((s for s in pool if s.ticker == anchor_ticker), None)
    if anchor is None:
        raise ValueError(f"Anchor {anchor_ticker} is not in the candidate pool")

    def distance(stock: Stock) -> float:
        return abs(stock.market_cap - anchor.market_cap)

    # sorted() is stable, so ties keep pool order
    same_sector = sorted(
        (s for s in pool
         if s.ticker != anchor_ticker and s.sector == anchor.sector and s.market_cap > 0),
        key=distance
    )
    peers = same_sector[:MAX_PEERS]

    if len(peers) < MIN_PEERS:
        used = {anchor_ticker, *(s.ticker for s in peers)}
        fillers = sorted(
            (s for s in pool if s.ticker not in used and s.market_cap > 0),
            key=distance
        )
        # The pool may list a ticker twice; only the first occurrence counts
        for stock in fillers:
            if len(peers) >= MIN_PEERS:
                break
            if stock.ticker not in used:
                used.add(stock.ticker)
                peers.append(stock)

    return WorkingSet(anchor_ticker=anchor_ticker, comp_tickers=[s.ticker for s in peers])


def order_anchor_first(rows: Iterable[CompsRow], anchor_ticker: Optional[str]) -> List[CompsRow]:
    """Anchor row first, remaining rows in their existing order."""
    rows = list(rows)
    if not anchor_ticker:
        return rows
    anchor_ticker = anchor_ticker.upper()
    return (
        [r for r in rows if r.ticker == anchor_ticker]
        + [r for r in rows if r.ticker != anchor_ticker]
    )


# =============================================================================
# Overrides
# =============================================================================

def set_override(overrides: Overrides, ticker: str, multiple: str, value: float) -> Overrides:
    """
    Return a copy of overrides with one multiple set or cleared.

    A value of zero (or below) clears the override, and a ticker left with no
    overrides is dropped entirely.
    """
    if multiple not in OVERRIDABLE_MULTIPLES:
        raise ValueError(
            f"Cannot override '{multiple}'. Overridable: {', '.join(OVERRIDABLE_MULTIPLES)}"
        )
    ticker = ticker.strip().upper()

    updated = {t: dict(values) for t, values in overrides.items()}
    entry = updated.get(ticker, {})

    if value is None or value <= 0:
        entry.pop(multiple, None)
    else:
        entry[multiple] = float(value)

    if entry:
        updated[ticker] = entry
    else:
        updated.pop(ticker, None)
    return updated


def apply_overrides(rows: Iterable[CompsRow], overrides: Optional[Overrides]) -> List[CompsRow]:
    """
    Return the effective comps rows with manual overrides applied.

    Fetched values are kept where no positive override exists.
    """
    overrides = overrides or {}
    effective = []
    for row in rows:
        changes = {
            k: v for k, v in overrides.get(row.ticker, {}).items()
            if k in OVERRIDABLE_MULTIPLES and v and v > 0
        }
        effective.append(replace(row, **changes) if changes else row)
    return effective


# =============================================================================
# CSV export
# =============================================================================

def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def export_csv(rows: Iterable[CompsRow]) -> str:
    """
    Render a comps table as CSV.

    Numbers are fixed to one decimal place and the name column is always quoted.
    """
    lines = [",".join(CSV_HEADERS)]
    for r in rows:
        lines.append(",".join([
            r.ticker,
            _quote(r.name),
            f"{r.market_cap:.1f}",
            f"{r.ev:.1f}",
            f"{r.revenue:.1f}",
            f"{r.ebitda:.1f}",
            f"{r.pe_ratio:.1f}",
            f"{r.ev_ebitda:.1f}",
            f"{r.ev_revenue:.1f}",
        ]))
    return "\n".join(lines)


def csv_filename(anchor_ticker: str, on: Optional[date] = None) -> str:
    """Download filename, e.g. comps-AAPL-2024-05-01.csv."""
    on = on or date.today()
    return f"comps-{anchor_ticker.upper()}-{on.isoformat()}.csv"
