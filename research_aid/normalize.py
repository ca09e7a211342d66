"""Map raw quote-provider records into Stock and CompsRow entities."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from research_aid.entities import CompsRow, Stock, UniverseEntry

BILLION = 1e9

# Unit conventions for a single upstream field
RAW_CURRENCY = "raw_currency"  # Dollars -> divide by 1e9
FRACTION = "fraction"  # 0.0082 -> multiply by 100
PERCENT = "percent"  # Already scaled, pass through
PLAIN = "plain"  # Ratios and prices, pass through


@dataclass(frozen=True)
class FieldSpec:
    """Where a normalized field comes from upstream and which unit it arrives in."""

    source_key: str
    convention: str


# Fields read from a single-ticker summary record (yfinance Ticker.info).
#
# Conventions are declared per field because the provider is not uniform:
# revenueGrowth and ebitdaMargins come from the financialData module as
# decimal fractions, while regularMarketChangePercent is merged in from the
# quote endpoint already scaled to percent.
SUMMARY_FIELDS: Dict[str, FieldSpec] = {
    'price': FieldSpec('regularMarketPrice', PLAIN),
    'change_1d': FieldSpec('regularMarketChangePercent', PERCENT),
    'market_cap': FieldSpec('marketCap', RAW_CURRENCY),
    'ev': FieldSpec('enterpriseValue', RAW_CURRENCY),
    'revenue': FieldSpec('totalRevenue', RAW_CURRENCY),
    'ebitda': FieldSpec('ebitda', RAW_CURRENCY),
    'pe_ratio': FieldSpec('trailingPE', PLAIN),
    'pb_ratio': FieldSpec('priceToBook', PLAIN),
    'ev_ebitda': FieldSpec('enterpriseToEbitda', PLAIN),
    'ev_revenue': FieldSpec('enterpriseToRevenue', PLAIN),
    'revenue_growth_yoy': FieldSpec('revenueGrowth', FRACTION),
    'ebitda_margin': FieldSpec('ebitdaMargins', FRACTION),
}

# Fields read from a batch quote record. Only headline quote fields are
# available here; growth, margins and EV/EBITDA stay zero.
QUOTE_FIELDS: Dict[str, FieldSpec] = {
    'price': FieldSpec('regularMarketPrice', PLAIN),
    'change_1d': FieldSpec('regularMarketChangePercent', PERCENT),
    'market_cap': FieldSpec('marketCap', RAW_CURRENCY),
    'pe_ratio': FieldSpec('trailingPE', PLAIN),
    'pb_ratio': FieldSpec('priceToBook', PLAIN),
}


def _to_float(value: Any) -> Optional[float]:
    """Parse a provider value to float, returning None for missing or non-numeric data."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    # NaN and infinities are provider artifacts, not data
    if result != result or result in (float('inf'), float('-inf')):
        return None
    return result


def read_field(raw: Dict[str, Any], spec: FieldSpec) -> float:
    """
    Read one numeric field from a raw record and convert it to system units.

    Absent or unparseable fields default to 0.

    Args:
        raw: Raw provider record
        spec: Field source and unit convention

    Returns:
        The value in system units (billions, percent, or as-is)
    """
    value = _to_float(raw.get(spec.source_key))
    if value is None:
        return 0.0

    if spec.convention == RAW_CURRENCY:
        return value / BILLION
    if spec.convention == FRACTION:
        return value * 100
    return value


def read_fields(raw: Dict[str, Any], specs: Dict[str, FieldSpec]) -> Dict[str, float]:
    """Read every field in a spec table."""
    return {name: read_field(raw, spec) for name, spec in specs.items()}


def _display_name(raw: Dict[str, Any], ticker: str, fallback: Optional[str] = None) -> str:
    for key in ('shortName', 'longName'):
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return fallback or ticker


def normalize_summary(
    raw: Dict[str, Any],
    ticker: str,
    entry: Optional[UniverseEntry] = None
) -> Tuple[Stock, CompsRow]:
    """
    Normalize a single-ticker summary record into a Stock and a CompsRow.

    Preconditions:
    - raw is a dict (possibly empty) from the provider's summary call

    Postconditions:
    - Every numeric field is populated, defaulting to 0
    - name falls back to shortName, longName, then the ticker
    - sector falls back to the provider's sector, the universe entry's, then "Unknown"

    Args:
        raw: Raw provider record
        ticker: Requested ticker symbol
        entry: Optional universe entry for sector fallback

    Returns:
        Tuple of (stock, comps_row)
    """
    symbol = ticker.strip().upper()
    values = read_fields(raw, SUMMARY_FIELDS)
    name = _display_name(raw, symbol)

    sector = raw.get('sector')
    if not isinstance(sector, str) or not sector.strip():
        sector = entry.sector if entry else "Unknown"

    stock = Stock(
        ticker=symbol,
        name=name,
        sector=sector,
        price=values['price'],
        change_1d=values['change_1d'],
        market_cap=values['market_cap'],
        pe_ratio=values['pe_ratio'],
        pb_ratio=values['pb_ratio'],
        ev_ebitda=values['ev_ebitda'],
        revenue_growth_yoy=values['revenue_growth_yoy'],
        ebitda_margin=values['ebitda_margin'],
    )

    comps_row = CompsRow(
        ticker=symbol,
        name=name,
        market_cap=values['market_cap'],
        ev=values['ev'],
        revenue=values['revenue'],
        ebitda=values['ebitda'],
        pe_ratio=values['pe_ratio'],
        ev_ebitda=values['ev_ebitda'],
        ev_revenue=values['ev_revenue'],
    )

    return stock, comps_row


def normalize_quote(raw: Optional[Dict[str, Any]], entry: UniverseEntry) -> Stock:
    """
    Normalize a batch quote record for a universe member.

    A missing record yields the entry's zero-filled shell.
    """
    if not raw:
        return entry.to_stock()

    values = read_fields(raw, QUOTE_FIELDS)
    name = raw.get('shortName')
    return Stock(
        ticker=entry.ticker,
        name=name if isinstance(name, str) and name.strip() else entry.name,
        sector=entry.sector,
        **values
    )
