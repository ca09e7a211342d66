"""Stock screener: filtering and sorting over a universe of stocks."""

import functools
import locale
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List

from research_aid.entities import Stock

# Market-cap buckets in billions USD
MARKET_CAP_BUCKETS: Dict[str, Callable[[float], bool]] = {
    'all': lambda cap: True,
    'mega': lambda cap: cap > 200,
    'large': lambda cap: 10 <= cap <= 200,
    'mid': lambda cap: 2 <= cap < 10,
    'small': lambda cap: 0 < cap < 2,
}

SORT_KEYS = ('ticker', 'price', 'change_1d', 'market_cap', 'pe_ratio', 'pb_ratio')
STRING_SORT_KEYS = {'ticker'}


@dataclass(frozen=True)
class ScreenFilters:
    """
    Screener filter specification.

    Representation Invariants:
    - market_cap is a key of MARKET_CAP_BUCKETS
    - sort_by is one of SORT_KEYS
    - sort_dir is "asc" or "desc"
    """

    search: str = ""
    sector: str = "all"
    market_cap: str = "all"
    sort_by: str = "market_cap"
    sort_dir: str = "desc"
    show_incomplete: bool = False

    def __post_init__(self) -> None:
        if self.market_cap not in MARKET_CAP_BUCKETS:
            raise ValueError(f"Unknown market cap bucket: {self.market_cap}")
        if self.sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {self.sort_by}")
        if self.sort_dir not in ("asc", "desc"):
            raise ValueError(f"Sort direction must be 'asc' or 'desc', got: {self.sort_dir}")


def _compare_strings(a: str, b: str) -> int:
    """
    Locale-aware three-way string comparison.

    Collation follows the process LC_COLLATE. Python starts in the C locale,
    which orders by code point, unless the host application calls
    locale.setlocale.
    """
    ka, kb = locale.strxfrm(a), locale.strxfrm(b)
    return (ka > kb) - (ka < kb)


def _comparator(sort_by: str, descending: bool) -> Callable[[Stock, Stock], int]:
    sign = -1 if descending else 1

    if sort_by in STRING_SORT_KEYS:
        def compare(a: Stock, b: Stock) -> int:
            return sign * _compare_strings(getattr(a, sort_by), getattr(b, sort_by))
    else:
        def compare(a: Stock, b: Stock) -> int:
            av, bv = getattr(a, sort_by), getattr(b, sort_by)
            return sign * ((av > bv) - (av < bv))

    return compare


def apply_filters(
    stocks: Iterable[Stock],
    filters: ScreenFilters,
    watchlist: Iterable[str]
) -> List[Stock]:
    """
    Filter and sort stocks for display.

    Preconditions:
    - filters is a valid ScreenFilters

    Postconditions:
    - Returns new Stock objects; inputs are not mutated
    - is_watchlisted reflects membership in watchlist, not the stored flag
    - Incomplete rows (zero price or market cap) are dropped unless show_incomplete
    - Search, sector and market-cap filters are applied conjunctively
    - Order follows sort_by/sort_dir; ties keep input order
    - Ticker ordering uses the process collation locale (code point
      order under the default C locale)

    Args:
        stocks: Stocks to screen
        filters: Filter and sort specification
        watchlist: Watchlisted tickers

    Returns:
        Filtered, sorted list of stocks
    """
    watched = {t.strip().upper() for t in watchlist}
    result = [replace(s, is_watchlisted=s.ticker in watched) for s in stocks]

    if not filters.show_incomplete:
        result = [s for s in result if s.is_complete]

    query = filters.search.strip().lower()
    if query:
        result = [
            s for s in result
            if query in s.ticker.lower() or query in s.name.lower()
        ]

    if filters.sector != "all":
        result = [s for s in result if s.sector == filters.sector]

    in_bucket = MARKET_CAP_BUCKETS[filters.market_cap]
    result = [s for s in result if in_bucket(s.market_cap)]

    compare = _comparator(filters.sort_by, filters.sort_dir == "desc")
    result.sort(key=functools.cmp_to_key(compare))

    return result


def complete_count(stocks: Iterable[Stock]) -> int:
    """Number of stocks with both a price and a market cap."""
    return sum(1 for s in stocks if s.is_complete)
