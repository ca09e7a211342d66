"""Quote lookups against Yahoo Finance with local fallback."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import yfinance as yf

from research_aid.cache import QuoteCache
from research_aid.entities import CompsRow, Stock, StockUniverse
from research_aid.normalize import normalize_quote, normalize_summary

logger = logging.getLogger("research_aid.quotes")

UNIVERSE_CACHE_KEY = "universe"


class QuoteProviderError(Exception):
    """The upstream quote provider could not return usable data."""


def _chunk(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _has_quote_data(info: Optional[Dict[str, Any]]) -> bool:
    """yfinance returns a near-empty dict instead of raising for unknown symbols."""
    if not info:
        return False
    return any(info.get(key) is not None for key in ('regularMarketPrice', 'shortName', 'longName'))


def _read_info(handle: Any) -> Optional[Dict[str, Any]]:
    return handle.info


class YahooQuoteProvider:
    """
    Reads raw quote records from Yahoo Finance via yfinance.

    Records are returned unmodified; unit conversion happens in
    research_aid.normalize.
    """

    # Yahoo handles ~200 symbols per request safely
    BATCH_SIZE = 200
    # Concurrent per-symbol reads within a batch
    MAX_WORKERS = 8

    def fetch_summary(self, ticker: str) -> Dict[str, Any]:
        """
        Fetch the detailed summary record for one ticker.

        Raises:
            QuoteProviderError: If the call fails or returns no quote data
        """
        try:
            info = yf.Ticker(ticker).info
        except Exception as e:
            raise QuoteProviderError(f"Summary lookup failed for {ticker}: {e}") from e

        if not _has_quote_data(info):
            raise QuoteProviderError(f"No summary data returned for {ticker}")
        return dict(info)

    def fetch_quotes(self, tickers: List[str]) -> Dict[str, Dict[str, Any]]:
        """
        Fetch quote records for many tickers.

        Symbols are requested in batches of BATCH_SIZE; within a batch each
        symbol's record is read on a thread pool. Individual symbols that fail
        are omitted from the result, which keeps request order.

        Raises:
            QuoteProviderError: If no symbol at all could be fetched
        """
        quotes: Dict[str, Dict[str, Any]] = {}

        for batch in _chunk(tickers, self.BATCH_SIZE):
            try:
                handles = yf.Tickers(" ".join(batch)).tickers
            except Exception as e:
                logger.warning(f"Quote batch of {len(batch)} symbols failed: {e}")
                continue

            fetched: Dict[str, Dict[str, Any]] = {}
            with ThreadPoolExecutor(max_workers=self.MAX_WORKERS) as executor:
                futures = {
                    executor.submit(_read_info, handles[symbol]): symbol
                    for symbol in batch if handles.get(symbol) is not None
                }
                for future in as_completed(futures):
                    symbol = futures[future]
                    try:
                        info = future.result()
                    except Exception as e:
                        logger.warning(f"Quote for {symbol} failed: {e}")
                        continue
                    if _has_quote_data(info):
                        fetched[symbol] = dict(info)

            # Keep request order
            quotes.update((s, fetched[s]) for s in batch if s in fetched)

        if tickers and not quotes:
            raise QuoteProviderError(f"No quotes returned for {len(tickers)} symbols")
        return quotes


@dataclass
class QuoteResult:
    """Result of a single-ticker lookup."""

    ticker: str
    stock: Optional[Stock]
    comps_row: Optional[CompsRow]
    live: bool


@dataclass
class UniverseQuotes:
    """Result of the batch lookup over the fixed universe."""

    stocks: List[Stock] = field(default_factory=list)
    live: bool = False

    @property
    def total(self) -> int:
        return len(self.stocks)


class QuoteService:
    """
    Serves normalized quotes, falling back to local data when the provider fails.

    Representation Invariants:
    - universe is loaded and immutable for the service's lifetime
    - cache holds at most one UniverseQuotes under UNIVERSE_CACHE_KEY
    """

    def __init__(
        self,
        universe: StockUniverse,
        provider: Optional[YahooQuoteProvider] = None,
        cache: Optional[QuoteCache] = None,
        cache_ttl: float = 300
    ) -> None:
        self._universe = universe
        self._provider = provider or YahooQuoteProvider()
        self._cache = cache or QuoteCache(cache_ttl)

    @property
    def universe(self) -> StockUniverse:
        return self._universe

    def lookup(self, ticker: str) -> QuoteResult:
        """
        Look up one ticker.

        Preconditions:
        - ticker is a non-empty symbol

        Postconditions:
        - live=True with both entities populated when the provider answers
        - live=False with whatever local fallback exists when it does not
        - Raises ValueError when neither the provider nor local data knows the ticker

        Args:
            ticker: Ticker symbol (case-insensitive)

        Returns:
            QuoteResult
        """
        symbol = ticker.strip().upper()
        if not symbol:
            raise ValueError("Ticker cannot be empty")

        entry = self._universe.get_entry(symbol)

        try:
            raw = self._provider.fetch_summary(symbol)
            stock, comps_row = normalize_summary(raw, symbol, entry)
            return QuoteResult(ticker=symbol, stock=stock, comps_row=comps_row, live=True)
        except Exception as e:
            logger.error(f"Quote summary failed for {symbol}: {e}")

        fallback_comps = self._universe.get_fallback_comps(symbol)
        if entry is None and fallback_comps is None:
            raise ValueError(f'Ticker "{symbol}" not found. Check the symbol and try again.')

        return QuoteResult(
            ticker=symbol,
            stock=entry.to_stock() if entry else None,
            comps_row=fallback_comps,
            live=False
        )

    def lookup_universe(self) -> UniverseQuotes:
        """
        Quote every universe member, served from cache within the TTL window.

        Members without a live quote are zero-filled shells. If the provider
        fails entirely, every member is a shell and live=False.
        """
        cached = self._cache.get(UNIVERSE_CACHE_KEY)
        if cached is not None:
            return cached

        tickers = self._universe.get_all_tickers()
        try:
            raw_quotes = self._provider.fetch_quotes(tickers)
        except Exception as e:
            logger.error(f"Batch quote failed: {e}")
            result = UniverseQuotes(stocks=self._universe.shell_stocks(), live=False)
        else:
            stocks = [
                normalize_quote(raw_quotes.get(t), self._universe.get_entry(t))
                for t in tickers
            ]
            result = UniverseQuotes(stocks=stocks, live=True)
            logger.info(f"Refreshed universe quotes: {len(raw_quotes)}/{len(tickers)} live")

        self._cache.put(UNIVERSE_CACHE_KEY, result)
        return result
