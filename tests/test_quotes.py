"""Tests for the quote service and Yahoo provider."""

import pytest
from pathlib import Path
from unittest.mock import MagicMock, Mock, PropertyMock, patch
import tempfile
import yaml

from research_aid.cache import QuoteCache
from research_aid.entities import StockUniverse
from research_aid.quotes import (
    QuoteProviderError,
    QuoteService,
    YahooQuoteProvider,
)


APPLE_INFO = {
    "shortName": "Apple Inc.",
    "sector": "Technology",
    "regularMarketPrice": 189.5,
    "regularMarketChangePercent": 0.82,
    "marketCap": 2_920_000_000_000,
    "enterpriseValue": 2_890_000_000_000,
    "trailingPE": 30.2,
    "enterpriseToEbitda": 22.4,
}


@pytest.fixture
def universe():
    """A small universe with one fallback-only ticker."""
    config = {
        'universe': {
            'AAPL': {'name': 'Apple Inc.', 'sector': 'Technology'},
            'MSFT': {'name': 'Microsoft Corp.', 'sector': 'Technology'},
            'JPM': {'name': 'JPMorgan Chase', 'sector': 'Financial Services'},
        },
        'fallback_comps': {
            'AAPL': {'name': 'Apple Inc.', 'market_cap': 2920, 'pe_ratio': 30.2},
            'ORCL': {'name': 'Oracle Corp.', 'market_cap': 310, 'pe_ratio': 31.0},
        }
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "universe.yaml"
        path.write_text(yaml.dump(config, sort_keys=False))
        yield StockUniverse(path)


@pytest.fixture
def provider():
    """Provider double; tests set its return values."""
    return Mock(spec=YahooQuoteProvider)


class TestLookup:
    """Test single-ticker lookup with fallback."""

    def test_live_result(self, universe, provider):
        """Test that a provider answer is normalized and marked live."""
        provider.fetch_summary.return_value = dict(APPLE_INFO)
        service = QuoteService(universe, provider=provider)

        result = service.lookup("aapl")

        provider.fetch_summary.assert_called_once_with("AAPL")
        assert result.live is True
        assert result.stock.price == 189.5
        assert result.stock.market_cap == pytest.approx(2920.0)
        assert result.comps_row.ev_ebitda == 22.4

    def test_provider_failure_uses_fallback(self, universe, provider):
        """Test fallback to the universe entry and static comps row."""
        provider.fetch_summary.side_effect = QuoteProviderError("down")
        service = QuoteService(universe, provider=provider)

        result = service.lookup("AAPL")

        assert result.live is False
        assert result.stock.ticker == "AAPL"
        assert result.stock.price == 0.0
        assert result.comps_row.pe_ratio == 30.2

    def test_fallback_without_comps_row(self, universe, provider):
        provider.fetch_summary.side_effect = QuoteProviderError("down")
        result = QuoteService(universe, provider=provider).lookup("JPM")

        assert result.live is False
        assert result.stock.name == "JPMorgan Chase"
        assert result.comps_row is None

    def test_fallback_comps_only_ticker(self, universe, provider):
        provider.fetch_summary.side_effect = QuoteProviderError("down")
        result = QuoteService(universe, provider=provider).lookup("ORCL")

        assert result.stock is None
        assert result.comps_row.name == "Oracle Corp."

    def test_unknown_ticker_raises_not_found(self, universe, provider):
        """Test that a ticker unknown everywhere raises ValueError."""
        provider.fetch_summary.side_effect = QuoteProviderError("no data")
        service = QuoteService(universe, provider=provider)

        with pytest.raises(ValueError, match='Ticker "ZZZZ" not found'):
            service.lookup("zzzz")

    def test_empty_ticker_rejected(self, universe, provider):
        with pytest.raises(ValueError, match="Ticker cannot be empty"):
            QuoteService(universe, provider=provider).lookup("  ")


class TestLookupUniverse:
    """Test batch universe quotes and caching."""

    def test_live_batch(self, universe, provider):
        """Test that quoted and unquoted members are both returned in universe order."""
        provider.fetch_quotes.return_value = {"AAPL": dict(APPLE_INFO)}
        service = QuoteService(universe, provider=provider)

        result = service.lookup_universe()

        assert result.live is True
        assert [s.ticker for s in result.stocks] == ["AAPL", "MSFT", "JPM"]
        assert result.stocks[0].price == 189.5
        assert result.stocks[1].price == 0.0
        assert result.total == 3

    def test_batch_served_from_cache(self, universe, provider):
        """Test that repeated calls within the TTL reuse the first result."""
        provider.fetch_quotes.return_value = {"AAPL": dict(APPLE_INFO)}
        service = QuoteService(universe, provider=provider)

        first = service.lookup_universe()
        second = service.lookup_universe()

        assert second is first
        provider.fetch_quotes.assert_called_once()

    def test_batch_refetched_after_expiry(self, universe, provider):
        now = [0.0]
        cache = QuoteCache(ttl_seconds=60, clock=lambda: now[0])
        provider.fetch_quotes.return_value = {"AAPL": dict(APPLE_INFO)}
        service = QuoteService(universe, provider=provider, cache=cache)

        service.lookup_universe()
        now[0] = 61.0
        service.lookup_universe()

        assert provider.fetch_quotes.call_count == 2

    def test_provider_failure_returns_shells(self, universe, provider):
        """Test that a failed batch yields zero-filled shells, live=False."""
        provider.fetch_quotes.side_effect = QuoteProviderError("down")
        result = QuoteService(universe, provider=provider).lookup_universe()

        assert result.live is False
        assert result.total == 3
        assert all(s.price == 0 and s.market_cap == 0 for s in result.stocks)
        assert result.stocks[2].sector == "Financial Services"


class TestYahooQuoteProvider:
    """Test YahooQuoteProvider against a patched yfinance."""

    @patch('research_aid.quotes.yf')
    def test_fetch_summary(self, mock_yf):
        mock_yf.Ticker.return_value.info = dict(APPLE_INFO)

        info = YahooQuoteProvider().fetch_summary("AAPL")

        mock_yf.Ticker.assert_called_once_with("AAPL")
        assert info["shortName"] == "Apple Inc."

    @patch('research_aid.quotes.yf')
    def test_fetch_summary_empty_info_raises(self, mock_yf):
        """Test that yfinance's near-empty dict for bad symbols is an error."""
        mock_yf.Ticker.return_value.info = {"trailingPegRatio": None}

        with pytest.raises(QuoteProviderError, match="No summary data"):
            YahooQuoteProvider().fetch_summary("ZZZZ")

    @patch('research_aid.quotes.yf')
    def test_fetch_summary_exception_wrapped(self, mock_yf):
        mock_yf.Ticker.side_effect = RuntimeError("HTTP 401")

        with pytest.raises(QuoteProviderError, match="Summary lookup failed for AAPL"):
            YahooQuoteProvider().fetch_summary("AAPL")

    @patch('research_aid.quotes.yf')
    def test_fetch_quotes_omits_failed_symbols(self, mock_yf):
        """Test that one bad symbol does not sink the batch."""
        good = MagicMock()
        good.info = dict(APPLE_INFO)
        bad = MagicMock()
        type(bad).info = PropertyMock(side_effect=RuntimeError("boom"))
        mock_yf.Tickers.return_value.tickers = {"AAPL": good, "MSFT": bad}

        quotes = YahooQuoteProvider().fetch_quotes(["AAPL", "MSFT", "JPM"])

        assert list(quotes) == ["AAPL"]

    @patch('research_aid.quotes.yf')
    def test_fetch_quotes_keeps_request_order(self, mock_yf):
        handles = {}
        for symbol in ["MSFT", "AAPL", "JPM"]:
            handles[symbol] = MagicMock()
            handles[symbol].info = {"shortName": symbol, "regularMarketPrice": 1.0}
        mock_yf.Tickers.return_value.tickers = handles

        quotes = YahooQuoteProvider().fetch_quotes(["JPM", "MSFT", "AAPL"])

        assert list(quotes) == ["JPM", "MSFT", "AAPL"]
        assert quotes["MSFT"]["shortName"] == "MSFT"

    @patch('research_aid.quotes.yf')
    def test_fetch_quotes_nothing_returned_raises(self, mock_yf):
        mock_yf.Tickers.side_effect = RuntimeError("network down")

        with pytest.raises(QuoteProviderError, match="No quotes returned"):
            YahooQuoteProvider().fetch_quotes(["AAPL"])

    @patch('research_aid.quotes.yf')
    def test_fetch_quotes_batches(self, mock_yf):
        mock_yf.Tickers.return_value.tickers = {}
        provider = YahooQuoteProvider()
        provider.BATCH_SIZE = 2

        with pytest.raises(QuoteProviderError):
            provider.fetch_quotes(["A", "B", "C"])

        assert mock_yf.Tickers.call_count == 2
        mock_yf.Tickers.assert_any_call("A B")
        mock_yf.Tickers.assert_any_call("C")
