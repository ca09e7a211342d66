"""Tests for the API client and the comps session."""

import pytest
from pathlib import Path
from unittest.mock import Mock
import tempfile

import requests

from research_aid.client import ComparablesSession, CompsLoad, ResearchClient
from research_aid.entities import CompsRow, Stock, WorkingSet
from research_aid.quotes import QuoteResult
from research_aid.storage import LocalStorage
from research_aid.workspace import Workspace


def make_response(status_code=200, payload=None):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.content = b"{}" if payload is not None else b""
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error")
    return response


class TestResearchClient:
    """Test ResearchClient against a mocked session."""

    def test_get_quote(self):
        session = Mock()
        session.get.return_value = make_response(200, {
            "stock": {"ticker": "AAPL", "name": "Apple Inc.", "price": 189.5, "market_cap": 2920},
            "comps_row": {"ticker": "AAPL", "name": "Apple Inc.", "pe_ratio": 30.2},
            "live": True,
        })
        client = ResearchClient(base_url="http://api.test/", session=session)

        result = client.get_quote("aapl")

        session.get.assert_called_once_with("http://api.test/api/quote/AAPL", timeout=10)
        assert result.live is True
        assert result.stock.price == 189.5
        assert result.comps_row.pe_ratio == 30.2

    def test_get_quote_without_comps_row(self):
        session = Mock()
        session.get.return_value = make_response(200, {
            "stock": {"ticker": "JPM", "name": "JPMorgan Chase"}, "comps_row": None, "live": False
        })
        result = ResearchClient(base_url="http://api.test", session=session).get_quote("JPM")
        assert result.comps_row is None
        assert result.live is False

    def test_not_found_raises_value_error(self):
        session = Mock()
        session.get.return_value = make_response(404, {"detail": 'Ticker "ZZZZ" not found.'})
        client = ResearchClient(base_url="http://api.test", session=session)

        with pytest.raises(ValueError, match='Ticker "ZZZZ" not found'):
            client.get_quote("ZZZZ")

    def test_server_error_raises(self):
        session = Mock()
        session.get.return_value = make_response(500, {"detail": "boom"})
        client = ResearchClient(base_url="http://api.test", session=session)

        with pytest.raises(requests.HTTPError):
            client.get_quote("AAPL")

    def test_network_error_wrapped(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("refused")
        client = ResearchClient(base_url="http://api.test", session=session)

        with pytest.raises(requests.RequestException, match="Request to http://api.test/api/quote/AAPL failed"):
            client.get_quote("AAPL")

    def test_get_universe(self):
        session = Mock()
        session.get.return_value = make_response(200, {
            "stocks": [{"ticker": "AAPL"}, {"ticker": "MSFT"}], "live": False, "total": 2
        })
        result = ResearchClient(base_url="http://api.test", session=session).get_universe()
        assert [s.ticker for s in result.stocks] == ["AAPL", "MSFT"]
        assert result.live is False
        assert result.total == 2

    def test_default_session_retries(self):
        client = ResearchClient(base_url="http://api.test")
        adapter = client._session.get_adapter("http://api.test")
        assert adapter.max_retries.total == 3
        assert 503 in adapter.max_retries.status_forcelist


class FakeClient:
    """Serves canned quote results; unknown tickers raise like the real client."""

    def __init__(self, rows, prices=None, failing=()):
        self._rows = {r.ticker: r for r in rows}
        self._prices = prices or {}
        self._failing = set(failing)
        self.calls = []

    def get_quote(self, ticker):
        self.calls.append(ticker)
        if ticker in self._failing:
            raise requests.ConnectionError("timeout")
        if ticker not in self._rows:
            raise ValueError(f'Ticker "{ticker}" not found.')
        stock = Stock(ticker=ticker, price=self._prices.get(ticker, 0.0), market_cap=10)
        return QuoteResult(ticker=ticker, stock=stock, comps_row=self._rows[ticker], live=True)


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Workspace(LocalStorage(Path(tmpdir)))


@pytest.fixture
def rows():
    return [
        CompsRow(ticker="ANCH", name="Anchor", pe_ratio=40, ev_ebitda=20),
        CompsRow(ticker="P1", name="Peer One", pe_ratio=10, ev_ebitda=10),
        CompsRow(ticker="P2", name="Peer Two", pe_ratio=20, ev_ebitda=30),
        CompsRow(ticker="P3", name="Peer Three", pe_ratio=20, ev_ebitda=20),
        CompsRow(ticker="P4", name="Peer Four", pe_ratio=30, ev_ebitda=25),
    ]


class TestComparablesSession:
    """Test loading, staleness and saving of the comps table."""

    def test_nothing_loaded_without_working_set(self, workspace, rows):
        session = ComparablesSession(FakeClient(rows), workspace)
        assert session.refresh() is None
        assert session.rows() == []
        assert session.valuation() is None

    def test_refresh_loads_anchor_first(self, workspace, rows):
        """Test that all rows load and the anchor leads regardless of completion order."""
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "P2", "P3", "P4"]))
        session = ComparablesSession(FakeClient(rows, prices={"ANCH": 100.0}), workspace)

        load = session.refresh()

        assert load.missing == []
        assert load.anchor_price == 100.0
        assert [r.ticker for r in session.rows()] == ["ANCH", "P1", "P2", "P3", "P4"]
        assert session.loaded

    def test_failed_rows_dropped(self, workspace, rows):
        """Test that failed and unknown tickers are left out of the table."""
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "NOPE", "P2"]))
        session = ComparablesSession(FakeClient(rows, failing={"P2"}), workspace)

        load = session.refresh()

        assert [r.ticker for r in load.rows] == ["ANCH", "P1"]
        assert sorted(load.missing) == ["NOPE", "P2"]

    def test_stale_load_discarded(self, workspace, rows):
        """Test that a load for a superseded working set is not applied."""
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        stale = session.fetch(workspace.working_set)

        workspace.add_comp("P2")

        assert session.apply(stale) is False
        assert not session.loaded

    def test_apply_matching_load(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        load = CompsLoad(working_set=WorkingSet("ANCH", ["P1"]), rows=rows[:2])
        assert session.apply(load) is True
        assert len(session.rows()) == 2

    def test_valuation_uses_fetched_price(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "P2", "P3", "P4"]))
        session = ComparablesSession(FakeClient(rows, prices={"ANCH": 100.0}), workspace)
        session.refresh()

        pe = session.valuation().get("pe_ratio")
        assert pe.premium_pct == pytest.approx(100.0)
        assert pe.implied_price == pytest.approx(50.0)

        assert session.valuation(current_price=200.0).get("pe_ratio").implied_price == pytest.approx(100.0)

    def test_overrides_flow_into_rows_and_valuation(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "P2", "P3", "P4"]))
        session = ComparablesSession(FakeClient(rows, prices={"ANCH": 100.0}), workspace)
        session.refresh()

        workspace.set_override("ANCH", "pe_ratio", 20)

        assert session.rows()[0].pe_ratio == 20
        assert session.valuation().get("pe_ratio").premium_pct == pytest.approx(0.0)
        assert '"Anchor",0.0,0.0,0.0,0.0,20.0,20.0,0.0' in session.to_csv()

    def test_save_snapshots_effective_rows(self, workspace, rows):
        """Test that saving stores the overridden table under a fresh id."""
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "P2"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        session.refresh()
        workspace.set_override("P1", "pe_ratio", 12)

        saved = session.save("  Anchor vs peers ")

        assert saved.name == "Anchor vs peers"
        assert [r.ticker for r in saved.comps_snapshot] == ["ANCH", "P1", "P2"]
        assert saved.comps_snapshot[1].pe_ratio == 12
        assert workspace.research_sets[0].id == saved.id

    def test_save_requires_loaded_table(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        with pytest.raises(ValueError, match="not loaded"):
            session.save("x")

    def test_save_requires_name(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        session.refresh()
        with pytest.raises(ValueError, match="name cannot be empty"):
            session.save("   ")

    def test_table_goes_stale_when_anchor_changes(self, workspace, rows):
        """Test that a loaded table is not served or saved for a different working set."""
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows, prices={"ANCH": 100.0}), workspace)
        session.refresh()
        assert [r.ticker for r in session.rows()] == ["ANCH", "P1"]

        workspace.save_working_set(WorkingSet("P3", ["P4"]))

        assert not session.loaded
        assert session.rows() == []
        assert session.valuation() is None
        assert session.to_csv().count("\n") == 0
        with pytest.raises(ValueError, match="not loaded for the current working set"):
            session.save("Wrong anchor")
        assert workspace.research_sets == []

    def test_table_goes_stale_when_peer_added(self, workspace, rows):
        workspace.save_working_set(WorkingSet("ANCH", ["P1"]))
        session = ComparablesSession(FakeClient(rows), workspace)
        session.refresh()

        workspace.add_comp("P2")
        assert session.rows() == []

        session.refresh()
        assert [r.ticker for r in session.rows()] == ["ANCH", "P1", "P2"]

    def test_malformed_quote_drops_only_that_row(self, workspace, rows):
        """Test that an unexpected error for one ticker leaves the rest of the batch intact."""
        client = FakeClient(rows)
        real_get_quote = client.get_quote

        def get_quote(ticker):
            if ticker == "P2":
                raise KeyError("stock")
            return real_get_quote(ticker)

        client.get_quote = get_quote
        workspace.save_working_set(WorkingSet("ANCH", ["P1", "P2"]))
        load = ComparablesSession(client, workspace).refresh()

        assert [r.ticker for r in load.rows] == ["ANCH", "P1"]
        assert load.missing == ["P2"]
