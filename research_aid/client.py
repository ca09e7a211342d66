"""HTTP client for the research API and the comps-table session built on it."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from research_aid.comps import export_csv, order_anchor_first
from research_aid.config import get_api_url
from research_aid.entities import CompsRow, ResearchSet, Stock, WorkingSet
from research_aid.quotes import QuoteResult, UniverseQuotes
from research_aid.valuation import RelativeValuation, calculate_relative_valuation
from research_aid.workspace import Workspace

logger = logging.getLogger("research_aid.client")


class ResearchClient:
    """
    Talks to the research API over HTTP.

    Representation Invariants:
    - base_url has no trailing slash
    - session retries transient server errors
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None
    ) -> None:
        """
        Initialize client.

        Args:
            base_url: API root (defaults to RESEARCH_AID_API_URL)
            timeout: Per-request timeout in seconds
            session: Optional preconfigured session
        """
        self._base_url = (base_url or get_api_url()).rstrip("/")
        self._timeout = timeout

        if session is None:
            session = requests.Session()
            session.headers.update({"Accept": "application/json"})

            # Add retry strategy for network issues
            retry_strategy = Retry(
                total=3,
                backoff_factor=1,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET"]
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self._session = session

    def _get(self, path: str) -> requests.Response:
        url = f"{self._base_url}{path}"
        try:
            return self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            raise requests.RequestException(f"Request to {url} failed: {e}") from e

    def get_quote(self, ticker: str) -> QuoteResult:
        """
        Fetch one ticker's stock and comps row.

        Raises:
            ValueError: If the API reports the ticker as not found
            requests.RequestException: On network or other HTTP errors
        """
        symbol = ticker.strip().upper()
        response = self._get(f"/api/quote/{symbol}")

        if response.status_code == 404:
            detail = response.json().get("detail") if response.content else None
            raise ValueError(detail or f'Ticker "{symbol}" not found.')
        response.raise_for_status()

        data = response.json()
        return QuoteResult(
            ticker=symbol,
            stock=Stock.from_dict(data["stock"]) if data.get("stock") else None,
            comps_row=CompsRow.from_dict(data["comps_row"]) if data.get("comps_row") else None,
            live=bool(data.get("live"))
        )

    def get_universe(self) -> UniverseQuotes:
        """Fetch the quoted universe."""
        response = self._get("/api/quotes")
        response.raise_for_status()
        data = response.json()
        return UniverseQuotes(
            stocks=[Stock.from_dict(s) for s in data.get("stocks", [])],
            live=bool(data.get("live"))
        )


@dataclass
class CompsLoad:
    """
    The outcome of loading one working set's comps table.

    Tagged with the working set it was issued for, so a late result can be
    recognized as stale.
    """
    working_set: WorkingSet
    rows: List[CompsRow] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    anchor_price: Optional[float] = None


class ComparablesSession:
    """
    Loads and values the comps table for the workspace's current working set.

    Peer quotes for a working set are fetched together and the table is only
    exposed once every fetch has finished. A fetch that fails drops that row.
    A load whose working set no longer matches the workspace's is discarded.
    """

    def __init__(self, client: ResearchClient, workspace: Workspace, max_workers: int = 8) -> None:
        self._client = client
        self._workspace = workspace
        self._max_workers = max_workers
        self._current: Optional[CompsLoad] = None

    @property
    def loaded(self) -> bool:
        return self._active() is not None

    def _active(self) -> Optional[CompsLoad]:
        """The applied load, or None if the working set has changed since it was applied."""
        if self._current is None or self._current.working_set != self._workspace.working_set:
            return None
        return self._current

    def fetch(self, working_set: WorkingSet) -> CompsLoad:
        """
        Fetch comps rows for every ticker in working_set, anchor first.

        Blocks until all fetches complete or fail.
        """
        tickers = working_set.all_tickers
        results: Dict[str, QuoteResult] = {}

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = {executor.submit(self._client.get_quote, t): t for t in tickers}
            for future in as_completed(futures):
                ticker = futures[future]
                try:
                    results[ticker] = future.result()
                except Exception as e:
                    logger.warning(f"Comps row for {ticker} unavailable: {e}")

        load = CompsLoad(working_set=working_set)
        for ticker in tickers:
            result = results.get(ticker)
            if result is None or result.comps_row is None:
                load.missing.append(ticker)
                continue
            load.rows.append(result.comps_row)

        anchor_result = results.get(working_set.anchor_ticker)
        if anchor_result and anchor_result.stock and anchor_result.stock.price > 0:
            load.anchor_price = anchor_result.stock.price
        return load

    def apply(self, load: CompsLoad) -> bool:
        """
        Make load the current table if it still matches the working set.

        Returns:
            True if applied, False if the load was stale and discarded
        """
        current = self._workspace.working_set
        if current is None or current != load.working_set:
            logger.info(
                f"Discarding stale comps load for {load.working_set.anchor_ticker} "
                f"({len(load.rows)} rows)"
            )
            return False
        self._current = load
        return True

    def refresh(self) -> Optional[CompsLoad]:
        """Load the current working set's table. Returns None if there is no working set or the load went stale."""
        working_set = self._workspace.working_set
        if working_set is None:
            self._current = None
            return None
        load = self.fetch(working_set)
        return load if self.apply(load) else None

    def rows(self) -> List[CompsRow]:
        """Effective rows (overrides applied), anchor first. Empty until loaded or once stale."""
        load = self._active()
        if load is None:
            return []
        effective = self._workspace.effective_rows(load.rows)
        return order_anchor_first(effective, load.working_set.anchor_ticker)

    def valuation(self, current_price: Optional[float] = None) -> Optional[RelativeValuation]:
        """
        Relative valuation of the anchor.

        Uses the anchor's fetched price unless current_price is given.
        Returns None until a table is loaded, or once the working set has
        moved on from the loaded table.
        """
        load = self._active()
        if load is None:
            return None
        price = current_price if current_price is not None else (load.anchor_price or 0.0)
        return calculate_relative_valuation(
            load.rows,
            load.working_set.anchor_ticker,
            price,
            self._workspace.overrides
        )

    def to_csv(self) -> str:
        return export_csv(self.rows())

    def save(self, name: str) -> ResearchSet:
        """
        Save the loaded table as a research set.

        Raises:
            ValueError: If nothing is loaded, the table is stale, or the name is blank
        """
        if self._active() is None:
            raise ValueError("Comps table is not loaded for the current working set")
        if not name or not name.strip():
            raise ValueError("Research set name cannot be empty")
        return self._workspace.save_current_research_set(name.strip(), self.rows())
