"""The user's persisted research workspace."""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from research_aid.comps import Overrides, apply_overrides, set_override
from research_aid.config import get_storage_dir
from research_aid.entities import (
    CompsRow,
    ResearchSet,
    Stock,
    ThesisNote,
    WorkingSet,
    parse_entity_list,
)
from research_aid.storage import (
    CUSTOM_STOCKS_KEY,
    OVERRIDES_KEY,
    RESEARCH_SETS_KEY,
    WATCHLIST_KEY,
    WORKING_SET_KEY,
    LocalStorage,
    thesis_key,
)
from research_aid.thesis import hydrate_note

logger = logging.getLogger("research_aid.workspace")


def new_research_set(
    name: str,
    working_set: WorkingSet,
    rows: List[CompsRow],
    thesis: Optional[ThesisNote] = None,
    now: Optional[Callable[[], float]] = None
) -> ResearchSet:
    """
    Snapshot a working set and its comps table as a research set.

    The id is the creation time in epoch milliseconds.
    """
    timestamp = (now or time.time)()
    return ResearchSet(
        id=str(int(timestamp * 1000)),
        name=name,
        created_at=datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
        anchor_ticker=working_set.anchor_ticker,
        comp_tickers=list(working_set.comp_tickers),
        comps_snapshot=list(rows),
        thesis=thesis,
        assumptions="",
    )


def _parse_overrides(raw) -> Overrides:
    if not isinstance(raw, dict):
        return {}
    parsed: Overrides = {}
    for ticker, values in raw.items():
        if not isinstance(values, dict):
            continue
        clean = {
            k: float(v) for k, v in values.items()
            if isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0
        }
        if clean:
            parsed[str(ticker).upper()] = clean
    return parsed


class Workspace:
    """
    Owns the watchlist, custom universe, working set, research sets, thesis
    notes and multiple overrides for one user.

    State is hydrated once from storage. Every mutation updates the
    in-memory value first and then persists it, so a failed write leaves the
    session consistent with what the user did.

    Representation Invariants:
    - watchlist holds unique uppercase tickers
    - custom_stocks holds at most one Stock per ticker
    - research_sets is ordered newest first with unique ids
    """

    def __init__(self, storage: LocalStorage) -> None:
        self._storage = storage

        watchlist = storage.get(WATCHLIST_KEY, [])
        self._watchlist: List[str] = []
        if isinstance(watchlist, list):
            for t in watchlist:
                if isinstance(t, str) and t.strip() and t.strip().upper() not in self._watchlist:
                    self._watchlist.append(t.strip().upper())

        self._custom_stocks: List[Stock] = parse_entity_list(
            Stock, storage.get(CUSTOM_STOCKS_KEY, [])
        )
        self._research_sets: List[ResearchSet] = parse_entity_list(
            ResearchSet, storage.get(RESEARCH_SETS_KEY, [])
        )
        self._overrides: Overrides = _parse_overrides(storage.get(OVERRIDES_KEY, {}))

        self._working_set: Optional[WorkingSet] = None
        raw_ws = storage.get(WORKING_SET_KEY, None)
        if isinstance(raw_ws, dict):
            try:
                self._working_set = WorkingSet.from_dict(raw_ws)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring stored working set: {e}")

    # -------------------------------------------------------------------------
    # Watchlist
    # -------------------------------------------------------------------------

    @property
    def watchlist(self) -> List[str]:
        return list(self._watchlist)

    def _persist_watchlist(self, tickers: List[str]) -> None:
        self._watchlist = tickers
        self._storage.set(WATCHLIST_KEY, tickers)

    def add_to_watchlist(self, ticker: str) -> None:
        t = ticker.strip().upper()
        if t not in self._watchlist:
            self._persist_watchlist([*self._watchlist, t])

    def remove_from_watchlist(self, ticker: str) -> None:
        t = ticker.strip().upper()
        self._persist_watchlist([x for x in self._watchlist if x != t])

    def toggle_watchlist(self, ticker: str) -> bool:
        """Flip membership; returns True if the ticker is now watchlisted."""
        t = ticker.strip().upper()
        if t in self._watchlist:
            self.remove_from_watchlist(t)
            return False
        self.add_to_watchlist(t)
        return True

    # -------------------------------------------------------------------------
    # Custom universe
    # -------------------------------------------------------------------------

    @property
    def custom_stocks(self) -> List[Stock]:
        return list(self._custom_stocks)

    def _persist_custom_stocks(self, stocks: List[Stock]) -> None:
        self._custom_stocks = stocks
        self._storage.set(CUSTOM_STOCKS_KEY, [s.to_dict() for s in stocks])

    def add_custom_stock(self, stock: Stock) -> bool:
        """Add stock unless its ticker is already present. Returns True if added."""
        if any(s.ticker == stock.ticker for s in self._custom_stocks):
            return False
        self._persist_custom_stocks([*self._custom_stocks, stock])
        return True

    def remove_custom_stock(self, ticker: str) -> None:
        t = ticker.strip().upper()
        self._persist_custom_stocks([s for s in self._custom_stocks if s.ticker != t])

    def clear_custom_stocks(self) -> None:
        self._persist_custom_stocks([])

    # -------------------------------------------------------------------------
    # Working set
    # -------------------------------------------------------------------------

    @property
    def working_set(self) -> Optional[WorkingSet]:
        return self._working_set

    def save_working_set(self, working_set: WorkingSet) -> None:
        self._working_set = working_set
        self._storage.set(WORKING_SET_KEY, working_set.to_dict())

    def add_comp(self, ticker: str) -> None:
        """Append a peer. No-op without a working set, for the anchor, or for an existing peer."""
        if self._working_set is None:
            return
        updated = self._working_set.with_comp(ticker)
        if updated != self._working_set:
            self.save_working_set(updated)

    def remove_comp(self, ticker: str) -> None:
        if self._working_set is None:
            return
        self.save_working_set(self._working_set.without_comp(ticker))

    def clear_working_set(self) -> None:
        self._working_set = None
        self._storage.remove(WORKING_SET_KEY)

    # -------------------------------------------------------------------------
    # Research sets
    # -------------------------------------------------------------------------

    @property
    def research_sets(self) -> List[ResearchSet]:
        return list(self._research_sets)

    def _persist_research_sets(self, sets: List[ResearchSet]) -> None:
        self._research_sets = sets
        self._storage.set(RESEARCH_SETS_KEY, [s.to_dict() for s in sets])

    def get_research_set(self, set_id: str) -> Optional[ResearchSet]:
        return next((s for s in self._research_sets if s.id == set_id), None)

    def save_research_set(self, research_set: ResearchSet) -> None:
        """Replace the set with the same id in place, or prepend a new one."""
        if self.get_research_set(research_set.id) is not None:
            self._persist_research_sets([
                research_set if s.id == research_set.id else s
                for s in self._research_sets
            ])
        else:
            self._persist_research_sets([research_set, *self._research_sets])

    def delete_research_set(self, set_id: str) -> None:
        self._persist_research_sets([s for s in self._research_sets if s.id != set_id])

    def update_assumptions(self, set_id: str, assumptions: str) -> ResearchSet:
        """
        Change the only mutable field of a saved research set.

        Raises:
            ValueError: If no research set has this id
        """
        existing = self.get_research_set(set_id)
        if existing is None:
            raise ValueError(f"No research set with id {set_id}")
        if existing.assumptions == assumptions:
            return existing

        updated = ResearchSet.from_dict({**existing.to_dict(), 'assumptions': assumptions})
        self.save_research_set(updated)
        return updated

    def save_current_research_set(self, name: str, rows: List[CompsRow]) -> ResearchSet:
        """
        Snapshot the current working set, its loaded comps rows and the
        anchor's thesis (if one was saved) under name.

        Raises:
            ValueError: If there is no working set or the name is blank
        """
        if self._working_set is None:
            raise ValueError("No working set to save")

        stored_thesis = self._storage.get(thesis_key(self._working_set.anchor_ticker), None)
        thesis = hydrate_note(stored_thesis, self._working_set.anchor_ticker) if stored_thesis else None

        research_set = new_research_set(name, self._working_set, rows, thesis)
        self.save_research_set(research_set)
        return research_set

    # -------------------------------------------------------------------------
    # Thesis notes
    # -------------------------------------------------------------------------

    def load_thesis(self, ticker: str) -> ThesisNote:
        """Stored note for ticker with its checklist reconciled, or an empty note."""
        return hydrate_note(self._storage.get(thesis_key(ticker), None), ticker)

    def save_thesis(self, note: ThesisNote) -> None:
        self._storage.set(thesis_key(note.ticker), note.to_dict())

    # -------------------------------------------------------------------------
    # Multiple overrides
    # -------------------------------------------------------------------------

    @property
    def overrides(self) -> Overrides:
        return {t: dict(v) for t, v in self._overrides.items()}

    def set_override(self, ticker: str, multiple: str, value: float) -> None:
        """Override one multiple for ticker; a value of 0 clears it."""
        self._overrides = set_override(self._overrides, ticker, multiple, value)
        self._storage.set(OVERRIDES_KEY, self._overrides)

    def clear_overrides(self, ticker: Optional[str] = None) -> None:
        if ticker is None:
            self._overrides = {}
        else:
            self._overrides = {
                t: v for t, v in self._overrides.items() if t != ticker.strip().upper()
            }
        self._storage.set(OVERRIDES_KEY, self._overrides)

    def effective_rows(self, rows: List[CompsRow]) -> List[CompsRow]:
        return apply_overrides(rows, self._overrides)



def open_workspace(root: Optional[Path] = None) -> Workspace:
    """Workspace backed by local storage at root (RESEARCH_AID_DATA_DIR by default)."""
    return Workspace(LocalStorage(root or get_storage_dir()))
