"""Core entity classes: Stock, CompsRow, WorkingSet, ResearchSet, ThesisNote, etc."""

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, List, Optional
import yaml


def _normalize_ticker(ticker: str) -> str:
    """Uppercase and strip a ticker symbol, rejecting empty values."""
    cleaned = (ticker or "").strip().upper()
    if not cleaned:
        raise ValueError("Ticker cannot be empty")
    return cleaned


def _non_negative(value: Optional[float]) -> float:
    """Coerce a multiple to a float, treating negative or missing values as unknown (0)."""
    if value is None:
        return 0.0
    value = float(value)
    return value if value > 0 else 0.0


def _known_fields(cls, data: dict) -> dict:
    """Drop keys a dataclass does not declare (older or newer stored records)."""
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Stock:
    """
    A screenable stock with headline quote and valuation fields.

    Monetary values are in billions USD; percent fields are stored
    pre-scaled (e.g., 0.82 for +0.82%).

    Representation Invariants:
    - ticker is uppercase and non-empty
    - price and market_cap are non-negative
    - pe_ratio, pb_ratio and ev_ebitda are non-negative; 0 means unknown
    """

    ticker: str
    name: str = ""
    sector: str = "Unknown"
    price: float = 0.0
    change_1d: float = 0.0  # Percent
    market_cap: float = 0.0  # $B
    pe_ratio: float = 0.0
    pb_ratio: float = 0.0
    ev_ebitda: float = 0.0
    revenue_growth_yoy: float = 0.0  # Percent
    ebitda_margin: float = 0.0  # Percent
    is_watchlisted: bool = False

    def __post_init__(self) -> None:
        """Validate representation invariants after initialization."""
        self.ticker = _normalize_ticker(self.ticker)
        self.name = (self.name or "").strip() or self.ticker
        self.sector = (self.sector or "").strip() or "Unknown"
        self.price = _non_negative(self.price)
        self.market_cap = _non_negative(self.market_cap)
        self.pe_ratio = _non_negative(self.pe_ratio)
        self.pb_ratio = _non_negative(self.pb_ratio)
        self.ev_ebitda = _non_negative(self.ev_ebitda)
        self.change_1d = float(self.change_1d or 0.0)
        self.revenue_growth_yoy = float(self.revenue_growth_yoy or 0.0)
        self.ebitda_margin = float(self.ebitda_margin or 0.0)
        self.is_watchlisted = bool(self.is_watchlisted)

    @property
    def is_complete(self) -> bool:
        """True when the stock has both a price and a market cap."""
        return self.price > 0 and self.market_cap > 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Stock":
        return cls(**_known_fields(cls, data))


@dataclass
class CompsRow:
    """
    One company's line in a comparable-companies table.

    Market cap, EV, revenue and EBITDA are in billions USD.

    Representation Invariants:
    - ticker is uppercase and non-empty
    - pe_ratio, ev_ebitda and ev_revenue are non-negative; 0 means unknown
    """

    ticker: str
    name: str = ""
    market_cap: float = 0.0
    ev: float = 0.0
    revenue: float = 0.0
    ebitda: float = 0.0
    pe_ratio: float = 0.0
    ev_ebitda: float = 0.0
    ev_revenue: float = 0.0

    def __post_init__(self) -> None:
        """Validate representation invariants after initialization."""
        self.ticker = _normalize_ticker(self.ticker)
        self.name = (self.name or "").strip() or self.ticker
        self.market_cap = float(self.market_cap or 0.0)
        self.ev = float(self.ev or 0.0)
        self.revenue = float(self.revenue or 0.0)
        self.ebitda = float(self.ebitda or 0.0)
        self.pe_ratio = _non_negative(self.pe_ratio)
        self.ev_ebitda = _non_negative(self.ev_ebitda)
        self.ev_revenue = _non_negative(self.ev_revenue)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CompsRow":
        return cls(**_known_fields(cls, data))


@dataclass
class WorkingSet:
    """
    The anchor and peers currently being assembled into a comps table.

    Representation Invariants:
    - anchor_ticker is uppercase and non-empty
    - comp_tickers contains no duplicates
    - comp_tickers never contains anchor_ticker
    """

    anchor_ticker: str
    comp_tickers: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalize tickers and enforce uniqueness."""
        self.anchor_ticker = _normalize_ticker(self.anchor_ticker)

        peers: List[str] = []
        for ticker in self.comp_tickers:
            ticker = _normalize_ticker(ticker)
            if ticker != self.anchor_ticker and ticker not in peers:
                peers.append(ticker)
        self.comp_tickers = peers

    @property
    def all_tickers(self) -> List[str]:
        """Anchor first, then peers in order."""
        return [self.anchor_ticker, *self.comp_tickers]

    def with_comp(self, ticker: str) -> "WorkingSet":
        """Return a copy with ticker appended (no-op for the anchor or an existing peer)."""
        return WorkingSet(self.anchor_ticker, [*self.comp_tickers, ticker])

    def without_comp(self, ticker: str) -> "WorkingSet":
        """Return a copy with ticker removed from the peers."""
        ticker = ticker.strip().upper()
        return WorkingSet(self.anchor_ticker, [t for t in self.comp_tickers if t != ticker])

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "WorkingSet":
        return cls(**_known_fields(cls, data))


@dataclass
class ChecklistItem:
    """A single research checklist step with a stable string id."""

    id: str
    label: str
    done: bool = False

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ChecklistItem":
        return cls(
            id=str(data.get("id", "")),
            label=data.get("label", ""),
            done=bool(data.get("done", False)),
        )


@dataclass
class ThesisNote:
    """
    Qualitative investment thesis for one ticker.

    Representation Invariants:
    - ticker is uppercase and non-empty
    - checklist item ids are unique
    """

    ticker: str
    bull: str = ""
    bear: str = ""
    catalysts: str = ""
    risks: str = ""
    target_price: str = ""  # Free text, e.g. "$210 (12m)"
    checklist: List[ChecklistItem] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.ticker = _normalize_ticker(self.ticker)

        ids = [item.id for item in self.checklist]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate checklist item ids in thesis for {self.ticker}")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'ticker': self.ticker,
            'bull': self.bull,
            'bear': self.bear,
            'catalysts': self.catalysts,
            'risks': self.risks,
            'target_price': self.target_price,
            'checklist': [item.to_dict() for item in self.checklist],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ThesisNote":
        values = _known_fields(cls, data)
        values['checklist'] = [
            ChecklistItem.from_dict(item) for item in data.get('checklist') or []
        ]
        return cls(**values)


@dataclass
class ResearchSet:
    """
    A saved snapshot of a comps analysis.

    Everything except `assumptions` is fixed at creation time.

    Representation Invariants:
    - id is non-empty and unique within the stored collection
    - created_at is an ISO-8601 timestamp
    - comp_tickers never contains anchor_ticker
    """

    id: str
    name: str
    created_at: str
    anchor_ticker: str
    comp_tickers: List[str] = field(default_factory=list)
    comps_snapshot: List[CompsRow] = field(default_factory=list)
    thesis: Optional[ThesisNote] = None
    assumptions: str = ""

    def __post_init__(self) -> None:
        """Validate research set metadata."""
        if not self.id or not str(self.id).strip():
            raise ValueError("Research set id cannot be empty")
        if not self.name or not self.name.strip():
            raise ValueError("Research set name cannot be empty")
        self.id = str(self.id)
        self.name = self.name.strip()

        working_set = WorkingSet(self.anchor_ticker, list(self.comp_tickers))
        self.anchor_ticker = working_set.anchor_ticker
        self.comp_tickers = working_set.comp_tickers

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'name': self.name,
            'created_at': self.created_at,
            'anchor_ticker': self.anchor_ticker,
            'comp_tickers': list(self.comp_tickers),
            'comps_snapshot': [row.to_dict() for row in self.comps_snapshot],
            'thesis': self.thesis.to_dict() if self.thesis else None,
            'assumptions': self.assumptions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResearchSet":
        values = _known_fields(cls, data)
        values['comps_snapshot'] = [
            CompsRow.from_dict(row) for row in data.get('comps_snapshot') or []
        ]
        thesis = data.get('thesis')
        values['thesis'] = ThesisNote.from_dict(thesis) if thesis else None
        return cls(**values)


@dataclass
class UniverseEntry:
    """A ticker the application knows about without asking the quote provider."""

    ticker: str
    name: str
    sector: str

    def __post_init__(self) -> None:
        self.ticker = _normalize_ticker(self.ticker)
        if not self.name or not self.name.strip():
            raise ValueError(f"Universe entry {self.ticker} has no name")
        self.sector = (self.sector or "").strip() or "Unknown"

    def to_stock(self) -> Stock:
        """Zero-filled stock shell for this entry."""
        return Stock(ticker=self.ticker, name=self.name, sector=self.sector)


class StockUniverse:
    """
    The fixed, predefined universe of tickers loaded from YAML configuration.

    Also carries static comps records used when the quote provider is
    unreachable. All data is loaded once at initialization.

    Representation Invariants:
    - _entries maps uppercase ticker -> UniverseEntry, in file order
    - _fallback_comps maps uppercase ticker -> CompsRow
    """

    def __init__(self, config_path: Path) -> None:
        """
        Initialize universe from YAML config file.

        Preconditions:
        - config_path exists and is readable
        - config_path contains valid YAML with a 'universe' key

        Postconditions:
        - Raises FileNotFoundError if config_path doesn't exist
        - Raises ValueError if YAML is invalid or missing 'universe' key
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Universe config not found: {config_path}")

        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)

        if not data or 'universe' not in data:
            raise ValueError(f"Invalid config format: missing 'universe' key in {config_path}")

        self._entries: dict[str, UniverseEntry] = {}
        self._fallback_comps: dict[str, CompsRow] = {}

        for ticker, info in data['universe'].items():
            try:
                entry = UniverseEntry(
                    ticker=ticker,
                    name=info['name'],
                    sector=info.get('sector', 'Unknown')
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ValueError(f"Invalid universe entry for {ticker}: {e}")
            self._entries[entry.ticker] = entry

        for ticker, info in (data.get('fallback_comps') or {}).items():
            try:
                row = CompsRow(ticker=ticker, **info)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid fallback comps entry for {ticker}: {e}")
            self._fallback_comps[row.ticker] = row

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ticker: object) -> bool:
        return isinstance(ticker, str) and ticker.strip().upper() in self._entries

    def get_all_tickers(self) -> list[str]:
        """Tickers in configuration order."""
        return list(self._entries.keys())

    def get_entry(self, ticker: str) -> Optional[UniverseEntry]:
        """Get entry by ticker (returns None if not found)."""
        return self._entries.get(ticker.upper().strip())

    def get_fallback_comps(self, ticker: str) -> Optional[CompsRow]:
        """Static comps record for ticker, if one is configured."""
        return self._fallback_comps.get(ticker.upper().strip())

    def is_known(self, ticker: str) -> bool:
        """True if ticker has a universe entry or a fallback comps record."""
        return self.get_entry(ticker) is not None or self.get_fallback_comps(ticker) is not None

    def sectors(self) -> list[str]:
        """Sorted list of distinct sectors."""
        return sorted({entry.sector for entry in self._entries.values()})

    def shell_stocks(self) -> List[Stock]:
        """Zero-filled stock shells for every entry, in configuration order."""
        return [entry.to_stock() for entry in self._entries.values()]


def parse_entity_list(cls, raw: Any) -> list:
    """Deserialize a stored list of dicts, skipping records that fail validation."""
    if not isinstance(raw, list):
        return []
    items = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            items.append(cls.from_dict(item))
        except (TypeError, ValueError):
            continue
    return items
