"""
FastAPI application for the equity research workflow.
"""

from functools import lru_cache
from typing import Dict, List, Optional
import logging
import re
import time

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
import uvicorn

from research_aid.comps import (
    OVERRIDABLE_MULTIPLES,
    apply_overrides,
    csv_filename,
    export_csv,
    order_anchor_first,
    select_comps,
)
from research_aid.config import get_quotes_ttl, get_universe_path
from research_aid.entities import CompsRow, ResearchSet, Stock, StockUniverse, WorkingSet
from research_aid.quotes import QuoteService
from research_aid.report import ResearchReport
from research_aid.screener import MARKET_CAP_BUCKETS, SORT_KEYS, ScreenFilters, apply_filters, complete_count
from research_aid.valuation import calculate_relative_valuation, column_medians

# =============================================================================
# Configuration
# =============================================================================

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("research_aid.api")

# Rate limiting for single-ticker lookups (in-memory, per process)
RATE_LIMIT_REQUESTS = 60
RATE_LIMIT_WINDOW = 60  # seconds
rate_limit_store: Dict[str, List[float]] = {}

# Ticker validation pattern (share classes like BRK-B or BF.B allowed)
TICKER_PATTERN = re.compile(r'^[A-Z][A-Z0-9.\-]{0,9}$')

# =============================================================================
# App Initialization
# =============================================================================

app = FastAPI(
    title="Equity Research Aid API",
    version="0.1.0",
    description="Stock screening, comparable-companies selection and relative valuation",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
)

# CORS middleware - restrict origins in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Security headers middleware
@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Add security headers to all responses."""
    response = await call_next(request)

    # OWASP recommended security headers
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Endpoints that may be cached set their own policy
    if "cache-control" not in response.headers:
        response.headers["Cache-Control"] = "no-store, max-age=0"

    return response


@lru_cache(maxsize=1)
def get_quote_service() -> QuoteService:
    """Process-wide quote service; its cache must outlive single requests."""
    universe = StockUniverse(get_universe_path())
    return QuoteService(universe, cache_ttl=get_quotes_ttl())


# =============================================================================
# Helpers
# =============================================================================

def check_rate_limit(client_ip: str) -> bool:
    """
    Check if client has exceeded rate limit.
    Returns True if request is allowed, False if rate limited.
    """
    now = time.time()
    window_start = now - RATE_LIMIT_WINDOW

    # Clean old entries
    if client_ip in rate_limit_store:
        rate_limit_store[client_ip] = [
            ts for ts in rate_limit_store[client_ip] if ts > window_start
        ]
    else:
        rate_limit_store[client_ip] = []

    # Check limit
    if len(rate_limit_store[client_ip]) >= RATE_LIMIT_REQUESTS:
        return False

    # Record this request
    rate_limit_store[client_ip].append(now)
    return True


def normalize_symbol(value: str) -> str:
    """Uppercase a ticker and check it is a plausible symbol."""
    ticker = value.strip().upper()
    if not TICKER_PATTERN.match(ticker):
        raise ValueError(f"Invalid ticker: {value!r}")
    return ticker


# =============================================================================
# Models
# =============================================================================

class StockIn(BaseModel):
    """Stock as submitted by a client."""
    ticker: str
    name: str = ""
    sector: str = "Unknown"
    price: float = Field(default=0.0, ge=0)
    change_1d: float = 0.0
    market_cap: float = Field(default=0.0, ge=0)
    pe_ratio: float = 0.0
    pb_ratio: float = 0.0
    ev_ebitda: float = 0.0
    revenue_growth_yoy: float = 0.0
    ebitda_margin: float = 0.0
    is_watchlisted: bool = False

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_symbol(v)

    def to_entity(self) -> Stock:
        return Stock(**self.model_dump())


class CompsRowIn(BaseModel):
    """Comps row as submitted by a client."""
    ticker: str
    name: str = ""
    market_cap: float = 0.0
    ev: float = 0.0
    revenue: float = 0.0
    ebitda: float = 0.0
    pe_ratio: float = Field(default=0.0, ge=0)
    ev_ebitda: float = Field(default=0.0, ge=0)
    ev_revenue: float = Field(default=0.0, ge=0)

    @field_validator('ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_symbol(v)

    def to_entity(self) -> CompsRow:
        return CompsRow(**self.model_dump())


class FiltersIn(BaseModel):
    """Screener filter specification with input validation."""
    search: str = ""
    sector: str = "all"
    market_cap: str = "all"
    sort_by: str = "market_cap"
    sort_dir: str = "desc"
    show_incomplete: bool = False

    @field_validator('market_cap')
    @classmethod
    def validate_market_cap(cls, v: str) -> str:
        if v not in MARKET_CAP_BUCKETS:
            raise ValueError(f"market_cap must be one of: {', '.join(MARKET_CAP_BUCKETS)}")
        return v

    @field_validator('sort_by')
    @classmethod
    def validate_sort_by(cls, v: str) -> str:
        if v not in SORT_KEYS:
            raise ValueError(f"sort_by must be one of: {', '.join(SORT_KEYS)}")
        return v

    @field_validator('sort_dir')
    @classmethod
    def validate_sort_dir(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("asc", "desc"):
            raise ValueError("sort_dir must be 'asc' or 'desc'")
        return v


class ScreenRequest(BaseModel):
    stocks: List[StockIn]
    filters: FiltersIn = FiltersIn()
    watchlist: List[str] = []


class ScreenResponse(BaseModel):
    stocks: List[Stock]
    shown: int
    complete: int
    total: int


class SelectCompsRequest(BaseModel):
    anchor_ticker: str
    pool: List[StockIn]

    @field_validator('anchor_ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_symbol(v)


class CompsTableIn(BaseModel):
    """Comps table for an anchor, with optional manual multiple overrides."""
    anchor_ticker: str
    rows: List[CompsRowIn]
    overrides: Dict[str, Dict[str, float]] = {}

    @field_validator('anchor_ticker')
    @classmethod
    def validate_ticker(cls, v: str) -> str:
        return normalize_symbol(v)

    @field_validator('overrides')
    @classmethod
    def validate_overrides(cls, v: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        cleaned = {}
        for ticker, values in v.items():
            unknown = set(values) - set(OVERRIDABLE_MULTIPLES)
            if unknown:
                raise ValueError(f"Cannot override: {', '.join(sorted(unknown))}")
            if any(value < 0 for value in values.values()):
                raise ValueError("Override values must be non-negative")
            cleaned[ticker.strip().upper()] = values
        return cleaned


class ValuationRequest(CompsTableIn):
    """Comps table plus the anchor's current price."""
    current_price: float = Field(ge=0)


class MultipleOut(BaseModel):
    multiple: str
    label: str
    anchor_multiple: Optional[float] = None
    median: Optional[float] = None
    premium_pct: Optional[float] = None
    implied_price: Optional[float] = None


class ValuationResponse(BaseModel):
    anchor_ticker: str
    current_price: float
    rows: List[CompsRow]
    medians: Dict[str, Optional[float]]
    valuation: Dict[str, MultipleOut]


class ExportRequest(CompsTableIn):
    """Comps table to render as CSV."""


class ReportRequest(BaseModel):
    """A saved research set, as stored, plus an optional anchor price."""
    research_set: dict
    current_price: Optional[float] = Field(default=None, ge=0)


class QuoteResponse(BaseModel):
    stock: Optional[Stock] = None
    comps_row: Optional[CompsRow] = None
    live: bool


class QuotesResponse(BaseModel):
    stocks: List[Stock]
    live: bool
    total: int


# =============================================================================
# Endpoints
# =============================================================================


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Equity Research Aid API", "version": "0.1.0"}


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/quote/{ticker}", response_model=QuoteResponse)
def get_quote(ticker: str, req: Request, service: QuoteService = Depends(get_quote_service)):
    """
    Look up one ticker.

    Falls back to locally known data (live=false) when the provider is down.
    Rate limited per client IP.
    """
    client_ip = req.client.host if req.client else "unknown"
    if not check_rate_limit(client_ip):
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded. Please wait before making another request."
        )

    try:
        symbol = normalize_symbol(ticker)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ticker")

    try:
        result = service.lookup(symbol)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Quote lookup failed for {symbol}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return QuoteResponse(stock=result.stock, comps_row=result.comps_row, live=result.live)


@app.get("/api/quotes", response_model=QuotesResponse)
def get_universe_quotes(response: Response, service: QuoteService = Depends(get_quote_service)):
    """Quote the whole fixed universe (cached)."""
    result = service.lookup_universe()
    response.headers["Cache-Control"] = f"public, max-age={int(get_quotes_ttl())}"
    return QuotesResponse(stocks=result.stocks, live=result.live, total=result.total)


@app.get("/api/sectors")
def list_sectors(service: QuoteService = Depends(get_quote_service)):
    """Sectors present in the universe, for the screener's sector filter."""
    return {"sectors": service.universe.sectors()}


@app.post("/api/screen", response_model=ScreenResponse)
async def screen_stocks(request: ScreenRequest):
    """Filter and sort a list of stocks."""
    try:
        filters = ScreenFilters(**request.filters.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    stocks = [s.to_entity() for s in request.stocks]
    shown = apply_filters(stocks, filters, request.watchlist)
    return ScreenResponse(
        stocks=shown,
        shown=len(shown),
        complete=complete_count(stocks),
        total=len(stocks)
    )


@app.post("/api/comps/select", response_model=WorkingSet)
async def select_comparables(request: SelectCompsRequest):
    """Build a working set of peers for an anchor from a candidate pool."""
    pool = [s.to_entity() for s in request.pool]
    try:
        return select_comps(request.anchor_ticker, pool)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/comps/valuation", response_model=ValuationResponse)
async def value_comparables(request: ValuationRequest):
    """
    Relative valuation of the anchor against its comps.

    Returns the effective rows (overrides applied, anchor first), column
    medians and the P/E and EV/EBITDA premium and implied price.
    """
    rows = [r.to_entity() for r in request.rows]
    effective = order_anchor_first(apply_overrides(rows, request.overrides), request.anchor_ticker)
    valuation = calculate_relative_valuation(rows, request.anchor_ticker, request.current_price, request.overrides)

    return ValuationResponse(
        anchor_ticker=valuation.anchor_ticker,
        current_price=valuation.current_price,
        rows=effective,
        medians=column_medians(effective),
        valuation={
            key: MultipleOut(**vars(value)) for key, value in valuation.multiples.items()
        }
    )


@app.post("/api/comps/export")
async def export_comparables(request: ExportRequest):
    """Download the comps table as CSV."""
    rows = [r.to_entity() for r in request.rows]
    effective = order_anchor_first(apply_overrides(rows, request.overrides), request.anchor_ticker)
    filename = csv_filename(request.anchor_ticker)
    return Response(
        content=export_csv(effective),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.post("/api/research/report")
async def research_report(request: ReportRequest):
    """Render a saved research set as a Markdown memo."""
    try:
        research_set = ResearchSet.from_dict(request.research_set)
    except (TypeError, ValueError, AttributeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid research set: {e}")

    report = ResearchReport(research_set).generate(current_price=request.current_price)
    return Response(content=report, media_type="text/markdown")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
