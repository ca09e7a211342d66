"""Paths and environment-driven settings."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"


def get_universe_path() -> Path:
    """Universe YAML from RESEARCH_AID_UNIVERSE or the bundled data/universe.yaml."""
    return Path(os.environ.get("RESEARCH_AID_UNIVERSE", DATA_DIR / "universe.yaml"))


def get_storage_dir() -> Path:
    """Local storage root from RESEARCH_AID_DATA_DIR or data/storage."""
    return Path(os.environ.get("RESEARCH_AID_DATA_DIR", DATA_DIR / "storage"))


def get_quotes_ttl() -> float:
    """Seconds the universe batch stays cached (RESEARCH_AID_QUOTES_TTL, default 300)."""
    raw = os.environ.get("RESEARCH_AID_QUOTES_TTL", "300")
    try:
        ttl = float(raw)
    except ValueError:
        raise ValueError(f"RESEARCH_AID_QUOTES_TTL must be a number, got: {raw}")
    if ttl <= 0:
        raise ValueError("RESEARCH_AID_QUOTES_TTL must be positive")
    return ttl


def get_api_url() -> str:
    """Base URL the client talks to (RESEARCH_AID_API_URL)."""
    return os.environ.get("RESEARCH_AID_API_URL", "http://127.0.0.1:8000").rstrip("/")
