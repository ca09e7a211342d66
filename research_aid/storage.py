"""Best-effort local key-value persistence for JSON values."""

import json
import logging
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

logger = logging.getLogger("research_aid.storage")

# Persisted keys
WATCHLIST_KEY = "er:watchlist"
CUSTOM_STOCKS_KEY = "er:custom-stocks"
WORKING_SET_KEY = "er:working-set"
RESEARCH_SETS_KEY = "er:research-sets"
OVERRIDES_KEY = "er:overrides"
THESIS_KEY_PREFIX = "er:thesis:"


def thesis_key(ticker: str) -> str:
    return f"{THESIS_KEY_PREFIX}{ticker.strip().upper()}"


class LocalStorage:
    """
    Single-device key-value store holding one JSON document per key.

    Storage is best-effort: reads fall back to a caller-supplied default and
    writes that fail are logged and dropped. Callers keep their in-memory
    state as the source of truth for the session.

    There is no locking; concurrent writers to the same key race and the
    last write wins.

    Representation Invariants:
    - If available, root is an existing directory
    - Each key maps to exactly one file under root
    """

    def __init__(self, root: Optional[Path], quota_bytes: Optional[int] = None) -> None:
        """
        Initialize storage rooted at a directory.

        Postconditions:
        - root is created if needed
        - If root is None or cannot be created, the store is unavailable and
          behaves as empty and read-only

        Args:
            root: Directory for stored documents (None = no storage medium)
            quota_bytes: Optional size limit for a single serialized value
        """
        self._quota = quota_bytes
        self._root: Optional[Path] = None

        if root is None:
            return
        try:
            root = root.resolve()
            root.mkdir(parents=True, exist_ok=True)
            self._root = root
        except OSError as e:
            logger.warning(f"Storage unavailable at {root}: {e}")

    @property
    def available(self) -> bool:
        return self._root is not None

    def _path_for(self, key: str) -> Path:
        # Keys contain ':' and must map to safe, distinct filenames
        return self._root / f"{quote(key, safe='')}.json"

    def get(self, key: str, fallback: Any = None) -> Any:
        """
        Read the JSON value stored under key.

        Returns fallback if the key is absent, the stored document cannot be
        parsed, or storage is unavailable.
        """
        if self._root is None:
            return fallback

        path = self._path_for(key)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return fallback
        except OSError as e:
            logger.warning(f"Could not read '{key}': {e}")
            return fallback
        except UnicodeDecodeError as e:
            logger.warning(f"Discarding undecodable value for '{key}': {e}")
            return fallback

        if not raw:
            return fallback
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable value for '{key}': {e}")
            return fallback

    def set(self, key: str, value: Any) -> bool:
        """
        Serialize value and store it under key.

        Failures (quota exceeded, storage unavailable, unserializable value,
        I/O errors) are logged and swallowed.

        Returns:
            True if the value was written, False otherwise
        """
        if self._root is None:
            return False

        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Could not serialize value for '{key}': {e}")
            return False

        if self._quota is not None and len(payload.encode('utf-8')) > self._quota:
            logger.warning(f"Quota exceeded writing '{key}' ({len(payload)} bytes)")
            return False

        try:
            self._path_for(key).write_text(payload, encoding='utf-8')
        except OSError as e:
            logger.warning(f"Could not write '{key}': {e}")
            return False
        return True

    def remove(self, key: str) -> None:
        """Delete key if present."""
        if self._root is None:
            return
        try:
            self._path_for(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove '{key}': {e}")
