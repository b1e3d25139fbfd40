"""Tradable symbol list (symbols.json) with ranked search"""

import json
import logging
import threading
import time
from pathlib import Path

from investkaps.config import settings
from investkaps.errors import NotFoundError

logger = logging.getLogger(__name__)

CACHE_TTL = 5 * 60  # seconds


class SymbolCatalog:
    """symbols.json loader with a short-lived cache"""

    def __init__(self, path: str | Path | None = None, ttl: float = CACHE_TTL) -> None:
        self._path = Path(path or settings.SYMBOLS_FILE)
        self._ttl = ttl
        self._symbols: list[dict] | None = None
        self._loaded_at = 0.0
        self._lock = threading.Lock()

    def load(self) -> list[dict]:
        """Cached symbol list"""
        with self._lock:
            if self._symbols is not None and time.monotonic() - self._loaded_at < self._ttl:
                return self._symbols
            if not self._path.exists():
                raise NotFoundError(f"Symbols file not found: {self._path}")
            self._symbols = json.loads(self._path.read_text(encoding="utf-8"))
            self._loaded_at = time.monotonic()
            logger.info("Symbols loaded: %d", len(self._symbols))
            return self._symbols

    def clear(self) -> None:
        with self._lock:
            self._symbols = None
            self._loaded_at = 0.0

    def search(self, query: str, limit: int = 50) -> list[dict]:
        """Ranked search: exact > symbol prefix > name prefix > contains"""
        q = query.strip().upper()
        buckets: list[list[dict]] = [[], [], [], [], []]
        for item in self.load():
            symbol = item.get("symbol", "").upper()
            name = item.get("name", "").upper()
            if symbol == q:
                buckets[0].append(item)
            elif symbol.startswith(q):
                buckets[1].append(item)
            elif name.startswith(q):
                buckets[2].append(item)
            elif q in symbol:
                buckets[3].append(item)
            elif q in name:
                buckets[4].append(item)

        results = [item for bucket in buckets for item in bucket]
        return results[:limit]

    def page(self, page: int = 1, limit: int = 100) -> dict:
        """Paginated listing"""
        symbols = self.load()
        start = (page - 1) * limit
        total = len(symbols)
        return {
            "data": symbols[start:start + limit],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }


catalog = SymbolCatalog()
