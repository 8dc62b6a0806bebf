"""
cache/store.py -- SQLite-backed cache for rule and rule-set definitions.

Definitions change rarely but a tenant references thousands of them, so the
retrieval layer's definition exports are stored locally with a configurable
TTL (default 24 hours). DefinitionCache satisfies the normalizer's
DefinitionLookup protocol, so it can be handed straight to normalize().
Shared by the CLI and API.

Usage:
    cache = DefinitionCache()
    cache.seed(parse_definitions_json(text))   # load an export
    data = cache.get_definition(definition_id) # returns dict or None
    cache.purge_expired()                      # call periodically to trim old entries
"""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger("policypulse.cache")

_DEFAULT_DB = Path(__file__).parent / "policypulse_definitions.db"
_DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS definition_cache (
    definition_id   TEXT PRIMARY KEY,
    data            TEXT NOT NULL,
    cached_at       REAL NOT NULL
);
"""


class DefinitionCache:
    def __init__(self, db_path: Path = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        if str(db_path) != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get_definition(self, definition_id: str) -> Optional[dict]:
        """Return the cached definition if it exists and hasn't expired. Ids are case-insensitive."""
        if not definition_id:
            return None
        row = self._conn.execute(
            "SELECT data, cached_at FROM definition_cache WHERE definition_id = ?",
            (definition_id.lower(),),
        ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        if time.time() - cached_at > self.ttl:
            self._delete(definition_id)
            return None
        return json.loads(data)

    def set_definition(self, definition_id: str, data: dict) -> None:
        """Store a definition, replacing any existing entry."""
        self._conn.execute(
            "INSERT OR REPLACE INTO definition_cache (definition_id, data, cached_at) VALUES (?, ?, ?)",
            (definition_id.lower(), json.dumps(data), time.time()),
        )
        self._conn.commit()

    def seed(self, definitions: Mapping[str, dict]) -> int:
        """Store every definition of an export in one transaction. Returns the number stored."""
        now = time.time()
        rows = [(k.lower(), json.dumps(v), now) for k, v in definitions.items() if k]
        self._conn.executemany(
            "INSERT OR REPLACE INTO definition_cache (definition_id, data, cached_at) VALUES (?, ?, ?)",
            rows,
        )
        self._conn.commit()
        logger.info("Seeded definition cache with %d definitions", len(rows))
        return len(rows)

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of rows removed."""
        cutoff = time.time() - self.ttl
        cursor = self._conn.execute("DELETE FROM definition_cache WHERE cached_at < ?", (cutoff,))
        self._conn.commit()
        if cursor.rowcount:
            logger.info("Purged %d expired definitions", cursor.rowcount)
        return cursor.rowcount

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM definition_cache").fetchone()[0]

    def _delete(self, definition_id: str) -> None:
        self._conn.execute("DELETE FROM definition_cache WHERE definition_id = ?", (definition_id.lower(),))
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
