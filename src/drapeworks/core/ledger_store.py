"""Persistence strategies for the usage ledger.

Three interchangeable stores implement :class:`~drapeworks.core.usage_ledger.LedgerStore`:

- :class:`JsonLedgerStore` keeps the whole ledger in a single JSON document.
  This is the default and mirrors the layout the service has always used.
- :class:`SqliteLedgerStore` keeps records and ledger metadata in an SQLite
  database for deployments that prefer an embedded database.
- :class:`MemoryLedgerStore` keeps nothing on disk and is used by tests.

Every store treats a missing ledger as empty, and a corrupt or unreadable one
as empty too (with a warning), so a damaged file never prevents startup.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
from pathlib import Path

from pydantic import ValidationError

from drapeworks.core.usage_ledger import LedgerSnapshot, UsageRecord

logger = logging.getLogger(__name__)


class LedgerStoreError(Exception):
    """Raised when the ledger cannot be written."""

    pass


class JsonLedgerStore:
    """Ledger stored as one JSON document.

    Document shape::

        {
          "records": [{"id": "gen_...", "timestamp": ..., ...}, ...],
          "id_counter": 12,
          "first_generation_at": 1739450000.0
        }
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> LedgerSnapshot:
        if not self.path.exists():
            return LedgerSnapshot()

        try:
            with open(self.path, encoding="utf-8") as handle:
                raw = json.load(handle)
            return LedgerSnapshot.model_validate(raw)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Usage ledger at {self.path} is unreadable, starting empty: {e}")
            return LedgerSnapshot()

    def save(self, snapshot: LedgerSnapshot) -> None:
        # Write to a sibling temp file and swap it in, so a crash mid-write
        # leaves the previous document intact.
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(snapshot.model_dump(mode="json"), handle, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise LedgerStoreError(f"Could not write {self.path}: {e}") from e

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class SqliteLedgerStore:
    """Ledger stored in an SQLite database.

    Records live in a ``usage_records`` table ordered by insertion; the
    identity counter and session start live in a ``ledger_meta`` key/value
    table.  :meth:`save` rewrites both tables in a single transaction.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._initialize_db()
        except sqlite3.Error as e:
            logger.warning(f"Could not initialize usage ledger database {self.db_path}: {e}")
        else:
            logger.info(f"Initialized usage ledger database at {self.db_path}")

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS usage_records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    timestamp REAL NOT NULL,
                    input_tokens INTEGER NOT NULL,
                    output_tokens INTEGER NOT NULL,
                    input_images INTEGER NOT NULL,
                    output_images INTEGER NOT NULL,
                    input_cost REAL NOT NULL,
                    output_cost REAL NOT NULL,
                    total_cost REAL NOT NULL,
                    model TEXT NOT NULL,
                    success INTEGER NOT NULL
                )
                """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS ledger_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """)
            conn.commit()

    def load(self) -> LedgerSnapshot:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, timestamp, input_tokens, output_tokens, input_images,
                           output_images, input_cost, output_cost, total_cost, model, success
                    FROM usage_records ORDER BY seq
                    """)
                rows = cursor.fetchall()
                cursor.execute("SELECT key, value FROM ledger_meta")
                meta = dict(cursor.fetchall())

            records = [
                UsageRecord(
                    id=row[0],
                    timestamp=row[1],
                    input_tokens=row[2],
                    output_tokens=row[3],
                    input_images=row[4],
                    output_images=row[5],
                    input_cost=row[6],
                    output_cost=row[7],
                    total_cost=row[8],
                    model=row[9],
                    success=bool(row[10]),
                )
                for row in rows
            ]
            first = meta.get("first_generation_at")
            return LedgerSnapshot(
                records=records,
                id_counter=int(meta.get("id_counter") or 0),
                first_generation_at=float(first) if first is not None else None,
            )
        except (sqlite3.Error, ValueError, ValidationError) as e:
            logger.warning(f"Usage ledger database {self.db_path} is unreadable, starting empty: {e}")
            return LedgerSnapshot()

    def save(self, snapshot: LedgerSnapshot) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM usage_records")
                cursor.executemany(
                    """
                    INSERT INTO usage_records (
                        id, timestamp, input_tokens, output_tokens, input_images,
                        output_images, input_cost, output_cost, total_cost, model, success
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            r.id,
                            r.timestamp,
                            r.input_tokens,
                            r.output_tokens,
                            r.input_images,
                            r.output_images,
                            r.input_cost,
                            r.output_cost,
                            r.total_cost,
                            r.model,
                            int(r.success),
                        )
                        for r in snapshot.records
                    ],
                )
                cursor.executemany(
                    "INSERT OR REPLACE INTO ledger_meta (key, value) VALUES (?, ?)",
                    [
                        ("id_counter", str(snapshot.id_counter)),
                        (
                            "first_generation_at",
                            None
                            if snapshot.first_generation_at is None
                            else repr(snapshot.first_generation_at),
                        ),
                    ],
                )
                conn.commit()
        except sqlite3.Error as e:
            raise LedgerStoreError(f"Could not write {self.db_path}: {e}") from e

    def clear(self) -> None:
        try:
            with sqlite3.connect(self.db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("DELETE FROM usage_records")
                cursor.execute("DELETE FROM ledger_meta")
                conn.commit()
                logger.info("Cleared usage ledger database")
        except sqlite3.Error as e:
            raise LedgerStoreError(f"Could not clear {self.db_path}: {e}") from e


class MemoryLedgerStore:
    """Ledger kept only in memory; ``saves`` counts successful writes."""

    def __init__(self, snapshot: LedgerSnapshot | None = None):
        self._snapshot = snapshot.model_copy(deep=True) if snapshot else LedgerSnapshot()
        self.saves = 0

    def load(self) -> LedgerSnapshot:
        return self._snapshot.model_copy(deep=True)

    def save(self, snapshot: LedgerSnapshot) -> None:
        self._snapshot = snapshot.model_copy(deep=True)
        self.saves += 1

    def clear(self) -> None:
        self._snapshot = LedgerSnapshot()


def create_ledger_store(backend: str, path: Path) -> JsonLedgerStore | SqliteLedgerStore:
    """Instantiate the store for a configured backend name."""
    if backend == "sqlite":
        return SqliteLedgerStore(path)
    if backend == "json":
        return JsonLedgerStore(path)
    raise ValueError(f"Unknown ledger backend: {backend}")
