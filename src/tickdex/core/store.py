"""
Tickdex Catalog Store

Holds the enriched instrument set in a form queryable by exact term,
prefix, substring and token match.  Ranking code talks to a
:class:`StoreBackend` only, so the SQLite backend used in production and
the in-memory backend used for ephemeral catalogs are interchangeable.

The store is written exactly once, synchronously, at construction time and
is read-only afterwards.  An existing store file is reopened as-is.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from tqdm import tqdm

from tickdex.core.engine import (
    STORED_FIELDS, SEARCHABLE_FIELDS, CatalogStats, Clause, Hit, Instrument,
    MatchKind, WeightedQuery, query_score, rank, tokenize,
)
from tickdex.exceptions import IndexNotFoundError, SearchError, StoreError

logger = logging.getLogger(__name__)


def instrument_fields(instrument: Instrument) -> Dict[str, Any]:
    """Fields written to the store for one instrument."""
    data = asdict(instrument)
    return {name: data[name] for name in STORED_FIELDS}


def _normalized(fields: Dict[str, Any]) -> Dict[str, str]:
    """Lowercased copies of the searchable text fields."""
    return {name: str(fields.get(name) or "").lower() for name in SEARCHABLE_FIELDS}


def _token_column_value(text: str) -> str:
    """Space-padded token list so a token can be matched with ``LIKE '% tok %'``."""
    tokens = tokenize(text)
    return f" {' '.join(tokens)} " if tokens else ""


# =============================================================================
# Backend capability interface
# =============================================================================

class StoreBackend(ABC):
    """Minimal capability set the ranker needs from a text index."""

    @abstractmethod
    def index(self, doc_id: str, fields: Dict[str, Any]) -> None:
        """Write one document.  A repeated *doc_id* replaces the earlier document."""

    def flush(self) -> None:
        """Make pending writes durable."""

    @abstractmethod
    def search(self, query: WeightedQuery) -> List[Hit]:
        """
        Return matching documents ordered by raw relevance (descending),
        ties in write order, truncated to ``query.limit``.

        Raises :class:`SearchError` if the underlying index fails.
        """

    @abstractmethod
    def count(self) -> int:
        """Number of documents in the store."""

    @abstractmethod
    def exchange_counts(self) -> Dict[str, int]:
        """Number of documents per exchange."""

    @property
    def is_populated(self) -> bool:
        return True

    def mark_populated(self) -> None:
        """Record that the initial bulk write completed."""

    @abstractmethod
    def close(self) -> None:
        """Release resources.  Idempotent."""


# =============================================================================
# In-memory backend
# =============================================================================

class MemoryBackend(StoreBackend):
    """Dict-backed store with the same match semantics as :class:`SqliteBackend`."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._norm: Dict[str, Dict[str, str]] = {}

    def index(self, doc_id: str, fields: Dict[str, Any]) -> None:
        # Replacement moves the document to the end, like INSERT OR REPLACE
        self._docs.pop(doc_id, None)
        self._docs[doc_id] = dict(fields)
        self._norm[doc_id] = _normalized(fields)

    def search(self, query: WeightedQuery) -> List[Hit]:
        hits = []
        for doc_id, fields in self._docs.items():
            score = query_score(query, self._norm[doc_id])
            if score > 0:
                hits.append(Hit(doc_id=doc_id, fields=dict(fields), score=score))
        return rank(hits, key=lambda h: h.score)[:query.limit]

    def count(self) -> int:
        return len(self._docs)

    def exchange_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for fields in self._docs.values():
            exchange = fields.get("exchange") or ""
            counts[exchange] = counts.get(exchange, 0) + 1
        return dict(sorted(counts.items()))

    def close(self) -> None:
        self._docs.clear()
        self._norm.clear()


# =============================================================================
# SQLite backend
# =============================================================================

class SqliteBackend(StoreBackend):
    """SQLite-backed catalog store.

    Uses thread-local connections so that concurrent readers each reuse a
    single connection of their own.  Display values are stored as given;
    matching runs against lowercase ``*_norm`` columns and space-padded
    ``*_tokens`` columns.
    """

    # Values per folded IN list
    IN_CHUNK = 400

    def __init__(self, db_path: Path, create: bool = True):
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()
        if create:
            self._init_db()
        else:
            try:
                self._check_schema()
            except BaseException:
                self.close()
                raise

    def _get_connection(self) -> sqlite3.Connection:
        """Return a thread-local SQLite connection, creating it on first use."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return self._local.conn

    def close(self) -> None:
        """Close every connection opened by any thread. Idempotent."""
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()

    def _init_db(self):
        """Initialize the database schema."""
        conn = self._get_connection()
        norm_cols = "".join(
            f"                {name}_norm TEXT NOT NULL DEFAULT '',\n"
            f"                {name}_tokens TEXT NOT NULL DEFAULT '',\n"
            for name in sorted(SEARCHABLE_FIELDS)
        )
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS instruments (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                doc_id TEXT NOT NULL UNIQUE,
                symbol TEXT NOT NULL,
                name TEXT,
                exchange TEXT NOT NULL,
                type TEXT,
                brand TEXT,
                sector TEXT,
                industry TEXT,
                tags TEXT,
{norm_cols}                popularity_score REAL NOT NULL DEFAULT 0.0
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS store_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        # Exact lookups and future popularity range/sort queries
        conn.execute("CREATE INDEX IF NOT EXISTS idx_symbol_norm ON instruments(symbol_norm)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_exchange_norm ON instruments(exchange_norm)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_popularity ON instruments(popularity_score)")
        conn.commit()

    def _check_schema(self):
        """Verify that an existing file really holds a catalog store."""
        conn = self._get_connection()
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'instruments'"
        ).fetchone()
        if row is None:
            raise StoreError(f"{self.db_path} is not a Tickdex catalog store.")

    @property
    def is_populated(self) -> bool:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT value FROM store_meta WHERE key = 'populated_at'"
            ).fetchone()
        except sqlite3.Error:
            return False
        return row is not None

    def mark_populated(self) -> None:
        conn = self._get_connection()
        # ISO string avoids the sqlite3 default datetime adapter deprecation (Python 3.12+)
        conn.execute(
            "INSERT OR REPLACE INTO store_meta (key, value) VALUES ('populated_at', ?)",
            (datetime.now().isoformat(),),
        )
        conn.commit()

    def index(self, doc_id: str, fields: Dict[str, Any]) -> None:
        norm = _normalized(fields)
        columns = list(STORED_FIELDS)
        values: List[Any] = [fields.get(name) for name in columns]
        for name in sorted(SEARCHABLE_FIELDS):
            columns += [f"{name}_norm", f"{name}_tokens"]
            values += [norm[name], _token_column_value(norm[name])]
        placeholders = ", ".join("?" for _ in range(len(columns) + 1))
        conn = self._get_connection()
        conn.execute(
            f"INSERT OR REPLACE INTO instruments (doc_id, {', '.join(columns)}) "
            f"VALUES ({placeholders})",
            [doc_id] + values,
        )

    def flush(self) -> None:
        self._get_connection().commit()

    # ── Query compilation ─────────────────────────────────────────

    @staticmethod
    def _like_escape(value: str) -> str:
        return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")

    @classmethod
    def _compile_clause(cls, clause: Clause) -> Tuple[str, list, str, list]:
        """Return ``(predicate_sql, predicate_params, score_sql, score_params)``."""
        col = f"{clause.field}_norm"
        if clause.kind is MatchKind.EXACT:
            pred, params = f"{col} = ?", [clause.value]
        elif clause.kind is MatchKind.PREFIX:
            pred, params = f"{col} LIKE ? ESCAPE '\\'", [cls._like_escape(clause.value) + "%"]
        elif clause.kind is MatchKind.CONTAINS:
            pred, params = f"{col} LIKE ? ESCAPE '\\'", [f"%{cls._like_escape(clause.value)}%"]
        else:
            tokens = tokenize(clause.value)
            if not tokens:
                return "0", [], "0", []
            tok_col = f"{clause.field}_tokens"
            parts = [f"{tok_col} LIKE ? ESCAPE '\\'" for _ in tokens]
            patterns = [f"% {cls._like_escape(t)} %" for t in tokens]
            per_token = clause.weight / len(tokens)
            score_sql = " + ".join(f"(CASE WHEN {p} THEN ? ELSE 0 END)" for p in parts)
            score_params: list = []
            for pattern in patterns:
                score_params += [pattern, per_token]
            return f"({' OR '.join(parts)})", patterns, f"({score_sql})", score_params

        return pred, params, f"(CASE WHEN {pred} THEN ? ELSE 0 END)", params + [clause.weight]

    @staticmethod
    def _compile_exact_set(field: str, values: List[str], weight: float) -> Tuple[str, list, str, list]:
        """One ``IN (...)`` predicate standing for several EXACT clauses on *field*."""
        pred = f"{field}_norm IN ({', '.join('?' for _ in values)})"
        return pred, list(values), f"(CASE WHEN {pred} THEN ? ELSE 0 END)", list(values) + [weight]

    def _compile_query(self, query: WeightedQuery) -> List[Tuple[str, list, str, list]]:
        """
        Compile every clause of *query*.

        SQLite caps expression depth at 1000, so in ``any`` mode EXACT
        clauses that share a field and weight are folded into ``IN`` lists
        of at most :attr:`IN_CHUNK` distinct values.  A repeated value goes
        into a second list so it still counts once per clause.
        """
        if query.mode == "all":
            return [self._compile_clause(c) for c in query.clauses]

        layers: Dict[Tuple[str, float], List[List[str]]] = {}
        for clause in query.clauses:
            if clause.kind is MatchKind.EXACT:
                group = layers.setdefault((clause.field, clause.weight), [])
                depth = sum(clause.value in layer for layer in group)
                if depth == len(group):
                    group.append([])
                group[depth].append(clause.value)

        compiled = []
        emitted = set()
        for clause in query.clauses:
            key = (clause.field, clause.weight)
            if clause.kind is not MatchKind.EXACT or sum(map(len, layers[key])) < 2:
                compiled.append(self._compile_clause(clause))
            elif key not in emitted:
                emitted.add(key)
                for values in layers[key]:
                    for start in range(0, len(values), self.IN_CHUNK):
                        compiled.append(self._compile_exact_set(
                            clause.field, values[start:start + self.IN_CHUNK], clause.weight,
                        ))
        return compiled

    def search(self, query: WeightedQuery) -> List[Hit]:
        if not query.clauses:
            return []
        compiled = self._compile_query(query)
        joiner = " AND " if query.mode == "all" else " OR "
        where_sql = joiner.join(f"({pred})" for pred, _, _, _ in compiled)
        score_sql = " + ".join(score for _, _, score, _ in compiled)
        params: list = []
        for _, _, _, score_params in compiled:
            params += score_params
        for _, pred_params, _, _ in compiled:
            params += pred_params
        params.append(query.limit)

        sql = (
            f"SELECT doc_id, {', '.join(STORED_FIELDS)}, ({score_sql}) AS score "
            f"FROM instruments WHERE {where_sql} "
            "ORDER BY score DESC, seq ASC LIMIT ?"
        )
        try:
            rows = self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise SearchError(f"Catalog query failed: {exc}") from exc

        return [
            Hit(
                doc_id=row["doc_id"],
                fields={name: row[name] for name in STORED_FIELDS if row[name] is not None},
                score=float(row["score"]),
            )
            for row in rows
        ]

    def count(self) -> int:
        return self._get_connection().execute("SELECT COUNT(*) FROM instruments").fetchone()[0]

    def exchange_counts(self) -> Dict[str, int]:
        rows = self._get_connection().execute(
            "SELECT exchange, COUNT(*) AS n FROM instruments GROUP BY exchange ORDER BY exchange"
        ).fetchall()
        return {row["exchange"]: row["n"] for row in rows}


# =============================================================================
# Catalog Store
# =============================================================================

class CatalogStore:
    """
    Immutable, queryable collection of instruments keyed by ``SYMBOL-EXCHANGE``.

    Build with :meth:`open` (persisted, SQLite) or :meth:`in_memory`.  There
    is no write method: a fresh build is the only way to change a catalog.
    """

    def __init__(self, backend: StoreBackend, location: str = ""):
        self._backend = backend
        self.location = location
        self._closed = False

    @classmethod
    def open(cls, path: Path, instruments: Optional[Iterable[Instrument]] = None,
             show_progress: bool = False) -> "CatalogStore":
        """
        Reopen the store at *path*, or build it from *instruments*.

        An existing store is reopened as-is and *instruments* is ignored.

        Raises:
            IndexNotFoundError: No store at *path* and no instruments given.
            StoreError: The store could not be opened, created or populated.
        """
        path = Path(path)
        if path.exists():
            try:
                backend = SqliteBackend(path, create=False)
            except sqlite3.Error as exc:
                raise StoreError(f"Failed to open catalog store at {path}: {exc}") from exc
            if not backend.is_populated:
                backend.close()
                raise StoreError(
                    f"Catalog store at {path} has no completed build marker.\n"
                    "  Rebuild it with: tickdex index --rebuild"
                )
            logger.info(f"Opened existing catalog store at {path} ({backend.count():,} instruments)")
            return cls(backend, location=str(path))

        if instruments is None:
            raise IndexNotFoundError(
                f"No catalog store found at {path}. "
                "Run 'tickdex index' or pass an instrument list first."
            )

        backend = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            backend = SqliteBackend(path, create=True)
            cls._populate(backend, instruments, show_progress)
        except BaseException as exc:
            # A half-written store must never be reopened later
            if backend is not None:
                backend.close()
            if path.exists():
                path.unlink()
            if isinstance(exc, Exception) and not isinstance(exc, StoreError):
                raise StoreError(f"Failed to build catalog store at {path}: {exc}") from exc
            raise
        logger.info(f"Built catalog store at {path} ({backend.count():,} instruments)")
        return cls(backend, location=str(path))

    @classmethod
    def in_memory(cls, instruments: Iterable[Instrument],
                  show_progress: bool = False) -> "CatalogStore":
        """Build an ephemeral store held entirely in process memory."""
        backend = MemoryBackend()
        cls._populate(backend, instruments, show_progress)
        return cls(backend, location=":memory:")

    @staticmethod
    def _populate(backend: StoreBackend, instruments: Iterable[Instrument],
                  show_progress: bool) -> None:
        """Write every instrument once, keyed by its ``doc_id``."""
        logger.info("Indexing instruments...")
        for instrument in tqdm(instruments, desc="Indexing", unit="instr",
                               disable=not show_progress):
            backend.index(instrument.doc_id, instrument_fields(instrument))
        backend.flush()
        backend.mark_populated()

    @property
    def backend(self) -> StoreBackend:
        return self._backend

    def search(self, query: WeightedQuery) -> List[Hit]:
        """Run *query*; raises :class:`SearchError` on store failure or after close."""
        if self._closed:
            raise SearchError("Catalog store is closed.")
        return self._backend.search(query)

    def stats(self) -> CatalogStats:
        """Counts per exchange; raises :class:`StoreError` after close."""
        if self._closed:
            raise StoreError("Catalog store is closed.")
        return CatalogStats(
            instruments=self._backend.count(),
            exchanges=self._backend.exchange_counts(),
            location=self.location,
        )

    def close(self) -> None:
        """Release the backend. Idempotent."""
        if not self._closed:
            self._backend.close()
            self._closed = True

    def __enter__(self) -> "CatalogStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
