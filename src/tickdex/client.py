"""
Tickdex Client Facade

Single entry point for programmatic use of Tickdex.  Wraps catalog store
construction, ranked search, and exact lookup behind a clean,
instance-based API with optional async support.

Usage::

    from tickdex import Tickdex

    # Reopen (or build, from TICKDEX_* catalog sources) the store
    client = Tickdex()

    # With an explicit, already-enriched instrument list
    from tickdex import Instrument, TickdexConfig
    client = Tickdex(
        config=TickdexConfig(store_dir="/tmp/tickdex"),
        instruments=[Instrument("TCS", "NSE", "Tata Consultancy Services", popularity_score=0.98)],
    )

    hits = client.search("tcs")
    stock = client.get_stock("RELIANCE", "BSE")
    client.close()

    # Async variants (for FastAPI / Django async views)
    hits = await client.asearch("top banking stocks")
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional

from tickdex.core.config import TickdexConfig
from tickdex.core.engine import Instrument, RankedInstrument
from tickdex.core.loader import CatalogLoader
from tickdex.core.search import InstrumentSearchEngine
from tickdex.core.sectors import SectorTable, ThematicPredicate
from tickdex.core.store import CatalogStore

logger = logging.getLogger(__name__)


class Tickdex:
    """
    High-level Tickdex client.

    Each instance carries its own :class:`TickdexConfig`, sector table and
    catalog store, and never touches global state.  The store is built (or
    reopened) in ``__init__``; after that every method is read-only and safe
    to call from several threads.

    Args:
        config: Explicit configuration object.  When *None*, a config
            is built from environment variables or keyword overrides.
        instruments: Enriched instruments to build a new store from.  When
            *None* and no store exists yet, the catalog sources named in the
            config are loaded.  Ignored when a persisted store already exists.
        sectors: Sector table for thematic queries (default: the table named
            by ``config.sector_table_path`` or the bundled one).
        is_thematic: Replacement thematic-query predicate.
        show_progress: Show a tqdm progress bar while writing the store.
        validate_on_init: Call :meth:`TickdexConfig.validate` before building.
        **kwargs: Forwarded to :class:`TickdexConfig` when *config* is
            ``None`` (e.g. ``store_dir="/tmp/catalog"``).

    Raises:
        ConfigError: Invalid configuration.
        IndexNotFoundError: No store exists and nothing to build it from.
        StoreError: The store could not be opened or built.
    """

    def __init__(
        self,
        config: TickdexConfig | None = None,
        *,
        instruments: Optional[Iterable[Instrument]] = None,
        sectors: SectorTable | None = None,
        is_thematic: ThematicPredicate | None = None,
        show_progress: bool = False,
        validate_on_init: bool = True,
        **kwargs,
    ):
        if config is not None:
            self._config = config
        elif kwargs:
            # Build a config from env, then overlay keyword overrides
            base = TickdexConfig.from_env()
            merged = {
                f.name: kwargs.get(f.name, getattr(base, f.name))
                for f in base.__dataclass_fields__.values()
            }
            self._config = TickdexConfig(**merged)
        else:
            self._config = TickdexConfig.from_env()

        if validate_on_init:
            self._config.validate()

        self._sectors = sectors if sectors is not None else SectorTable.load(self._config.sector_table_path)
        store = self._open_store(instruments, show_progress)
        self._engine = InstrumentSearchEngine(
            store, self._sectors, config=self._config, is_thematic=is_thematic,
        )
        self._closed = False

    def _open_store(self, instruments: Optional[Iterable[Instrument]],
                    show_progress: bool) -> CatalogStore:
        cfg = self._config
        if cfg.in_memory:
            if instruments is None:
                instruments = CatalogLoader(cfg, sectors=self._sectors).load()
            return CatalogStore.in_memory(instruments, show_progress=show_progress)

        path = cfg.get_store_path()
        has_sources = bool(cfg.curated_csv or cfg.nse_csv or cfg.bse_csv)
        if instruments is None and not path.exists() and has_sources:
            instruments = CatalogLoader(cfg, sectors=self._sectors).load()
        return CatalogStore.open(path, instruments, show_progress=show_progress)

    # ── Configuration ─────────────────────────────────────────────

    @property
    def config(self) -> TickdexConfig:
        """The active configuration for this client."""
        return self._config

    @property
    def engine(self) -> InstrumentSearchEngine:
        return self._engine

    # ── Search & lookup ───────────────────────────────────────────

    def search(self, query: str, *, limit: int | None = None) -> List[Instrument]:
        """
        Ranked search; thematic queries are ranked by popularity within
        the resolved sectors.

        Returns an empty list when nothing matches or the store fails.
        """
        results = self._engine.search(query)
        return results[:limit] if limit else results

    def ranked(self, query: str, *, limit: int | None = None) -> List[RankedInstrument]:
        """Like :meth:`search` but with text and final scores attached."""
        results = self._engine.ranked(query)
        return results[:limit] if limit else results

    def get_by_symbol(self, symbol: str) -> Optional[Instrument]:
        """Exact symbol lookup; ``None`` when not found."""
        return self._engine.get_by_symbol(symbol)

    def get_stock(self, symbol: str, exchange: str = "") -> Optional[Instrument]:
        """Symbol + exchange lookup, falling back to :meth:`get_by_symbol`."""
        return self._engine.get_stock(symbol, exchange)

    # ── Statistics ────────────────────────────────────────────────

    def stats(self) -> Dict[str, object]:
        """Instrument count, per-exchange counts, and store location."""
        data = self._engine.store.stats().to_dict()
        data["sectors"] = len(self._sectors)
        return data

    # ── Async variants ────────────────────────────────────────────
    # These use asyncio.to_thread() to run sync operations off the
    # event loop.

    async def asearch(self, query: str, *, limit: int | None = None) -> List[Instrument]:
        """Async variant of :meth:`search`."""
        return await asyncio.to_thread(self.search, query, limit=limit)

    async def aget_by_symbol(self, symbol: str) -> Optional[Instrument]:
        """Async variant of :meth:`get_by_symbol`."""
        return await asyncio.to_thread(self.get_by_symbol, symbol)

    async def aget_stock(self, symbol: str, exchange: str = "") -> Optional[Instrument]:
        """Async variant of :meth:`get_stock`."""
        return await asyncio.to_thread(self.get_stock, symbol, exchange)

    async def astats(self) -> Dict[str, object]:
        """Async variant of :meth:`stats`."""
        return await asyncio.to_thread(self.stats)

    # ── Health (for agents / status endpoints) ─────────────────────

    def health(self) -> Dict[str, object]:
        """Small status dict for readiness checks."""
        return {
            "version": __import__("tickdex", fromlist=["__version__"]).__version__,
            "store": self._engine.store.location,
            "closed": self._closed,
            "sectors": len(self._sectors),
        }

    # ── Lifecycle ─────────────────────────────────────────────────

    def close(self) -> None:
        """Release the catalog store.  Further calls are no-ops."""
        if self._closed:
            return
        self._engine.close()
        self._closed = True
        logger.debug("Tickdex client closed")

    def __enter__(self) -> "Tickdex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
