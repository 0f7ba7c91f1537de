"""
Tickdex Search Engine

Ranked instrument lookup over an immutable catalog store.

- Six-clause weighted query formulation (exact, prefix, token, substring)
- Relevance blended with static popularity for regular queries
- Thematic queries resolved to sectors and ranked by popularity alone
- Exact symbol and symbol+exchange lookup with a deterministic
  cross-listing tie-break
- Multiple output formats (console, JSON, compact)
"""

import json
import logging
import shutil
import time
from typing import Dict, List, Optional, Sequence, Union

from tickdex.core.config import DEFAULT_SEARCH_WEIGHTS, TickdexConfig
from tickdex.core.engine import (
    Clause, Hit, Instrument, MatchKind, RankedInstrument, WeightedQuery,
    blend_score, rank,
)
from tickdex.core.sectors import SectorTable, ThematicDetector, ThematicPredicate
from tickdex.core.store import CatalogStore
from tickdex.exceptions import SearchError

logger = logging.getLogger(__name__)


# =============================================================================
# Query Formulator
# =============================================================================

class QueryFormulator:
    """
    Turns a raw query string into the six-lane weighted disjunction.

    Each lane is a :class:`Clause`; the lane table is data, so adding or
    re-weighting a strategy never touches the ranker.
    """

    # (weight key, kind, field)
    LANES = (
        ("exact_symbol", MatchKind.EXACT, "symbol"),
        ("prefix_symbol", MatchKind.PREFIX, "symbol"),
        ("name_tokens", MatchKind.TOKEN, "name"),
        ("symbol_contains", MatchKind.CONTAINS, "symbol"),
        ("name_contains", MatchKind.CONTAINS, "name"),
        ("brand_contains", MatchKind.CONTAINS, "brand"),
    )

    def __init__(self, weights: Optional[Dict[str, float]] = None, limit: int = 100):
        self.weights = dict(DEFAULT_SEARCH_WEIGHTS)
        if weights:
            self.weights.update(weights)
        self.limit = limit

    def formulate(self, query: str) -> WeightedQuery:
        value = query.strip()
        return WeightedQuery(
            clauses=tuple(
                Clause(kind=kind, field=field, value=value, weight=self.weights[key])
                for key, kind, field in self.LANES
            ),
            mode="any",
            limit=self.limit,
        )


# =============================================================================
# Search Engine
# =============================================================================

class InstrumentSearchEngine:
    """
    Ranker and lookup service over a :class:`CatalogStore`.

    ``search`` first asks the thematic predicate whether the query is
    category-seeking.  If so, and the sector table resolves at least one
    sector, members of those sectors are ranked by popularity alone.
    Everything else goes through the regular path, where relevance from
    the six weighted lanes is blended with popularity::

        final = text_relevance * 0.7 + popularity * 0.3

    Both paths sort stably: equal final scores keep retrieval order.
    Store failures during a query are logged and produce an empty result.
    """

    def __init__(
        self,
        store: CatalogStore,
        sectors: SectorTable | None = None,
        *,
        config: TickdexConfig | None = None,
        formulator: QueryFormulator | None = None,
        is_thematic: ThematicPredicate | None = None,
    ):
        self._config = config or TickdexConfig()
        self._store = store
        self._sectors = sectors
        self._formulator = formulator or QueryFormulator(
            weights=self._config.search_weights,
            limit=self._config.max_candidates,
        )
        self._is_thematic = is_thematic or ThematicDetector(cues=self._config.thematic_cues)
        self._exchange_rank = {
            exchange.upper(): pos for pos, exchange in enumerate(self._config.exchange_priority)
        }
        # Time (seconds) spent in the store + ranking for the last search
        self._last_elapsed_seconds: float = 0.0

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def last_search_elapsed_seconds(self) -> float:
        return self._last_elapsed_seconds

    # ── Public API ────────────────────────────────────────────────

    def search(self, query: str) -> List[Instrument]:
        """Return instruments matching *query*, best first."""
        return [r.instrument for r in self.ranked(query)]

    def ranked(self, query: str) -> List[RankedInstrument]:
        """Like :meth:`search` but keeps the text and final scores."""
        t0 = time.perf_counter()
        if self._sectors is not None and self._is_thematic(query):
            results = self._thematic_search(query)
        else:
            results = self._regular_search(query)
        self._last_elapsed_seconds = time.perf_counter() - t0
        return results

    def get_by_symbol(self, symbol: str) -> Optional[Instrument]:
        """
        Exact, case-insensitive symbol lookup.

        When several exchanges list the symbol, the configured
        ``exchange_priority`` decides; remaining ties go to the record
        written first.
        """
        query = WeightedQuery(
            clauses=(Clause(MatchKind.EXACT, "symbol", symbol.strip()),),
            limit=self._config.max_candidates,
        )
        hits = self._execute(query, "Symbol lookup")
        if not hits:
            return None
        unlisted = len(self._exchange_rank)
        best = min(
            enumerate(hits),
            key=lambda pair: (
                self._exchange_rank.get(str(pair[1].fields.get("exchange", "")).upper(), unlisted),
                pair[0],
            ),
        )[1]
        return Instrument.from_fields(best.fields)

    def get_stock(self, symbol: str, exchange: str = "") -> Optional[Instrument]:
        """
        Symbol + exchange lookup.

        Falls back to :meth:`get_by_symbol` whenever the pair lookup does
        not produce a record: empty exchange, no match, or a store error.
        The fallback may therefore return another exchange's listing.
        """
        if exchange and exchange.strip():
            query = WeightedQuery(
                clauses=(
                    Clause(MatchKind.EXACT, "symbol", symbol.strip()),
                    Clause(MatchKind.EXACT, "exchange", exchange.strip()),
                ),
                mode="all",
                limit=1,
            )
            hits = self._execute(query, "Symbol+exchange lookup")
            if hits:
                return Instrument.from_fields(hits[0].fields)
            logger.debug(f"No {symbol}@{exchange} listing; falling back to symbol lookup")
        return self.get_by_symbol(symbol)

    def close(self) -> None:
        self._store.close()

    # ── Search paths ──────────────────────────────────────────────

    def _regular_search(self, query: str) -> List[RankedInstrument]:
        """Weighted six-lane search blended with popularity."""
        hits = self._execute(self._formulator.formulate(query), "Search")
        scored = []
        for hit in hits:
            instrument = Instrument.from_fields(hit.fields)
            scored.append(RankedInstrument(
                instrument=instrument,
                text_score=hit.score,
                final_score=blend_score(
                    hit.score, instrument.popularity_score,
                    self._config.text_weight, self._config.popularity_weight,
                ),
            ))
        logger.debug(f"Regular search '{query}': {len(scored)} candidates")
        return rank(scored, key=lambda r: r.final_score)

    def _thematic_search(self, query: str) -> List[RankedInstrument]:
        """Sector members ranked purely by popularity."""
        sectors = self._sectors.extract_sectors(query)
        if not sectors:
            logger.debug(f"Thematic query '{query}' matched no sector; using regular search")
            return self._regular_search(query)

        symbols = self._sectors.symbols_for(sectors)
        logger.info(f"Query: '{query}' -> sectors {sectors} ({len(symbols)} symbols)")
        if not symbols:
            return []

        query_obj = WeightedQuery(
            clauses=tuple(Clause(MatchKind.EXACT, "symbol", s) for s in symbols),
            mode="any",
            limit=self._config.max_candidates,
        )
        hits = self._execute(query_obj, "Thematic search")
        scored = []
        for hit in hits:
            instrument = Instrument.from_fields(hit.fields)
            # Members were selected by category, not text; relevance is discarded
            scored.append(RankedInstrument(
                instrument=instrument,
                text_score=hit.score,
                final_score=instrument.popularity_score,
            ))
        return rank(scored, key=lambda r: r.final_score)

    def _execute(self, query: WeightedQuery, label: str) -> List[Hit]:
        """Run *query* against the store; failures become an empty hit list."""
        try:
            return self._store.search(query)
        except SearchError as exc:
            logger.error(f"{label} error: {exc}")
            return []


# =============================================================================
# Result Formatter
# =============================================================================

Result = Union[Instrument, RankedInstrument]


def _as_ranked(result: Result) -> RankedInstrument:
    if isinstance(result, RankedInstrument):
        return result
    return RankedInstrument(instrument=result, text_score=0.0,
                            final_score=result.popularity_score)


class ResultFormatter:
    """Format search results for different output modes."""

    # ── Console (human-friendly) ──────────────────────────────────

    @staticmethod
    def format_console(results: Sequence[Result], explain: bool = False,
                       elapsed_time: float | None = None) -> str:
        """
        Console output: one block per instrument.

        Args:
            results: Instruments or ranked instruments to render.
            explain: Show text and final scores.
            elapsed_time: Optional search time in seconds to display in header.
        """
        if not results:
            return "\n  No results found.\n"

        width = min(shutil.get_terminal_size().columns, 78)
        thin = "─" * width

        header = f"  TICKDEX — {len(results)} result{'s' if len(results) != 1 else ''}"
        if elapsed_time is not None:
            # Avoid locale comma/period confusion
            timing_str = f"{elapsed_time:.4f}".replace(',', '.')
            header += f" in {timing_str} seconds"

        out: List[str] = [f"\n{thin}", header, thin]
        for idx, result in enumerate(results, start=1):
            r = _as_ranked(result)
            inst = r.instrument
            out.append("")
            out.append(f"  #{idx}  {inst.symbol}  ({inst.exchange})  {inst.name}")
            details = [inst.type]
            if inst.sector:
                details.append(inst.sector)
            if inst.industry:
                details.append(inst.industry)
            out.append(f"    Kind   : {' / '.join(details)}")
            if inst.brand:
                out.append(f"    Brands : {inst.brand}")
            out.append(f"    Popular: {inst.popularity_score:.2f}")
            if explain:
                out.append(f"    Score  : {r.final_score:.3f}  (text {r.text_score:.2f})")

        out.append(f"\n{thin}")
        return "\n".join(out)

    # ── JSON ──────────────────────────────────────────────────────

    @staticmethod
    def format_json(results: Sequence[Result], explain: bool = False) -> str:
        """Format results as a JSON array; scores are included when *explain* is set."""
        payload = []
        for result in results:
            if explain:
                payload.append(_as_ranked(result).to_dict())
            else:
                payload.append(_as_ranked(result).instrument.to_dict())
        return json.dumps(payload, indent=2, allow_nan=False)

    # ── Compact (one line per result) ─────────────────────────────

    @staticmethod
    def format_compact(results: Sequence[Result]) -> str:
        if not results:
            return "No results found."
        lines = []
        for result in results:
            inst = _as_ranked(result).instrument
            lines.append(f"{inst.symbol}:{inst.exchange}  {inst.name}  [{inst.popularity_score:.2f}]")
        return "\n".join(lines)
