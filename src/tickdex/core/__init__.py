"""
Tickdex Core — configuration, catalog store, ranking, and thematic resolution.

Re-exports the primary classes for convenience::

    from tickdex.core import CatalogStore, InstrumentSearchEngine, SectorTable
"""

from tickdex.core.config import TickdexConfig
from tickdex.core.engine import (
    Clause,
    Hit,
    Instrument,
    MatchKind,
    RankedInstrument,
    WeightedQuery,
    blend_score,
    clause_score,
)
from tickdex.core.loader import CatalogLoader, PopularityTable
from tickdex.core.search import InstrumentSearchEngine, QueryFormulator, ResultFormatter
from tickdex.core.sectors import SectorTable, ThematicDetector
from tickdex.core.store import CatalogStore, MemoryBackend, SqliteBackend, StoreBackend

__all__ = [
    "TickdexConfig",
    "Clause",
    "Hit",
    "Instrument",
    "MatchKind",
    "RankedInstrument",
    "WeightedQuery",
    "blend_score",
    "clause_score",
    "CatalogLoader",
    "PopularityTable",
    "InstrumentSearchEngine",
    "QueryFormulator",
    "ResultFormatter",
    "SectorTable",
    "ThematicDetector",
    "CatalogStore",
    "MemoryBackend",
    "SqliteBackend",
    "StoreBackend",
]
